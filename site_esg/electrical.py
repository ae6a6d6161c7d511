"""
electrical.py – Standalone electricity-consumption emissions records.

This subsystem records metered site electricity against the Philippines DOE
2023 grid factor (0.76 kg CO₂e/kWh).  It is separate from Scope 2 period
aggregation, which applies ``emission_factors.GRID_ELECTRICITY_KG_PER_KWH``
(0.507).  The two factors are never mixed:

    2,000 kWh × 0.76  = 1,520 kg CO₂e   (this module)
    2,000 kWh × 0.507 = 1,014 kg CO₂e   (Scope 2 aggregate)
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from site_esg.constants import KG_PER_TONNE
from site_esg.errors import ValidationError

# Philippines grid, Department of Energy 2023 (kg CO₂e / kWh)
PHILIPPINES_GRID_EMISSION_FACTOR: float = 0.76


def calc_electrical_emissions(
    electricity_kwh: float,
    emission_factor: float = PHILIPPINES_GRID_EMISSION_FACTOR,
) -> float:
    """
    Total kg CO₂e = kWh consumed × grid factor.

    Raises
    ------
    ValidationError
        If consumption or factor is negative.
    """
    if electricity_kwh < 0:
        raise ValidationError("Electricity consumption cannot be negative")
    if emission_factor < 0:
        raise ValidationError("Emission factor cannot be negative")
    return electricity_kwh * emission_factor


def kg_to_tonnes(kg_co2e: float) -> float:
    return kg_co2e / KG_PER_TONNE


def format_emissions(kg_co2e: float) -> str:
    """Render *kg_co2e* with the largest fitting unit (kg, t, Mt)."""
    if kg_co2e >= 1_000_000:
        return f"{kg_co2e / 1_000_000:.2f} Mt CO₂e"
    if kg_co2e >= 1_000:
        return f"{kg_co2e / 1_000:.2f} t CO₂e"
    return f"{kg_co2e:.2f} kg CO₂e"


@dataclass(frozen=True)
class ElectricalEmission:
    """One stored electricity-consumption emissions record."""
    id: str
    electricity_consumed_kwh: float
    emission_factor_kg_per_kwh: float
    total_co2e_kg: float
    project_id: Optional[str] = None
    organization_id: Optional[str] = None
    measurement_period_start: Optional[str] = None
    measurement_period_end: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def total_co2e_tonnes(self) -> float:
        return kg_to_tonnes(self.total_co2e_kg)

    @classmethod
    def from_record(cls, row: Mapping[str, Any]) -> "ElectricalEmission":
        """Map a database row (dict-like) to an ElectricalEmission."""
        return cls(
            id=str(row["id"]),
            electricity_consumed_kwh=float(row["electricity_consumed_kwh"]),
            emission_factor_kg_per_kwh=float(row["emission_factor_kg_per_kwh"]),
            total_co2e_kg=float(row["total_co2e_kg"]),
            project_id=row.get("project_id"),
            organization_id=row.get("organization_id"),
            measurement_period_start=_as_text(row.get("measurement_period_start")),
            measurement_period_end=_as_text(row.get("measurement_period_end")),
            notes=row.get("notes"),
            created_at=_as_text(row.get("created_at")),
            updated_at=_as_text(row.get("updated_at")),
        )

    @classmethod
    def create(
        cls,
        id: str,
        electricity_kwh: float,
        emission_factor: float = PHILIPPINES_GRID_EMISSION_FACTOR,
        **kwargs: Any,
    ) -> "ElectricalEmission":
        """Build a new record, computing ``total_co2e_kg`` from kWh and factor."""
        return cls(
            id=id,
            electricity_consumed_kwh=electricity_kwh,
            emission_factor_kg_per_kwh=emission_factor,
            total_co2e_kg=calc_electrical_emissions(electricity_kwh, emission_factor),
            **kwargs,
        )


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)
