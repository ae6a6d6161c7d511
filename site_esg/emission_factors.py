"""
emission_factors.py – Emission factor constants used in GHG calculations.

All factors are in kg CO₂e per unit unless noted.
Sources: construction-site defaults (diesel combustion, PH grid average,
water supply), UK Gov GHG Conversion Factors 2023 for waste.

The module-level tables are the build-time defaults.  Deployments that need
a different regional grid factor build their own ``EmissionFactors`` (see
``config.Config.factors``) and pass it to the aggregator; nothing here is
mutated at runtime.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from site_esg.constants import (
    CATEGORY_EQUIPMENT_FUEL,
    CATEGORY_GRID_ELECTRICITY,
    CATEGORY_VEHICLE_FUEL,
    CATEGORY_WASTE,
    CATEGORY_WATER_SUPPLY,
    FACTOR_SOURCE_GENERIC,
    FACTOR_SOURCE_MISSING,
    FACTOR_SOURCE_SPECIFIC,
    KG_PER_TON,
    WASTE_UNIT_TON,
)

# ─────────────────────────────────────────────────────────────
# Scope 1 – Equipment / vehicle fuel combustion (kg CO₂e / litre diesel)
# ─────────────────────────────────────────────────────────────
EQUIPMENT_FUEL_KG_PER_LITER: float = 2.68
VEHICLE_FUEL_KG_PER_LITER: float = 2.68

# ─────────────────────────────────────────────────────────────
# Scope 2 – Purchased grid electricity (kg CO₂e / kWh)
# Region-specific; swap through config for other grids.
# ─────────────────────────────────────────────────────────────
GRID_ELECTRICITY_KG_PER_KWH: float = 0.507

# ─────────────────────────────────────────────────────────────
# Scope 3 – Water supply (kg CO₂e / m³)
# ─────────────────────────────────────────────────────────────
WATER_SUPPLY_KG_PER_M3: float = 0.264

# ─────────────────────────────────────────────────────────────
# Scope 3 – Waste treatment (kg CO₂e / kg of waste treated)
# Generic factors by treatment method, used when no waste-type row exists.
# ─────────────────────────────────────────────────────────────
WASTE_GENERIC_KG_PER_KG: dict[str, float] = {
    "landfill":     1.8,
    "incineration": 2.8,
    "recycling":    0.12,
    "compost":      0.1,
}

# Waste-type × treatment-method factors (UK Gov GHG Conversion Factors 2023,
# approximate).  "Other" deliberately has no row and falls back to generic.
WASTE_TYPE_SPECIFIC_KG_PER_KG: dict[str, dict[str, float]] = {
    "Plastic": {
        "landfill":     0.029,
        "incineration": 2.53,
        "recycling":    0.021,
        "compost":      0.0,      # N/A
    },
    "Food": {
        "landfill":     0.626,
        "incineration": 0.02,     # energy recovery / biogenic
        "recycling":    0.0,      # N/A
        "compost":      0.01,
    },
    "Paper": {
        "landfill":     1.04,
        "incineration": 0.021,
        "recycling":    0.021,
        "compost":      0.01,
    },
    "Metal": {
        "landfill":     0.022,
        "incineration": 0.021,
        "recycling":    0.021,
        "compost":      0.0,
    },
    "Glass": {
        "landfill":     0.022,
        "incineration": 0.021,
        "recycling":    0.021,
        "compost":      0.0,
    },
}


def _frozen_table(table: Mapping) -> Mapping:
    return MappingProxyType(
        {
            key: _frozen_table(value) if isinstance(value, Mapping) else float(value)
            for key, value in table.items()
        }
    )


def _check_non_negative(name: str, table: Mapping) -> None:
    for key, value in table.items():
        if isinstance(value, Mapping):
            _check_non_negative(f"{name}[{key}]", value)
        elif value < 0:
            raise ValueError(f"Emission factor {name}[{key}] cannot be negative ({value})")


@dataclass(frozen=True)
class EmissionFactors:
    """Immutable emission factor set injected into every calculation."""

    equipment_kg_per_liter: float = EQUIPMENT_FUEL_KG_PER_LITER
    vehicle_kg_per_liter: float = VEHICLE_FUEL_KG_PER_LITER
    grid_kg_per_kwh: float = GRID_ELECTRICITY_KG_PER_KWH
    water_kg_per_m3: float = WATER_SUPPLY_KG_PER_M3
    waste_generic: Mapping[str, float] = field(
        default_factory=lambda: WASTE_GENERIC_KG_PER_KG
    )
    waste_specific: Mapping[str, Mapping[str, float]] = field(
        default_factory=lambda: WASTE_TYPE_SPECIFIC_KG_PER_KG
    )

    def __post_init__(self) -> None:
        for name in (
            "equipment_kg_per_liter",
            "vehicle_kg_per_liter",
            "grid_kg_per_kwh",
            "water_kg_per_m3",
        ):
            value = getattr(self, name)
            if value < 0:
                raise ValueError(f"Emission factor {name} cannot be negative ({value})")
        _check_non_negative("waste_generic", self.waste_generic)
        _check_non_negative("waste_specific", self.waste_specific)
        # frozen: copy the tables so callers cannot mutate them afterwards
        object.__setattr__(self, "waste_generic", _frozen_table(self.waste_generic))
        object.__setattr__(self, "waste_specific", _frozen_table(self.waste_specific))

    def lookup_waste_factor(
        self, waste_type: str | None, treatment_method: str | None
    ) -> tuple[float, str]:
        """
        Return ``(factor, source)`` for a waste entry.

        Lookup order: type-specific table → generic table by treatment method
        → 0.0.  ``source`` is one of ``specific``, ``generic`` or ``missing``;
        a missing factor is "no data", not an error, and callers should flag
        the entry as low confidence.
        """
        method = (treatment_method or "").strip().lower()
        type_row = self.waste_specific.get(waste_type_key(waste_type))
        if type_row is not None and method in type_row:
            return type_row[method], FACTOR_SOURCE_SPECIFIC
        if method in self.waste_generic:
            return self.waste_generic[method], FACTOR_SOURCE_GENERIC
        return 0.0, FACTOR_SOURCE_MISSING

    def factor_for(
        self,
        category: str,
        waste_type: str | None = None,
        treatment_method: str | None = None,
    ) -> float:
        """Return kg CO₂e per unit for *category* (and waste type/method)."""
        if category == CATEGORY_WASTE:
            return self.lookup_waste_factor(waste_type, treatment_method)[0]
        scalar = {
            CATEGORY_EQUIPMENT_FUEL: self.equipment_kg_per_liter,
            CATEGORY_VEHICLE_FUEL: self.vehicle_kg_per_liter,
            CATEGORY_GRID_ELECTRICITY: self.grid_kg_per_kwh,
            CATEGORY_WATER_SUPPLY: self.water_kg_per_m3,
        }
        if category not in scalar:
            raise ValueError(
                f"Unknown emission category '{category}'; expected one of "
                f"{sorted([*scalar, CATEGORY_WASTE])}"
            )
        return scalar[category]


DEFAULT_FACTORS = EmissionFactors()


def factor_for(
    category: str,
    waste_type: str | None = None,
    treatment_method: str | None = None,
    factors: EmissionFactors = DEFAULT_FACTORS,
) -> float:
    """Module-level shortcut for ``factors.factor_for(...)``."""
    return factors.factor_for(category, waste_type, treatment_method)


def get_waste_factor(
    waste_type: str | None,
    treatment_method: str | None,
    factors: EmissionFactors = DEFAULT_FACTORS,
) -> float:
    """Return kg CO₂e per kg of waste for the given type and treatment method."""
    return factors.lookup_waste_factor(waste_type, treatment_method)[0]


# ─────────────────────────────────────────────────────────────
# Unit conversion helpers
# ─────────────────────────────────────────────────────────────

def to_kg(mass: float, unit: str | None) -> float:
    """Convert a waste mass to kilograms.  Only ``ton`` is scaled."""
    if (unit or "").strip().lower() == WASTE_UNIT_TON:
        return mass * KG_PER_TON
    return mass


def waste_type_key(waste_type: str | None) -> str:
    """Canonical spelling of a waste type for grouping and factor lookup."""
    return (waste_type or "").strip()
