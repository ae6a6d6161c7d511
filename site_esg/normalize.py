"""
normalize.py – Convert raw activity entries into canonical quantities.

Raw entries come straight from log forms: numbers may arrive as strings,
blank, negative, or garbage.  The engine never raises on malformed numbers;
they are folded to "absent" and contribute 0 to every sum.
``CanonicalQuantity.present`` keeps the distinction between "no data" and
"measured zero" for callers that render it.

Canonical units
───────────────
 Entry                 Category                Quantity
 ──────────────────────────────────────────────────────────────────────
 EquipmentEntry        equipment-fuel-liter    hours × fuel_rate (L/h)
 VehicleEntry          vehicle-fuel-liter      distance_km × fuel_rate (L/km)
 ElectricityEntry      grid-electricity-kwh    kWh
 WaterEntry            water-supply-m3         m³
 WasteEntry            waste-kg                mass (× 1000 when unit = ton)
 SafetyEntry           employee-hours          hours (incidents via safety_exposure)
 LegacyEquipmentRecord equipment-fuel-liter    fuel liters, when recoverable
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Union

from site_esg.constants import (
    CATEGORY_EQUIPMENT_FUEL,
    CATEGORY_EXPOSURE_HOURS,
    CATEGORY_GRID_ELECTRICITY,
    CATEGORY_VEHICLE_FUEL,
    CATEGORY_WASTE,
    CATEGORY_WATER_SUPPLY,
    WASTE_UNIT_KG,
)
from site_esg.emission_factors import DEFAULT_FACTORS, EmissionFactors, to_kg

logger = logging.getLogger(__name__)

NumericInput = Union[str, float, int, None]


# ─────────────────────────────────────────────────────────────
# Numeric parsing
# ─────────────────────────────────────────────────────────────

def to_number(value: Any) -> float | None:
    """
    Parse *value* as a finite float.

    Returns None ("absent") for None, blank strings, booleans, unparsable
    strings, NaN and ±inf.  Strings may carry thousands separators.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        cleaned = re.sub(r"[,\s]", "", value)
        if not cleaned:
            return None
        try:
            number = float(cleaned)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def to_quantity(value: Any) -> float:
    """Parse *value* for summation: absent or negative input becomes 0.0."""
    number = to_number(value)
    if number is None or number < 0:
        return 0.0
    return number


# ─────────────────────────────────────────────────────────────
# Raw entry types
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class EquipmentEntry:
    """One piece of equipment on a daily log."""
    hours: NumericInput = None
    fuel_rate: NumericInput = None      # L / hour
    name: str = ""


@dataclass(frozen=True)
class VehicleEntry:
    """One logistics vehicle trip; distance comes from the route service."""
    distance_km: NumericInput = None
    fuel_rate: NumericInput = None      # L / km
    name: str = ""


@dataclass(frozen=True)
class ElectricityEntry:
    kwh: NumericInput = None


@dataclass(frozen=True)
class WaterEntry:
    cubic_m: NumericInput = None


@dataclass(frozen=True)
class WasteEntry:
    """A waste record: one treatment-method share of one waste stream."""
    mass: NumericInput = None
    unit: str = WASTE_UNIT_KG
    waste_type: str = ""
    treatment_method: str = ""
    treatment_percentage: NumericInput = None
    entry_id: str = ""


@dataclass(frozen=True)
class SafetyEntry:
    incident_count: NumericInput = None
    employee_hours: NumericInput = None


@dataclass(frozen=True)
class LegacyEquipmentRecord:
    """
    A stored daily-log row whose equipment emissions predate the current
    format.  ``equipment_emissions`` may be a number (kg CO₂e), a breakdown
    dict, or None with only ``equipment_fuel_consumed`` populated.
    """
    equipment_emissions: Any = None
    equipment_fuel_consumed: NumericInput = None
    scope_one: NumericInput = None


RawActivityEntry = Union[
    EquipmentEntry,
    VehicleEntry,
    ElectricityEntry,
    WaterEntry,
    WasteEntry,
    SafetyEntry,
    LegacyEquipmentRecord,
]


@dataclass(frozen=True)
class CanonicalQuantity:
    """A normalized quantity ready for factor application."""
    category: str
    quantity: float
    unit: str
    present: bool = True


# ─────────────────────────────────────────────────────────────
# Per-type conversions
# ─────────────────────────────────────────────────────────────

def equipment_fuel_liters(entry: EquipmentEntry) -> float:
    """fuel_liters = hours × fuel_rate (L/h)."""
    return to_quantity(entry.hours) * to_quantity(entry.fuel_rate)


def vehicle_fuel_liters(entry: VehicleEntry) -> float:
    """fuel_liters = distance_km × fuel_rate (L/km)."""
    return to_quantity(entry.distance_km) * to_quantity(entry.fuel_rate)


def total_vehicle_fuel_liters(entries: list[VehicleEntry]) -> float:
    """Sum of fuel litres across every vehicle entry in a submission."""
    return sum(vehicle_fuel_liters(e) for e in entries)


def waste_mass_kg(entry: WasteEntry) -> float:
    """Entry mass in kg (tons × 1000); malformed mass is 0."""
    return to_kg(to_quantity(entry.mass), entry.unit)


def safety_exposure(entry: SafetyEntry) -> tuple[float, float]:
    """Return ``(incident_count, employee_hours)`` with malformed values as 0."""
    return to_quantity(entry.incident_count), to_quantity(entry.employee_hours)


# ─────────────────────────────────────────────────────────────
# Legacy equipment emissions
#
# Stored daily logs carry equipment emissions in three shapes.  They are
# parsed into one of the tagged variants below and resolved in this order:
#   1. precomputed kg value
#   2. breakdown scope1, then breakdown equipment_usage_tco2e
#   3. row-level scope_one
#   4. fuel litres × equipment factor
# The factor is only applied when no precomputed emissions exist.
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PrecomputedEmissions:
    kind = "precomputed"
    emissions_kg: float


@dataclass(frozen=True)
class EmissionsBreakdown:
    kind = "breakdown"
    fuel_liters: float | None = None
    emissions_kg: float | None = None
    scope1_kg: float | None = None
    safety_trir: float | None = None


@dataclass(frozen=True)
class FuelOnly:
    kind = "fuel_only"
    fuel_liters: float | None = None


EquipmentEmissions = Union[PrecomputedEmissions, EmissionsBreakdown, FuelOnly]


@dataclass(frozen=True)
class ResolvedEquipmentEmissions:
    emissions_kg: float
    fuel_liters: float | None
    source: str      # which variant produced emissions_kg


def parse_equipment_emissions(record: LegacyEquipmentRecord) -> EquipmentEmissions:
    """Tag a stored equipment-emissions value with its shape."""
    raw = record.equipment_emissions
    if isinstance(raw, dict):
        return EmissionsBreakdown(
            fuel_liters=to_number(raw.get("fuel_consumption_liters")),
            emissions_kg=to_number(raw.get("equipment_usage_tco2e")),
            scope1_kg=to_number(raw.get("scope1")),
            safety_trir=to_number(raw.get("safety_trir")),
        )
    precomputed = to_number(raw)
    if precomputed is not None:
        return PrecomputedEmissions(emissions_kg=precomputed)
    return FuelOnly(fuel_liters=to_number(record.equipment_fuel_consumed))


def resolve_equipment_emissions(
    record: LegacyEquipmentRecord,
    factors: EmissionFactors = DEFAULT_FACTORS,
) -> ResolvedEquipmentEmissions:
    """Converge any stored equipment-emissions shape to one Scope 1 kg figure."""
    parsed = parse_equipment_emissions(record)
    factor = factors.equipment_kg_per_liter

    if isinstance(parsed, PrecomputedEmissions):
        kg = max(parsed.emissions_kg, 0.0)
        return ResolvedEquipmentEmissions(kg, kg / factor if factor else None, parsed.kind)

    fuel = parsed.fuel_liters
    if fuel is None:
        fuel = to_number(record.equipment_fuel_consumed)

    if isinstance(parsed, EmissionsBreakdown):
        for candidate in (parsed.scope1_kg, parsed.emissions_kg):
            if candidate is not None:
                return ResolvedEquipmentEmissions(max(candidate, 0.0), fuel, parsed.kind)

    scope_one = to_number(record.scope_one)
    if scope_one is not None:
        return ResolvedEquipmentEmissions(max(scope_one, 0.0), fuel, "scope_one")

    if fuel is not None and fuel > 0:
        return ResolvedEquipmentEmissions(fuel * factor, fuel, FuelOnly.kind)

    logger.debug("Legacy equipment record has no recoverable emissions: %r", record)
    return ResolvedEquipmentEmissions(0.0, fuel, FuelOnly.kind)


# ─────────────────────────────────────────────────────────────
# Dispatcher
# ─────────────────────────────────────────────────────────────

def _both_present(*values: Any) -> bool:
    return all(to_number(v) is not None for v in values)


def _normalize_equipment(entry: EquipmentEntry) -> CanonicalQuantity:
    return CanonicalQuantity(
        CATEGORY_EQUIPMENT_FUEL, equipment_fuel_liters(entry), "L",
        _both_present(entry.hours, entry.fuel_rate),
    )


def _normalize_vehicle(entry: VehicleEntry) -> CanonicalQuantity:
    return CanonicalQuantity(
        CATEGORY_VEHICLE_FUEL, vehicle_fuel_liters(entry), "L",
        _both_present(entry.distance_km, entry.fuel_rate),
    )


def _normalize_electricity(entry: ElectricityEntry) -> CanonicalQuantity:
    return CanonicalQuantity(
        CATEGORY_GRID_ELECTRICITY, to_quantity(entry.kwh), "kWh", _both_present(entry.kwh)
    )


def _normalize_water(entry: WaterEntry) -> CanonicalQuantity:
    return CanonicalQuantity(
        CATEGORY_WATER_SUPPLY, to_quantity(entry.cubic_m), "m3", _both_present(entry.cubic_m)
    )


def _normalize_waste(entry: WasteEntry) -> CanonicalQuantity:
    return CanonicalQuantity(CATEGORY_WASTE, waste_mass_kg(entry), "kg", _both_present(entry.mass))


def _normalize_safety(entry: SafetyEntry) -> CanonicalQuantity:
    return CanonicalQuantity(
        CATEGORY_EXPOSURE_HOURS, to_quantity(entry.employee_hours), "h",
        _both_present(entry.employee_hours),
    )


def _normalize_legacy(entry: LegacyEquipmentRecord) -> CanonicalQuantity:
    fuel = resolve_equipment_emissions(entry).fuel_liters
    return CanonicalQuantity(
        CATEGORY_EQUIPMENT_FUEL, max(fuel or 0.0, 0.0), "L", fuel is not None
    )


_NORMALIZER_MAP = {
    EquipmentEntry: _normalize_equipment,
    VehicleEntry: _normalize_vehicle,
    ElectricityEntry: _normalize_electricity,
    WaterEntry: _normalize_water,
    WasteEntry: _normalize_waste,
    SafetyEntry: _normalize_safety,
    LegacyEquipmentRecord: _normalize_legacy,
}


def normalize(entry: RawActivityEntry) -> CanonicalQuantity:
    """
    Dispatch to the converter for the entry's type.

    Raises
    ------
    TypeError
        If *entry* is not one of the raw entry types.
    """
    fn = _NORMALIZER_MAP.get(type(entry))
    if fn is None:
        raise TypeError(f"Cannot normalize entry of type {type(entry).__name__}")
    return fn(entry)
