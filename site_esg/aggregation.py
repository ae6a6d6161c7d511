"""
aggregation.py – Scope 1/2/3 roll-up for one reporting period.

Every public function is a pure computation over a snapshot of raw entries;
reading and writing records is the caller's job (see ``db.py``).

Emission formula references
────────────────────────────
 Activity                  Scope  Formula
 ─────────────────────────────────────────────────────────────────────────
 Equipment fuel            1     hours × L/h × equipment_factor (kg CO₂e/L)
 Legacy equipment record   1     stored kg, else fuel L × equipment_factor
 Purchased electricity     2     kWh × grid_factor (kg CO₂e/kWh)
 Water supply              3     m³ × water_factor (kg CO₂e/m³)
 Waste treatment           3     Σ mass_kg × pct/100 × waste_factor
 Vehicle logistics         3     km × L/km × vehicle_factor (kg CO₂e/L)

Period totals are sums over every entry of the period, computed in entry
order so that the same snapshot always produces an identical aggregate.

Usage
──────
    from site_esg.aggregation import aggregate_period
    from site_esg.normalize import EquipmentEntry

    agg = aggregate_period("proj-1", "2024-05-02", [EquipmentEntry(hours=8, fuel_rate=5)])
    agg.scope1_kg_co2e   # 107.2
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Iterable

from dateutil import parser as dateutil_parser

from site_esg.constants import (
    ALLOWED_PERIOD_TYPES,
    CATEGORY_GRID_ELECTRICITY,
    CATEGORY_VEHICLE_FUEL,
    CATEGORY_WATER_SUPPLY,
    KG_PER_TONNE,
    PERIOD_DAILY,
    PERIOD_MONTHLY,
)
from site_esg.emission_factors import DEFAULT_FACTORS, EmissionFactors
from site_esg.errors import DuplicatePeriodError, EngineError
from site_esg.normalize import (
    ElectricityEntry,
    EquipmentEntry,
    LegacyEquipmentRecord,
    RawActivityEntry,
    SafetyEntry,
    VehicleEntry,
    WasteEntry,
    WaterEntry,
    normalize,
    resolve_equipment_emissions,
    safety_exposure,
)
from site_esg.safety import compute_trir
from site_esg.waste import (
    check_allocation_invariant,
    summarize_waste_entry,
    total_allocated_mass,
    total_input_mass,
    total_waste_emissions,
    weighted_waste_averages,
)

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Result dataclasses
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class EmissionResult:
    """Factor-applied emissions for a single raw entry."""
    activity_type: str
    scope: int
    quantity: float
    unit: str
    emissions_kg_co2e: float
    factor_used: float
    factor_unit: str

    @property
    def emissions_metric_tons(self) -> float:
        return self.emissions_kg_co2e / KG_PER_TONNE


@dataclass(frozen=True)
class PeriodAggregate:
    """
    Canonical figures for one (project, period).  Frozen: a period is
    recomputed and replaced as a whole, never patched field by field.
    """
    project_id: str
    period_key: str
    period_type: str
    scope1_kg_co2e: float = 0.0
    scope2_kg_co2e: float = 0.0
    scope3_kg_co2e: float = 0.0
    equipment_emissions_kg: float = 0.0
    logistics_emissions_kg: float = 0.0
    water_emissions_kg: float = 0.0
    waste_emissions_kg: float = 0.0
    fuel_liters: float = 0.0
    logistics_fuel_liters: float = 0.0
    electricity_kwh: float = 0.0
    water_m3: float = 0.0
    waste_kg: float = 0.0                  # input mass: Σ per-type max
    waste_allocated_kg: float = 0.0
    waste_avg_emission_factor: float = 0.0
    waste_avg_treatment_pct: float = 0.0
    incident_count: float = 0.0
    exposure_hours: float = 0.0
    trir: float | None = None
    entry_count: int = 0
    warnings: tuple[str, ...] = ()

    @property
    def total_kg_co2e(self) -> float:
        return self.scope1_kg_co2e + self.scope2_kg_co2e + self.scope3_kg_co2e

    @property
    def scope1_tco2e(self) -> float:
        return self.scope1_kg_co2e / KG_PER_TONNE

    @property
    def scope2_tco2e(self) -> float:
        return self.scope2_kg_co2e / KG_PER_TONNE

    @property
    def scope3_tco2e(self) -> float:
        return self.scope3_kg_co2e / KG_PER_TONNE

    @property
    def total_tco2e(self) -> float:
        return self.total_kg_co2e / KG_PER_TONNE

    @property
    def month_key(self) -> str:
        return self.period_key[:7]

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.project_id, self.period_type, self.period_key)


@dataclass
class AggregationRun:
    """Result of aggregating several periods; failures do not stop the run."""
    aggregates: list[PeriodAggregate] = field(default_factory=list)
    failed_periods: dict[str, str] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed_periods


# ─────────────────────────────────────────────────────────────────────────────
# Period keys
# ─────────────────────────────────────────────────────────────────────────────

def period_key_for(timestamp: Any, period_type: str = PERIOD_DAILY) -> str:
    """
    Return the period key for *timestamp*: ``YYYY-MM-DD`` (daily) or
    ``YYYY-MM`` (monthly).

    Raises
    ------
    ValueError
        If the timestamp cannot be parsed or the period type is unknown.
    """
    if period_type not in ALLOWED_PERIOD_TYPES:
        raise ValueError(
            f"period_type '{period_type}' is not allowed; expected one of "
            f"{sorted(ALLOWED_PERIOD_TYPES)}"
        )
    if isinstance(timestamp, (date, datetime)):
        parsed = timestamp
    else:
        try:
            parsed = dateutil_parser.parse(str(timestamp).strip())
        except (ValueError, OverflowError) as exc:
            raise ValueError(f"Could not parse timestamp: '{timestamp}'") from exc
    fmt = "%Y-%m" if period_type == PERIOD_MONTHLY else "%Y-%m-%d"
    return parsed.strftime(fmt)


# ─────────────────────────────────────────────────────────────────────────────
# Per-source calculations
# ─────────────────────────────────────────────────────────────────────────────

def calc_equipment_emissions(
    entries: Iterable[EquipmentEntry | LegacyEquipmentRecord],
    factors: EmissionFactors = DEFAULT_FACTORS,
) -> list[EmissionResult]:
    """Scope 1: equipment fuel combustion, current and legacy record shapes."""
    results: list[EmissionResult] = []
    factor = factors.equipment_kg_per_liter
    for entry in entries:
        if isinstance(entry, LegacyEquipmentRecord):
            resolved = resolve_equipment_emissions(entry, factors)
            liters = max(resolved.fuel_liters or 0.0, 0.0)
            emission_kg = resolved.emissions_kg
        else:
            liters = normalize(entry).quantity
            emission_kg = liters * factor
        results.append(EmissionResult(
            activity_type="equipment_fuel",
            scope=1,
            quantity=liters,
            unit="L",
            emissions_kg_co2e=emission_kg,
            factor_used=factor,
            factor_unit="kg CO2e/L",
        ))
        logger.debug("Equipment | %.2f L × %.4f = %.4f kg CO₂e", liters, factor, emission_kg)
    return results


def calc_electricity_emissions(
    entries: Iterable[ElectricityEntry],
    factors: EmissionFactors = DEFAULT_FACTORS,
) -> list[EmissionResult]:
    """Scope 2: purchased grid electricity."""
    factor = factors.factor_for(CATEGORY_GRID_ELECTRICITY)
    results = []
    for entry in entries:
        kwh = normalize(entry).quantity
        results.append(EmissionResult(
            activity_type="grid_electricity",
            scope=2,
            quantity=kwh,
            unit="kWh",
            emissions_kg_co2e=kwh * factor,
            factor_used=factor,
            factor_unit="kg CO2e/kWh",
        ))
        logger.debug("Electricity | %.2f kWh × %.4f = %.4f kg CO₂e", kwh, factor, kwh * factor)
    return results


def calc_water_emissions(
    entries: Iterable[WaterEntry],
    factors: EmissionFactors = DEFAULT_FACTORS,
) -> list[EmissionResult]:
    """Scope 3: water supply."""
    factor = factors.factor_for(CATEGORY_WATER_SUPPLY)
    results = []
    for entry in entries:
        m3 = normalize(entry).quantity
        results.append(EmissionResult(
            activity_type="water_supply",
            scope=3,
            quantity=m3,
            unit="m3",
            emissions_kg_co2e=m3 * factor,
            factor_used=factor,
            factor_unit="kg CO2e/m3",
        ))
    return results


def calc_logistics_emissions(
    entries: Iterable[VehicleEntry],
    factors: EmissionFactors = DEFAULT_FACTORS,
) -> list[EmissionResult]:
    """Scope 3: vehicle logistics fuel."""
    factor = factors.factor_for(CATEGORY_VEHICLE_FUEL)
    results = []
    for entry in entries:
        liters = normalize(entry).quantity
        results.append(EmissionResult(
            activity_type="vehicle_logistics",
            scope=3,
            quantity=liters,
            unit="L",
            emissions_kg_co2e=liters * factor,
            factor_used=factor,
            factor_unit="kg CO2e/L",
        ))
        logger.debug(
            "Logistics %s | %.2f L × %.4f = %.4f kg CO₂e",
            entry.name or "vehicle", liters, factor, liters * factor,
        )
    return results


# ─────────────────────────────────────────────────────────────────────────────
# Period aggregation
# ─────────────────────────────────────────────────────────────────────────────

_ENTRY_BUCKETS = {
    EquipmentEntry: "equipment",
    LegacyEquipmentRecord: "equipment",
    VehicleEntry: "vehicles",
    ElectricityEntry: "electricity",
    WaterEntry: "water",
    WasteEntry: "waste",
    SafetyEntry: "safety",
}


def _split_entries(entries: Iterable[RawActivityEntry]) -> dict[str, list]:
    buckets: dict[str, list] = {name: [] for name in set(_ENTRY_BUCKETS.values())}
    for entry in entries:
        bucket = _ENTRY_BUCKETS.get(type(entry))
        if bucket is None:
            raise TypeError(f"Cannot aggregate entry of type {type(entry).__name__}")
        buckets[bucket].append(entry)
    return buckets


def _sum_kg(results: list[EmissionResult]) -> float:
    return sum((r.emissions_kg_co2e for r in results), 0.0)


def _sum_quantity(results: list[EmissionResult]) -> float:
    return sum((r.quantity for r in results), 0.0)


def aggregate_period(
    project_id: str,
    period_key: str,
    entries: Iterable[RawActivityEntry],
    *,
    period_type: str = PERIOD_DAILY,
    factors: EmissionFactors = DEFAULT_FACTORS,
) -> PeriodAggregate:
    """
    Recompute the canonical aggregate of one period from its raw entries.

    Missing optional fields count as 0.  Waste entries must satisfy the
    per-type 100 % allocation rule.

    Raises
    ------
    AllocationExceededError
        If a waste type's treatment percentages exceed 100 %.
    TypeError
        If an entry is not a raw activity entry.
    """
    if period_type not in ALLOWED_PERIOD_TYPES:
        raise ValueError(f"period_type '{period_type}' is not allowed")

    entries = list(entries)
    buckets = _split_entries(entries)

    check_allocation_invariant(buckets["waste"])

    equipment = calc_equipment_emissions(buckets["equipment"], factors)
    electricity = calc_electricity_emissions(buckets["electricity"], factors)
    water = calc_water_emissions(buckets["water"], factors)
    logistics = calc_logistics_emissions(buckets["vehicles"], factors)
    waste = [summarize_waste_entry(e, factors) for e in buckets["waste"]]

    incidents = 0.0
    hours = 0.0
    for entry in buckets["safety"]:
        entry_incidents, entry_hours = safety_exposure(entry)
        incidents += entry_incidents
        hours += entry_hours

    warnings = tuple(
        f"No emission factor for waste type '{s.entry.waste_type}' "
        f"with treatment '{s.entry.treatment_method}'; counted as 0."
        for s in waste
        if s.low_confidence
    )

    equipment_kg = _sum_kg(equipment)
    logistics_kg = _sum_kg(logistics)
    water_kg = _sum_kg(water)
    waste_kg = total_waste_emissions(waste)
    avg_factor, avg_pct = weighted_waste_averages(waste)

    aggregate = PeriodAggregate(
        project_id=project_id,
        period_key=period_key,
        period_type=period_type,
        scope1_kg_co2e=equipment_kg,
        scope2_kg_co2e=_sum_kg(electricity),
        scope3_kg_co2e=water_kg + waste_kg + logistics_kg,
        equipment_emissions_kg=equipment_kg,
        logistics_emissions_kg=logistics_kg,
        water_emissions_kg=water_kg,
        waste_emissions_kg=waste_kg,
        fuel_liters=_sum_quantity(equipment),
        logistics_fuel_liters=_sum_quantity(logistics),
        electricity_kwh=_sum_quantity(electricity),
        water_m3=_sum_quantity(water),
        waste_kg=total_input_mass(waste),
        waste_allocated_kg=total_allocated_mass(waste),
        waste_avg_emission_factor=avg_factor,
        waste_avg_treatment_pct=avg_pct,
        incident_count=incidents,
        exposure_hours=hours,
        trir=compute_trir(incidents, hours),
        entry_count=len(entries),
        warnings=warnings,
    )
    logger.info(
        "Period %s/%s (%s) | Scope1=%.2f Scope2=%.2f Scope3=%.2f kg CO₂e | entries=%d",
        project_id, period_key, period_type,
        aggregate.scope1_kg_co2e, aggregate.scope2_kg_co2e, aggregate.scope3_kg_co2e,
        aggregate.entry_count,
    )
    return aggregate


def aggregate_periods(
    project_id: str,
    period_keys: Iterable[str],
    fetch_entries: Callable[[str, str], Iterable[RawActivityEntry]],
    *,
    period_type: str = PERIOD_DAILY,
    factors: EmissionFactors = DEFAULT_FACTORS,
) -> AggregationRun:
    """
    Aggregate several periods of one project.

    ``fetch_entries(project_id, period_key)`` supplies each period's raw
    entries.  A failed fetch or a rejected period is recorded in the run's
    ``failed_periods`` / ``errors`` and the remaining periods still aggregate.
    """
    run = AggregationRun()
    for period_key in period_keys:
        try:
            entries = list(fetch_entries(project_id, period_key))
            run.aggregates.append(
                aggregate_period(
                    project_id, period_key, entries,
                    period_type=period_type, factors=factors,
                )
            )
        except EngineError as exc:
            run.failed_periods[period_key] = str(exc)
            run.errors.append(f"{period_key}: {exc}")
            logger.error("Period %s rejected: %s", period_key, exc)
        except Exception as exc:  # noqa: BLE001 – store failures stay per-period
            run.failed_periods[period_key] = str(exc)
            run.errors.append(f"{period_key}: {exc}")
            logger.error("Period %s could not be read: %s", period_key, exc)

    logger.info(
        "aggregate_periods complete | project=%s periods=%d failed=%d",
        project_id, len(run.aggregates), len(run.failed_periods),
    )
    return run


# ─────────────────────────────────────────────────────────────────────────────
# Canonical period records
# ─────────────────────────────────────────────────────────────────────────────

class PeriodLedger:
    """
    In-memory canonical aggregate per (project, period type, period key).

    ``submit`` enforces one record per period; ``recompute`` swaps an
    existing record for a freshly computed one in a single assignment.
    """

    def __init__(self) -> None:
        self._records: dict[tuple[str, str, str], PeriodAggregate] = {}

    def __contains__(self, key: tuple[str, str, str]) -> bool:
        return key in self._records

    def __len__(self) -> int:
        return len(self._records)

    def get(self, project_id: str, period_type: str, period_key: str) -> PeriodAggregate | None:
        return self._records.get((project_id, period_type, period_key))

    def submit(self, aggregate: PeriodAggregate) -> PeriodAggregate:
        """Store a new period aggregate; reject a second one for the same period."""
        if aggregate.key in self._records:
            raise DuplicatePeriodError(
                aggregate.project_id, aggregate.period_key, aggregate.period_type
            )
        self._records[aggregate.key] = aggregate
        return aggregate

    def recompute(
        self,
        project_id: str,
        period_key: str,
        entries: Iterable[RawActivityEntry],
        *,
        period_type: str = PERIOD_DAILY,
        factors: EmissionFactors = DEFAULT_FACTORS,
    ) -> PeriodAggregate:
        """Rebuild a period from its raw entries and replace the stored record."""
        aggregate = aggregate_period(
            project_id, period_key, entries, period_type=period_type, factors=factors
        )
        self._records[aggregate.key] = aggregate
        return aggregate

    def for_project(self, project_id: str) -> list[PeriodAggregate]:
        return sorted(
            (a for a in self._records.values() if a.project_id == project_id),
            key=lambda a: (a.period_key, a.period_type),
        )


# ─────────────────────────────────────────────────────────────────────────────
# Project roll-ups
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ProjectTarget:
    """Benchmark values for a project (tCO₂e per scope, TRIR).  Comparison only."""
    project_id: str
    scope_one: float | None = None
    scope_two: float | None = None
    scope_three: float | None = None
    trir: float | None = None


@dataclass
class MonthlyRollup:
    """Daily and monthly aggregates of one calendar month, in tCO₂e."""
    month: str
    scope1_tco2e: float = 0.0
    scope2_tco2e: float = 0.0
    scope3_tco2e: float = 0.0
    equipment_tco2e: float = 0.0
    man_hours: float = 0.0
    incidents: float = 0.0
    electricity_kwh: float = 0.0
    water_m3: float = 0.0
    waste_kg: float = 0.0

    @property
    def total_tco2e(self) -> float:
        return self.scope1_tco2e + self.scope2_tco2e + self.scope3_tco2e


def rollup_by_month(aggregates: Iterable[PeriodAggregate]) -> list[MonthlyRollup]:
    """Group period aggregates by calendar month, oldest month first."""
    months: dict[str, MonthlyRollup] = {}
    for agg in aggregates:
        row = months.setdefault(agg.month_key, MonthlyRollup(month=agg.month_key))
        row.scope1_tco2e += agg.scope1_tco2e
        row.scope2_tco2e += agg.scope2_tco2e
        row.scope3_tco2e += agg.scope3_tco2e
        row.equipment_tco2e += agg.equipment_emissions_kg / KG_PER_TONNE
        row.man_hours += agg.exposure_hours
        row.incidents += agg.incident_count
        row.electricity_kwh += agg.electricity_kwh
        row.water_m3 += agg.water_m3
        row.waste_kg += agg.waste_kg
    return [months[m] for m in sorted(months)]


@dataclass
class ProjectSummary:
    """Cumulative actuals of a project plus monthly trend rows."""
    project_id: str
    target: ProjectTarget | None
    scope1_tco2e: float = 0.0
    scope2_tco2e: float = 0.0
    scope3_tco2e: float = 0.0
    total_incidents: float = 0.0
    total_hours: float = 0.0
    trir: float | None = None
    trends: list[dict[str, Any]] = field(default_factory=list)

    @property
    def total_tco2e(self) -> float:
        return self.scope1_tco2e + self.scope2_tco2e + self.scope3_tco2e


def summarize_project(
    project_id: str,
    aggregates: Iterable[PeriodAggregate],
    target: ProjectTarget | None = None,
) -> ProjectSummary:
    """
    Sum every period aggregate of *project_id* and build the monthly trend.

    *target* may be None (no benchmark); it never changes the actuals.
    """
    own = [a for a in aggregates if a.project_id == project_id]
    summary = ProjectSummary(project_id=project_id, target=target)
    for agg in own:
        summary.scope1_tco2e += agg.scope1_tco2e
        summary.scope2_tco2e += agg.scope2_tco2e
        summary.scope3_tco2e += agg.scope3_tco2e
        summary.total_incidents += agg.incident_count
        summary.total_hours += agg.exposure_hours
    summary.trir = compute_trir(summary.total_incidents, summary.total_hours)

    for row in rollup_by_month(own):
        summary.trends.append({
            "date": row.month,
            "scope_one": row.scope1_tco2e,
            "scope_two": row.scope2_tco2e,
            "scope_three": row.scope3_tco2e,
            "target_scope_one": target.scope_one if target else None,
            "target_scope_two": target.scope_two if target else None,
            "target_scope_three": target.scope_three if target else None,
        })
    return summary
