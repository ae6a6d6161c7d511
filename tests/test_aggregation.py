"""
Unit tests for site_esg/aggregation.py

Every test builds raw entries in memory; no store is involved.
"""
from datetime import date

import pytest

from site_esg.aggregation import (
    PeriodAggregate,
    PeriodLedger,
    ProjectTarget,
    aggregate_period,
    aggregate_periods,
    calc_electricity_emissions,
    calc_equipment_emissions,
    period_key_for,
    rollup_by_month,
    summarize_project,
)
from site_esg.emission_factors import EmissionFactors
from site_esg.errors import AllocationExceededError, DuplicatePeriodError
from site_esg.normalize import (
    ElectricityEntry,
    EquipmentEntry,
    LegacyEquipmentRecord,
    SafetyEntry,
    VehicleEntry,
    WasteEntry,
    WaterEntry,
)


def mixed_entries():
    return [
        EquipmentEntry(hours=8, fuel_rate=5, name="Excavator"),
        ElectricityEntry(kwh=2000),
        WaterEntry(cubic_m=100),
        VehicleEntry(distance_km=100, fuel_rate=0.1),
        WasteEntry(mass=1, unit="ton", waste_type="Other",
                   treatment_method="recycling", treatment_percentage=50),
        SafetyEntry(incident_count=1, employee_hours=8000),
    ]


# ─────────────────────────────────────────────────────────────────────────────
# Per-source calculations
# ─────────────────────────────────────────────────────────────────────────────

class TestPerSourceCalculations:

    def test_equipment_result_fields(self):
        [result] = calc_equipment_emissions([EquipmentEntry(hours=8, fuel_rate=5)])
        assert result.scope == 1
        assert result.quantity == pytest.approx(40.0)
        assert result.emissions_kg_co2e == pytest.approx(107.2)
        assert result.emissions_metric_tons == pytest.approx(0.1072)

    def test_legacy_equipment_uses_stored_value(self):
        [result] = calc_equipment_emissions([LegacyEquipmentRecord(equipment_emissions=50)])
        assert result.emissions_kg_co2e == pytest.approx(50.0)

    def test_electricity_scope_2(self):
        [result] = calc_electricity_emissions([ElectricityEntry(kwh=2000)])
        assert result.scope == 2
        assert result.factor_used == pytest.approx(0.507)
        assert result.emissions_kg_co2e == pytest.approx(1014.0)


# ─────────────────────────────────────────────────────────────────────────────
# aggregate_period
# ─────────────────────────────────────────────────────────────────────────────

class TestAggregatePeriod:

    def test_daily_equipment_scenario(self):
        # 8 h × 5 L/h = 40 L; × 2.68 = 107.2 kg CO₂e
        agg = aggregate_period("P1", "2024-05-02", [EquipmentEntry(hours=8, fuel_rate=5)])
        assert agg.fuel_liters == pytest.approx(40.0)
        assert agg.scope1_kg_co2e == pytest.approx(107.2)
        assert agg.scope2_kg_co2e == 0.0
        assert agg.scope3_kg_co2e == 0.0

    def test_monthly_electricity_scenario(self):
        agg = aggregate_period("P1", "2024-05", [ElectricityEntry(kwh=2000)], period_type="monthly")
        assert agg.scope2_kg_co2e == pytest.approx(1014.0)
        assert agg.electricity_kwh == pytest.approx(2000.0)

    def test_scope_3_components(self):
        agg = aggregate_period("P1", "2024-05", mixed_entries())
        assert agg.water_emissions_kg == pytest.approx(26.4)       # 100 m³ × 0.264
        assert agg.logistics_emissions_kg == pytest.approx(26.8)   # 10 L × 2.68
        assert agg.waste_emissions_kg == pytest.approx(60.0)       # 500 kg × 0.12
        assert agg.scope3_kg_co2e == pytest.approx(26.4 + 26.8 + 60.0)
        assert agg.logistics_fuel_liters == pytest.approx(10.0)

    def test_totals_and_tonnes(self):
        agg = aggregate_period("P1", "2024-05", mixed_entries())
        expected = 107.2 + 1014.0 + 26.4 + 26.8 + 60.0
        assert agg.total_kg_co2e == pytest.approx(expected)
        assert agg.total_tco2e == pytest.approx(expected / 1000)
        assert agg.entry_count == 6

    def test_waste_summary_fields(self):
        agg = aggregate_period("P1", "2024-05", mixed_entries())
        assert agg.waste_kg == pytest.approx(1000.0)
        assert agg.waste_allocated_kg == pytest.approx(500.0)
        assert agg.waste_avg_emission_factor == pytest.approx(0.12)
        assert agg.waste_avg_treatment_pct == pytest.approx(50.0)

    def test_trir_from_safety_entries(self):
        entries = [SafetyEntry(2, 50_000), SafetyEntry(3, 50_000)]
        agg = aggregate_period("P1", "2024-05-02", entries)
        assert agg.incident_count == 5
        assert agg.exposure_hours == 100_000
        assert agg.trir == pytest.approx(10.0)

    def test_trir_undefined_without_hours(self):
        agg = aggregate_period("P1", "2024-05-02", [EquipmentEntry(1, 1)])
        assert agg.trir is None

    def test_is_idempotent(self):
        first = aggregate_period("P1", "2024-05", mixed_entries())
        second = aggregate_period("P1", "2024-05", mixed_entries())
        assert first == second

    def test_malformed_numbers_contribute_zero(self):
        entries = [EquipmentEntry(hours="abc", fuel_rate=5), ElectricityEntry(kwh="")]
        agg = aggregate_period("P1", "2024-05-02", entries)
        assert agg.total_kg_co2e == 0.0
        assert agg.entry_count == 2

    def test_over_allocated_waste_raises(self):
        entries = [
            WasteEntry(10, "kg", "Plastic", "landfill", 70),
            WasteEntry(10, "kg", "Plastic", "recycling", 40),
        ]
        with pytest.raises(AllocationExceededError):
            aggregate_period("P1", "2024-05", entries)

    def test_stored_negative_percentage_cannot_hide_over_allocation(self):
        entries = [
            WasteEntry(100, "kg", "Plastic", "landfill", -50),
            WasteEntry(100, "kg", "Plastic", "recycling", 100),
            WasteEntry(100, "kg", "Plastic", "incineration", 50),
        ]
        with pytest.raises(AllocationExceededError):
            aggregate_period("P1", "2024-05", entries, period_type="monthly")

    def test_missing_waste_factor_adds_warning(self):
        entries = [WasteEntry(10, "kg", "Concrete", "reuse", 100)]
        agg = aggregate_period("P1", "2024-05", entries)
        assert agg.waste_emissions_kg == 0.0
        assert len(agg.warnings) == 1
        assert "Concrete" in agg.warnings[0]

    def test_injected_factors(self):
        factors = EmissionFactors(grid_kg_per_kwh=0.7)
        agg = aggregate_period("P1", "2024-05", [ElectricityEntry(2000)], factors=factors)
        assert agg.scope2_kg_co2e == pytest.approx(1400.0)

    def test_unknown_entry_type_raises(self):
        with pytest.raises(TypeError):
            aggregate_period("P1", "2024-05", [object()])

    def test_unknown_period_type_raises(self):
        with pytest.raises(ValueError):
            aggregate_period("P1", "2024-05", [], period_type="weekly")

    def test_aggregate_is_frozen(self):
        agg = aggregate_period("P1", "2024-05", [])
        with pytest.raises(AttributeError):
            agg.scope1_kg_co2e = 1.0


# ─────────────────────────────────────────────────────────────────────────────
# Period keys
# ─────────────────────────────────────────────────────────────────────────────

class TestPeriodKeyFor:

    def test_daily_from_timestamp(self):
        assert period_key_for("2024-05-02T13:45:00") == "2024-05-02"

    def test_monthly_from_date_string(self):
        assert period_key_for("May 2, 2024", "monthly") == "2024-05"

    def test_date_object(self):
        assert period_key_for(date(2024, 1, 31), "daily") == "2024-01-31"

    def test_unparsable_timestamp(self):
        with pytest.raises(ValueError, match="Could not parse"):
            period_key_for("not a date")

    def test_unknown_period_type(self):
        with pytest.raises(ValueError, match="not allowed"):
            period_key_for("2024-05-02", "weekly")


# ─────────────────────────────────────────────────────────────────────────────
# PeriodLedger
# ─────────────────────────────────────────────────────────────────────────────

class TestPeriodLedger:

    def test_duplicate_submission_rejected(self):
        ledger = PeriodLedger()
        ledger.submit(aggregate_period("P1", "2024-05-02", [EquipmentEntry(8, 5)]))
        with pytest.raises(DuplicatePeriodError) as exc_info:
            ledger.submit(aggregate_period("P1", "2024-05-02", [EquipmentEntry(1, 1)]))
        assert exc_info.value.project_id == "P1"
        assert exc_info.value.period_key == "2024-05-02"
        # first record kept
        assert ledger.get("P1", "daily", "2024-05-02").fuel_liters == pytest.approx(40.0)

    def test_daily_and_monthly_keys_are_distinct(self):
        ledger = PeriodLedger()
        ledger.submit(aggregate_period("P1", "2024-05", [], period_type="daily"))
        ledger.submit(aggregate_period("P1", "2024-05", [], period_type="monthly"))
        assert len(ledger) == 2

    def test_recompute_replaces_whole_record(self):
        ledger = PeriodLedger()
        ledger.submit(aggregate_period("P1", "2024-05-02", [EquipmentEntry(8, 5)]))
        updated = ledger.recompute("P1", "2024-05-02", [ElectricityEntry(100)])
        stored = ledger.get("P1", "daily", "2024-05-02")
        assert stored is updated
        assert stored.scope1_kg_co2e == 0.0
        assert stored.electricity_kwh == pytest.approx(100.0)

    def test_for_project_sorted(self):
        ledger = PeriodLedger()
        for key in ("2024-05-03", "2024-05-01", "2024-05-02"):
            ledger.submit(aggregate_period("P1", key, []))
        ledger.submit(aggregate_period("P2", "2024-05-01", []))
        keys = [a.period_key for a in ledger.for_project("P1")]
        assert keys == ["2024-05-01", "2024-05-02", "2024-05-03"]


# ─────────────────────────────────────────────────────────────────────────────
# aggregate_periods: per-period failures are isolated
# ─────────────────────────────────────────────────────────────────────────────

class TestAggregatePeriods:

    def test_fetch_failure_isolated(self):
        def fetch(project_id, period_key):
            if period_key == "2024-05-02":
                raise RuntimeError("connection reset")
            return [EquipmentEntry(8, 5)]

        run = aggregate_periods("P1", ["2024-05-01", "2024-05-02", "2024-05-03"], fetch)
        assert [a.period_key for a in run.aggregates] == ["2024-05-01", "2024-05-03"]
        assert "2024-05-02" in run.failed_periods
        assert "connection reset" in run.errors[0]
        assert run.ok is False

    def test_rejected_period_isolated(self):
        bad = [
            WasteEntry(10, "kg", "Plastic", "landfill", 80),
            WasteEntry(10, "kg", "Plastic", "compost", 80),
        ]
        run = aggregate_periods(
            "P1", ["2024-04", "2024-05"],
            lambda p, k: bad if k == "2024-04" else [ElectricityEntry(10)],
            period_type="monthly",
        )
        assert list(run.failed_periods) == ["2024-04"]
        assert len(run.aggregates) == 1

    def test_all_ok(self):
        run = aggregate_periods("P1", ["2024-05-01"], lambda p, k: [])
        assert run.ok is True
        assert run.errors == []


# ─────────────────────────────────────────────────────────────────────────────
# Project roll-ups
# ─────────────────────────────────────────────────────────────────────────────

class TestProjectRollups:

    def _aggregates(self):
        return [
            aggregate_period("P1", "2024-05-01", [EquipmentEntry(8, 5), SafetyEntry(1, 100_000)]),
            aggregate_period("P1", "2024-05-02", [EquipmentEntry(8, 5), SafetyEntry(0, 100_000)]),
            aggregate_period("P1", "2024-05", [ElectricityEntry(2000)], period_type="monthly"),
            aggregate_period("P1", "2024-06-01", [WaterEntry(1000)]),
            aggregate_period("P2", "2024-05-01", [ElectricityEntry(99_999)]),
        ]

    def test_rollup_by_month(self):
        rows = rollup_by_month(a for a in self._aggregates() if a.project_id == "P1")
        assert [r.month for r in rows] == ["2024-05", "2024-06"]
        may = rows[0]
        assert may.scope1_tco2e == pytest.approx(0.2144)
        assert may.scope2_tco2e == pytest.approx(1.014)
        assert may.man_hours == pytest.approx(200_000)
        assert may.incidents == 1
        assert rows[1].water_m3 == pytest.approx(1000.0)

    def test_summarize_project_actuals(self):
        summary = summarize_project("P1", self._aggregates())
        assert summary.scope1_tco2e == pytest.approx(0.2144)
        assert summary.scope2_tco2e == pytest.approx(1.014)
        assert summary.scope3_tco2e == pytest.approx(0.264)
        # 1 incident × 200,000 / 200,000 h
        assert summary.trir == pytest.approx(1.0)
        assert len(summary.trends) == 2

    def test_summary_without_target(self):
        summary = summarize_project("P1", self._aggregates())
        assert summary.target is None
        assert summary.trends[0]["target_scope_one"] is None

    def test_summary_with_target(self):
        target = ProjectTarget("P1", scope_one=5.0, scope_two=2.0)
        summary = summarize_project("P1", self._aggregates(), target)
        assert summary.trends[0]["target_scope_one"] == 5.0
        assert summary.trends[1]["target_scope_three"] is None

    def test_summary_trir_none_without_hours(self):
        summary = summarize_project("P9", [PeriodAggregate("P9", "2024-05-01", "daily")])
        assert summary.trir is None
