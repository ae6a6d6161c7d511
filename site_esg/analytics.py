"""
analytics.py – Trend, month-over-month and intensity metrics over a period series.

 Metric              Formula
 ─────────────────────────────────────────────────────────────────────────
 Carbon intensity    emissions / labor_hours            (0 when hours = 0)
 MoM change          (current − previous) / previous × 100  (0 when previous = 0)
 Trend line          OLS of value against 0-based index; trend_i = slope × i

The trend series is pinned to the origin (the intercept is subtracted), so a
flat series yields a flat zero line and the series shows the drift only.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from site_esg.aggregation import MonthlyRollup
from site_esg.constants import (
    TARGET_ABOVE,
    TARGET_BELOW,
    TARGET_NO_BENCHMARK,
    TARGET_NO_DATA,
)
from site_esg.normalize import to_number, to_quantity

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────
# Scalar metrics
# ─────────────────────────────────────────────────────────────

def carbon_intensity(emissions: Any, labor_hours: Any) -> float:
    """Emissions per labor-hour; 0.0 when no hours were logged."""
    hours = to_quantity(labor_hours)
    if hours <= 0:
        return 0.0
    return to_quantity(emissions) / hours


def compute_mom(current: Any, previous: Any) -> float:
    """Month-over-month change in percent; 0.0 when there is no previous value."""
    prev = to_number(previous) or 0.0
    if prev == 0:
        return 0.0
    return ((to_number(current) or 0.0) - prev) / prev * 100


# ─────────────────────────────────────────────────────────────
# Linear trend
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TrendLine:
    slope: float
    intercept: float
    trend_series: tuple[float, ...] = ()


def compute_trend(series: Sequence[Any]) -> TrendLine:
    """
    Ordinary least-squares fit of *series* against its index.

    Fewer than two points give slope = intercept = 0.  Malformed values
    count as 0.
    """
    values = [to_number(v) or 0.0 for v in series]
    n = len(values)
    if n < 2:
        return TrendLine(0.0, 0.0, tuple(0.0 for _ in values))

    sum_x = n * (n - 1) / 2
    sum_y = sum(values)
    sum_xy = sum(i * y for i, y in enumerate(values))
    sum_xx = sum(i * i for i in range(n))

    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_xx - sum_x * sum_x)
    intercept = (sum_y - slope * sum_x) / n
    trend = tuple(slope * i + intercept - intercept for i in range(n))
    return TrendLine(slope, intercept, trend)


# ─────────────────────────────────────────────────────────────
# Dashboard
# ─────────────────────────────────────────────────────────────

@dataclass
class Dashboard:
    rows: list[dict[str, Any]] = field(default_factory=list)
    kpis: dict[str, float] = field(default_factory=dict)
    scope_mix: dict[str, float] = field(default_factory=dict)
    trend: TrendLine = field(default_factory=lambda: TrendLine(0.0, 0.0))


def build_dashboard(month_rows: Iterable[MonthlyRollup]) -> Dashboard:
    """
    Build the emissions dashboard from monthly roll-ups (oldest first).

    KPIs: ``total_emissions`` (tCO₂e), ``mom_change`` between the last two
    months, ``intensity`` (tCO₂e per man-hour), ``resource_consumption``
    (kWh + m³) and ``safety_index`` (incident count).
    """
    months = list(month_rows)
    totals = [m.total_tco2e for m in months]
    trend = compute_trend(totals)

    rows = [
        {
            "month": m.month,
            "scope1": m.scope1_tco2e,
            "scope2": m.scope2_tco2e,
            "scope3": m.scope3_tco2e,
            "total": m.total_tco2e,
            "trend": trend.trend_series[i],
            "intensity": carbon_intensity(m.total_tco2e, m.man_hours),
        }
        for i, m in enumerate(months)
    ]

    total_emissions = sum(totals)
    total_hours = sum(m.man_hours for m in months)
    mom = compute_mom(totals[-1], totals[-2]) if len(totals) >= 2 else 0.0

    kpis = {
        "total_emissions": total_emissions,
        "mom_change": mom,
        "intensity": carbon_intensity(total_emissions, total_hours),
        "resource_consumption": sum(m.electricity_kwh + m.water_m3 for m in months),
        "safety_index": sum(m.incidents for m in months),
    }
    scope_mix = {
        "scope1": sum(m.scope1_tco2e for m in months),
        "scope2": sum(m.scope2_tco2e for m in months),
        "scope3": sum(m.scope3_tco2e for m in months),
    }
    logger.info(
        "Dashboard | months=%d total=%.4f tCO₂e MoM=%.2f%% slope=%.4f",
        len(months), total_emissions, mom, trend.slope,
    )
    return Dashboard(rows=rows, kpis=kpis, scope_mix=scope_mix, trend=trend)


# ─────────────────────────────────────────────────────────────
# Target comparison
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TargetComparison:
    actual: float
    target: float | None
    status: str
    difference: float | None = None     # target − actual

    def describe(self, label: str = "Emissions") -> str:
        if self.status == TARGET_BELOW:
            return f"{label} of {self.actual:.2f} tCO2e stayed below the target of {self.target:.2f}."
        if self.status == TARGET_ABOVE:
            return f"{label} of {self.actual:.2f} tCO2e exceeded the target of {self.target:.2f}."
        if self.status == TARGET_NO_BENCHMARK:
            return f"{label} of {self.actual:.2f} tCO2e were recorded without a defined benchmark."
        return f"No {label.lower()} data recorded."


def compare_to_target(actual: Any, target: Any) -> TargetComparison:
    """Compare an actual value against an optional positive target."""
    actual_value = to_quantity(actual)
    target_value = to_number(target)
    if target_value is not None and target_value > 0:
        status = TARGET_BELOW if actual_value <= target_value else TARGET_ABOVE
        return TargetComparison(actual_value, target_value, status, target_value - actual_value)
    if actual_value > 0:
        return TargetComparison(actual_value, None, TARGET_NO_BENCHMARK)
    return TargetComparison(actual_value, None, TARGET_NO_DATA)
