"""
db.py – PostgreSQL record store for site logs and period aggregates.

Tables are defined in schema/esg_logs.sql:
  daily_logs         one row per (project_id, log_date)
  monthly_logs       one row per (project_id, month)
  period_aggregates  canonical PeriodAggregate per (project, period_type, period_key)
  project_targets    optional benchmarks per project

Functions take an open psycopg2 connection; the caller owns it.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import psycopg2
import psycopg2.errors
from psycopg2.extras import Json

from site_esg.aggregation import PeriodAggregate, ProjectTarget, period_key_for
from site_esg.constants import PERIOD_DAILY, PERIOD_MONTHLY
from site_esg.errors import DuplicatePeriodError, MissingDataError
from site_esg.normalize import (
    ElectricityEntry,
    EquipmentEntry,
    LegacyEquipmentRecord,
    RawActivityEntry,
    SafetyEntry,
    VehicleEntry,
    WasteEntry,
    WaterEntry,
    equipment_fuel_liters,
)
from site_esg.schemas import DailyLogSubmission, MonthlyLogSubmission

logger = logging.getLogger(__name__)


def get_connection(database_url: str):
    """Return a psycopg2 connection. Caller must close it."""
    return psycopg2.connect(database_url)


def apply_schema(database_url: str, schema_path: Path | None = None) -> tuple[bool, str | None]:
    """
    Execute the schema SQL file against the database.
    Returns (True, None) on success, (False, error_message) on failure.
    """
    if schema_path is None:
        schema_path = Path(__file__).resolve().parent.parent / "schema" / "esg_logs.sql"
    if not schema_path.exists():
        return False, f"Schema file not found: {schema_path}"
    sql = schema_path.read_text(encoding="utf-8")
    try:
        conn = get_connection(database_url)
        conn.autocommit = True
        try:
            with conn.cursor() as cur:
                cur.execute(sql)
        finally:
            conn.close()
        return True, None
    except Exception as e:  # noqa: BLE001
        return False, str(e)


# ─────────────────────────────────────────────────────────────
# Log submission
# ─────────────────────────────────────────────────────────────

def insert_daily_log(conn, submission: DailyLogSubmission, equipment_factor: float) -> int:
    """
    Insert one daily log.  Return the new row id.

    Raises
    ------
    DuplicatePeriodError
        If the project already has a daily log for that date.
    """
    log_date = period_key_for(submission.date, PERIOD_DAILY)
    total_fuel = sum(equipment_fuel_liters(e.to_entry()) for e in submission.equipment)
    try:
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO daily_logs
                    (project_id, log_date, number_of_incidents, total_employee_hours,
                     equipment_fuel_consumed, equipment_emissions,
                     equipment_details, vehicle_details)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING id
                """,
                (
                    submission.project_id,
                    log_date,
                    submission.incident_count,
                    submission.hours_worked,
                    round(total_fuel, 6),
                    Json(round(total_fuel * equipment_factor, 6)),
                    Json([e.model_dump() for e in submission.equipment]),
                    Json([v.model_dump() for v in submission.vehicles]),
                ),
            )
            row = cur.fetchone()
    except psycopg2.errors.UniqueViolation:
        conn.rollback()
        raise DuplicatePeriodError(submission.project_id, log_date, PERIOD_DAILY) from None
    conn.commit()
    logger.info("Daily log stored | project=%s date=%s", submission.project_id, log_date)
    return row[0] if row else 0


def insert_monthly_log(conn, submission: MonthlyLogSubmission) -> int:
    """
    Insert one monthly log.  Return the new row id.

    Raises
    ------
    DuplicatePeriodError
        If the project already has a monthly log for that month.
    """
    month = period_key_for(submission.month, PERIOD_MONTHLY)
    try:
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO monthly_logs
                    (project_id, month, electricity_consumption, water_consumption, waste_details)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING id
                """,
                (
                    submission.project_id,
                    month,
                    submission.electricity_kwh,
                    submission.water_m3,
                    Json([w.model_dump() for w in submission.waste]),
                ),
            )
            row = cur.fetchone()
    except psycopg2.errors.UniqueViolation:
        conn.rollback()
        raise DuplicatePeriodError(submission.project_id, month, PERIOD_MONTHLY) from None
    conn.commit()
    logger.info("Monthly log stored | project=%s month=%s", submission.project_id, month)
    return row[0] if row else 0


# ─────────────────────────────────────────────────────────────
# Entry reconstruction
# ─────────────────────────────────────────────────────────────

def _daily_row_entries(row: tuple) -> list[RawActivityEntry]:
    (incidents, hours, fuel_consumed, equipment_emissions, scope_one,
     equipment_details, vehicle_details) = row
    entries: list[RawActivityEntry] = []

    details = equipment_details or []
    if details:
        for item in details:
            entries.append(EquipmentEntry(
                hours=item.get("hours"),
                fuel_rate=item.get("fuel_rate", item.get("fuelRate")),
                name=item.get("name") or "",
            ))
    elif equipment_emissions is not None or fuel_consumed is not None or scope_one is not None:
        # rows written before per-equipment details were kept
        entries.append(LegacyEquipmentRecord(
            equipment_emissions=equipment_emissions,
            equipment_fuel_consumed=fuel_consumed,
            scope_one=scope_one,
        ))

    for item in vehicle_details or []:
        entries.append(VehicleEntry(
            distance_km=item.get("distance_km"),
            fuel_rate=item.get("fuel_rate", item.get("fuelRate")),
            name=item.get("name") or "",
        ))

    if incidents is not None or hours is not None:
        entries.append(SafetyEntry(incident_count=incidents, employee_hours=hours))
    return entries


def _monthly_row_entries(row: tuple) -> list[RawActivityEntry]:
    electricity, water, waste_details = row
    entries: list[RawActivityEntry] = []
    if electricity is not None:
        entries.append(ElectricityEntry(kwh=electricity))
    if water is not None:
        entries.append(WaterEntry(cubic_m=water))
    for item in waste_details or []:
        entries.append(WasteEntry(
            mass=item.get("mass"),
            unit=item.get("unit") or "kg",
            waste_type=item.get("waste_type", item.get("wasteType")) or "",
            treatment_method=item.get("treatment_method", item.get("treatmentMethod")) or "",
            treatment_percentage=item.get(
                "treatment_percentage", item.get("treatmentPercentage")
            ),
            entry_id=str(item.get("id") or ""),
        ))
    return entries


def fetch_period_entries(
    conn, project_id: str, period_key: str, period_type: str = PERIOD_DAILY
) -> list[RawActivityEntry]:
    """Rebuild the raw entries stored for one project period."""
    with conn.cursor() as cur:
        if period_type == PERIOD_MONTHLY:
            cur.execute(
                """
                SELECT electricity_consumption, water_consumption, waste_details
                FROM monthly_logs
                WHERE project_id = %s AND month = %s
                ORDER BY id
                """,
                (project_id, period_key),
            )
            rows = cur.fetchall()
            return [e for row in rows for e in _monthly_row_entries(row)]

        cur.execute(
            """
            SELECT number_of_incidents, total_employee_hours, equipment_fuel_consumed,
                   equipment_emissions, scope_one, equipment_details, vehicle_details
            FROM daily_logs
            WHERE project_id = %s AND log_date = %s
            ORDER BY id
            """,
            (project_id, period_key),
        )
        rows = cur.fetchall()
    return [e for row in rows for e in _daily_row_entries(row)]


# ─────────────────────────────────────────────────────────────
# Aggregates and targets
# ─────────────────────────────────────────────────────────────

_AGGREGATE_COLUMNS = (
    "scope1_kg_co2e", "scope2_kg_co2e", "scope3_kg_co2e",
    "equipment_emissions_kg", "logistics_emissions_kg", "water_emissions_kg",
    "waste_emissions_kg", "fuel_liters", "logistics_fuel_liters",
    "electricity_kwh", "water_m3", "waste_kg", "waste_allocated_kg",
    "waste_avg_emission_factor", "waste_avg_treatment_pct",
    "incident_count", "exposure_hours", "trir", "entry_count",
)


def save_period_aggregate(conn, aggregate: PeriodAggregate) -> None:
    """Upsert *aggregate*; every stored column is replaced in one statement."""
    columns = ", ".join(_AGGREGATE_COLUMNS)
    placeholders = ", ".join(["%s"] * (3 + len(_AGGREGATE_COLUMNS)))
    updates = ",\n                ".join(f"{c} = EXCLUDED.{c}" for c in _AGGREGATE_COLUMNS)
    values: list[Any] = [aggregate.project_id, aggregate.period_type, aggregate.period_key]
    values.extend(getattr(aggregate, c) for c in _AGGREGATE_COLUMNS)

    with conn.cursor() as cur:
        cur.execute(
            f"""
            INSERT INTO period_aggregates
                (project_id, period_type, period_key, {columns})
            VALUES ({placeholders})
            ON CONFLICT (project_id, period_type, period_key)
            DO UPDATE SET
                {updates},
                calculated_at = NOW()
            """,
            tuple(values),
        )
    conn.commit()
    logger.info(
        "Aggregate saved | project=%s %s=%s total=%.4f tCO₂e",
        aggregate.project_id, aggregate.period_type, aggregate.period_key,
        aggregate.total_tco2e,
    )


def fetch_project_target(conn, project_id: str) -> ProjectTarget:
    """
    Load the benchmark row for *project_id*.

    Raises
    ------
    MissingDataError
        If the project has no target row.
    """
    with conn.cursor() as cur:
        cur.execute(
            """
            SELECT target_scope_one, target_scope_two, target_scope_three, target_trir
            FROM project_targets
            WHERE project_id = %s
            """,
            (project_id,),
        )
        row = cur.fetchone()
    if row is None:
        raise MissingDataError(f"No target recorded for project '{project_id}'")
    scope_one, scope_two, scope_three, trir = row
    return ProjectTarget(
        project_id=project_id,
        scope_one=_opt_float(scope_one),
        scope_two=_opt_float(scope_two),
        scope_three=_opt_float(scope_three),
        trir=_opt_float(trir),
    )


def _opt_float(value: Any) -> float | None:
    return float(value) if value is not None else None
