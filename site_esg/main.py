"""
main.py – CLI entry point for the site ESG emissions engine.

Usage
-----
Aggregate submissions from a JSON file:
    site-esg aggregate --file submissions.json
    site-esg aggregate --file submissions.json --factors-from-env

Monthly dashboard (KPIs, trend, scope mix):
    site-esg dashboard --file submissions.json

Safety rate:
    site-esg trir --incidents 2 --hours 45000

Metered electricity against the national grid factor (ESG_ELECTRICAL_FACTOR_KG_PER_KWH):
    site-esg electrical --kwh 2000

Re-aggregate one stored period, save it and compare the project against its
targets (requires DATABASE_URL):
    site-esg sync --project P-001 --period 2024-05-02
    site-esg sync --project P-001 --period 2024-05 --period-type monthly --dry-run

Apply schema/esg_logs.sql:
    site-esg init-db

A submissions file is a JSON list; objects with a "month" key are monthly
logs, everything else is read as a daily log.
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from pydantic import ValidationError as SchemaError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from site_esg.aggregation import (
    PeriodAggregate,
    PeriodLedger,
    ProjectSummary,
    ProjectTarget,
    aggregate_period,
    aggregate_periods,
    period_key_for,
    rollup_by_month,
    summarize_project,
)
from site_esg.analytics import TargetComparison, build_dashboard, compare_to_target
from site_esg.config import get_config
from site_esg.constants import ALLOWED_PERIOD_TYPES, PERIOD_DAILY
from site_esg.db import (
    apply_schema,
    fetch_period_entries,
    fetch_project_target,
    get_connection,
    save_period_aggregate,
)
from site_esg.electrical import calc_electrical_emissions, format_emissions
from site_esg.emission_factors import DEFAULT_FACTORS
from site_esg.errors import EngineError, MissingDataError
from site_esg.safety import compute_trir
from site_esg.schemas import DailyLogSubmission, MonthlyLogSubmission, Submission

console = Console()
logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────

def load_submissions(path: Path) -> list[Submission]:
    """Read and validate a JSON list of daily / monthly submissions."""
    raw = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(raw, dict):
        raw = [raw]
    submissions: list[Submission] = []
    for item in raw:
        if "month" in item:
            submissions.append(MonthlyLogSubmission.model_validate(item))
        else:
            submissions.append(DailyLogSubmission.model_validate(item))
    return submissions


def aggregate_submissions(
    submissions: list[Submission], factors=DEFAULT_FACTORS
) -> tuple[list[PeriodAggregate], list[str]]:
    """
    Aggregate each submission into a ledger.  Returns the stored aggregates
    and one error line per rejected submission.
    """
    ledger = PeriodLedger()
    errors: list[str] = []
    for sub in submissions:
        try:
            key = period_key_for(sub.date, sub.period_type)
            aggregate = aggregate_period(
                sub.project_id, key, sub.to_entries(),
                period_type=sub.period_type, factors=factors,
            )
            ledger.submit(aggregate)
        except (EngineError, ValueError) as exc:
            errors.append(f"{sub.project_id} {sub.date}: {exc}")
            logger.error("Submission rejected: %s", exc)
    aggregates = [a for p in sorted({s.project_id for s in submissions}) for a in ledger.for_project(p)]
    return aggregates, errors


def _print_aggregates(aggregates: list[PeriodAggregate]) -> None:
    table = Table(title="Period aggregates", show_lines=True)
    table.add_column("Project", style="bold")
    table.add_column("Period")
    table.add_column("Type", style="dim")
    table.add_column("Scope 1 (t)", justify="right")
    table.add_column("Scope 2 (t)", justify="right")
    table.add_column("Scope 3 (t)", justify="right")
    table.add_column("Total", justify="right", style="green")
    table.add_column("TRIR", justify="right")
    for agg in aggregates:
        table.add_row(
            agg.project_id,
            agg.period_key,
            agg.period_type,
            f"{agg.scope1_tco2e:.4f}",
            f"{agg.scope2_tco2e:.4f}",
            f"{agg.scope3_tco2e:.4f}",
            format_emissions(agg.total_kg_co2e),
            f"{agg.trir:.2f}" if agg.trir is not None else "n/a",
        )
    console.print(table)
    for agg in aggregates:
        for warning in agg.warnings:
            console.print(f"[yellow]Warning[/] {agg.project_id} {agg.period_key}: {warning}")


def _print_errors(errors: list[str]) -> None:
    for line in errors:
        console.print(f"[red]Error:[/] {line}")


def load_target(conn, project_id: str) -> ProjectTarget | None:
    """Stored benchmark for *project_id*, or None when the project has none."""
    try:
        return fetch_project_target(conn, project_id)
    except MissingDataError as exc:
        logger.info("%s; comparing without a benchmark", exc)
        return None


def target_comparisons(summary: ProjectSummary) -> dict[str, TargetComparison]:
    """Per-scope actual vs target for a project summary."""
    target = summary.target
    return {
        "Scope 1": compare_to_target(summary.scope1_tco2e, target.scope_one if target else None),
        "Scope 2": compare_to_target(summary.scope2_tco2e, target.scope_two if target else None),
        "Scope 3": compare_to_target(summary.scope3_tco2e, target.scope_three if target else None),
    }


# ─────────────────────────────────────────────────────────────
# Commands
# ─────────────────────────────────────────────────────────────

def cmd_aggregate(args: argparse.Namespace) -> int:
    """Handle: site-esg aggregate --file submissions.json"""
    path = Path(args.file)
    if not path.exists():
        console.print(f"[red]Error:[/] file not found: {path}")
        return 1
    try:
        submissions = load_submissions(path)
    except (json.JSONDecodeError, SchemaError) as exc:
        console.print(f"[red]Invalid submissions file:[/] {exc}")
        return 1

    factors = get_config().factors() if args.factors_from_env else DEFAULT_FACTORS
    aggregates, errors = aggregate_submissions(submissions, factors)
    _print_aggregates(aggregates)
    _print_errors(errors)
    return 1 if errors else 0


def cmd_dashboard(args: argparse.Namespace) -> int:
    """Handle: site-esg dashboard --file submissions.json"""
    path = Path(args.file)
    if not path.exists():
        console.print(f"[red]Error:[/] file not found: {path}")
        return 1
    try:
        submissions = load_submissions(path)
    except (json.JSONDecodeError, SchemaError) as exc:
        console.print(f"[red]Invalid submissions file:[/] {exc}")
        return 1

    aggregates, errors = aggregate_submissions(submissions)
    dashboard = build_dashboard(rollup_by_month(aggregates))

    kpis = dashboard.kpis
    console.print(Panel(
        f"Total emissions: [bold]{kpis['total_emissions']:.4f}[/] tCO₂e\n"
        f"MoM change: {kpis['mom_change']:+.2f}%\n"
        f"Intensity: {kpis['intensity']:.6f} tCO₂e / man-hour\n"
        f"Resource consumption: {kpis['resource_consumption']:.2f} (kWh + m³)\n"
        f"Safety index: {kpis['safety_index']:.0f} incidents",
        title="KPIs",
        style="blue",
    ))

    table = Table(title="Monthly emissions (tCO₂e)")
    table.add_column("Month", style="cyan")
    for col in ("Scope 1", "Scope 2", "Scope 3", "Total", "Trend", "Intensity"):
        table.add_column(col, justify="right")
    for row in dashboard.rows:
        table.add_row(
            row["month"],
            f"{row['scope1']:.4f}",
            f"{row['scope2']:.4f}",
            f"{row['scope3']:.4f}",
            f"{row['total']:.4f}",
            f"{row['trend']:+.4f}",
            f"{row['intensity']:.6f}",
        )
    console.print(table)
    _print_errors(errors)
    return 1 if errors else 0


def cmd_trir(args: argparse.Namespace) -> int:
    """Handle: site-esg trir --incidents N --hours H"""
    rate = compute_trir(args.incidents, args.hours)
    if rate is None:
        console.print("[yellow]TRIR undefined:[/] no employee hours recorded.")
        return 0
    console.print(f"TRIR: [bold]{rate:.2f}[/] per 200,000 hours")
    return 0


def cmd_electrical(args: argparse.Namespace) -> int:
    """Handle: site-esg electrical --kwh N"""
    try:
        cfg = get_config()
    except EnvironmentError as exc:
        console.print(f"[red]Configuration error:[/] {exc}")
        return 1
    factor = cfg.electrical_factor_kg_per_kwh
    try:
        kg_co2e = calc_electrical_emissions(args.kwh, factor)
    except EngineError as exc:
        console.print(f"[red]Error:[/] {exc}")
        return 1
    console.print(
        f"{args.kwh:,.2f} kWh × {factor} kg CO₂e/kWh = [bold]{format_emissions(kg_co2e)}[/]"
    )
    return 0


def cmd_sync(args: argparse.Namespace) -> int:
    """Handle: site-esg sync --project ID --period KEY"""
    try:
        cfg = get_config(database_url=args.database_url)
    except EnvironmentError as exc:
        console.print(f"[red]Configuration error:[/] {exc}")
        return 1
    if not cfg.database_url:
        console.print(
            "[red]Error:[/] DATABASE_URL is not set. Set it in .env or pass --database-url."
        )
        return 1

    try:
        period_key = period_key_for(args.period, args.period_type)
    except ValueError as exc:
        console.print(f"[red]Error:[/] {exc}")
        return 1

    conn = get_connection(cfg.database_url)
    try:
        run = aggregate_periods(
            args.project,
            [period_key],
            lambda project, key: fetch_period_entries(conn, project, key, args.period_type),
            period_type=args.period_type,
            factors=cfg.factors(),
        )
        _print_aggregates(run.aggregates)
        if args.dry_run:
            console.print("[cyan]Dry run: nothing written.[/]")
        else:
            for aggregate in run.aggregates:
                save_period_aggregate(conn, aggregate)
            console.print(f"[green]Saved {len(run.aggregates)} aggregate(s).[/]")

        summary = summarize_project(args.project, run.aggregates, load_target(conn, args.project))
        for label, comparison in target_comparisons(summary).items():
            console.print(comparison.describe(label))
    finally:
        conn.close()

    _print_errors(run.errors)
    return 0 if run.ok else 1


def cmd_init_db(args: argparse.Namespace) -> int:
    """Handle: site-esg init-db"""
    try:
        cfg = get_config(database_url=args.database_url)
    except EnvironmentError as exc:
        console.print(f"[red]Configuration error:[/] {exc}")
        return 1
    if not cfg.database_url:
        console.print(
            "[red]Error:[/] DATABASE_URL is not set. Set it in .env or pass --database-url."
        )
        return 1
    console.print("[cyan]Applying schema (schema/esg_logs.sql) …[/]")
    ok, err = apply_schema(cfg.database_url)
    if ok:
        console.print("[green]Schema applied successfully.[/]")
        return 0
    console.print(f"[red]Schema apply failed:[/] {err}")
    return 1


# ─────────────────────────────────────────────────────────────
# Argument parsing
# ─────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    """Construct and return the top-level argument parser."""
    root = argparse.ArgumentParser(
        prog="site-esg",
        description="Construction site ESG emissions accounting.",
    )
    root.add_argument(
        "--verbose",
        action="store_true",
        default=False,
        help="Log per-entry arithmetic (DEBUG level)",
    )
    sub = root.add_subparsers(dest="command", required=True)

    # ── aggregate ──────────────────────────────────────────────
    p_agg = sub.add_parser("aggregate", help="Aggregate submissions from a JSON file.")
    p_agg.add_argument("--file", required=True, help="Path to a submissions JSON file")
    p_agg.add_argument(
        "--factors-from-env",
        action="store_true",
        default=False,
        dest="factors_from_env",
        help="Use ESG_*_FACTOR overrides from the environment",
    )

    # ── dashboard ──────────────────────────────────────────────
    p_dash = sub.add_parser("dashboard", help="Monthly KPIs and trend from a JSON file.")
    p_dash.add_argument("--file", required=True, help="Path to a submissions JSON file")

    # ── trir ───────────────────────────────────────────────────
    p_trir = sub.add_parser("trir", help="Compute a Total Recordable Incident Rate.")
    p_trir.add_argument("--incidents", type=float, required=True)
    p_trir.add_argument("--hours", type=float, required=True)

    # ── electrical ─────────────────────────────────────────────
    p_elec = sub.add_parser(
        "electrical",
        help="Emissions of metered electricity at the national grid factor.",
    )
    p_elec.add_argument("--kwh", type=float, required=True, help="Electricity consumed in kWh")

    # ── sync (store → aggregate → store) ───────────────────────
    p_sync = sub.add_parser(
        "sync",
        help="Re-aggregate one stored period and save it (requires DATABASE_URL).",
    )
    p_sync.add_argument("--project", required=True, help="Project identifier")
    p_sync.add_argument("--period", required=True, help="Date or month of the period")
    p_sync.add_argument(
        "--period-type",
        dest="period_type",
        choices=sorted(ALLOWED_PERIOD_TYPES),
        default=PERIOD_DAILY,
    )
    p_sync.add_argument("--database-url", dest="database_url", default=None)
    p_sync.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        dest="dry_run",
        help="Print the aggregate, write nothing",
    )

    # ── init-db ────────────────────────────────────────────────
    p_init = sub.add_parser("init-db", help="Apply schema/esg_logs.sql to the database.")
    p_init.add_argument("--database-url", dest="database_url", default=None)

    return root


# ─────────────────────────────────────────────────────────────
# Entry point
# ─────────────────────────────────────────────────────────────

_DISPATCH = {
    "aggregate": cmd_aggregate,
    "dashboard": cmd_dashboard,
    "trir": cmd_trir,
    "electrical": cmd_electrical,
    "sync": cmd_sync,
    "init-db": cmd_init_db,
}


def main(argv: list[str] | None = None) -> None:
    """Parse arguments and dispatch to the correct sub-command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        cfg = get_config()
    except EnvironmentError as exc:
        console.print(f"[red]Configuration error:[/] {exc}")
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else cfg.log_level_value,
        format="%(asctime)s  %(levelname)-8s  %(message)s",
        datefmt="%H:%M:%S",
    )

    handler = _DISPATCH.get(args.command)
    if handler is None:
        parser.print_help()
        sys.exit(1)

    sys.exit(handler(args))


if __name__ == "__main__":
    main()
