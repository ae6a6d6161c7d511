"""
Unit tests for site_esg/main.py
"""
import argparse
import json
import logging
from unittest.mock import MagicMock

import pytest

from site_esg import main as cli
from site_esg.aggregation import ProjectSummary, ProjectTarget
from site_esg.constants import TARGET_ABOVE, TARGET_BELOW, TARGET_NO_BENCHMARK
from site_esg.main import (
    aggregate_submissions,
    cmd_init_db,
    load_submissions,
    load_target,
    main,
    target_comparisons,
)
from site_esg.normalize import EquipmentEntry
from site_esg.schemas import DailyLogSubmission, MonthlyLogSubmission

_VARS = (
    "DATABASE_URL",
    "ESG_LOG_LEVEL",
    "ESG_EQUIPMENT_FACTOR_KG_PER_LITER",
    "ESG_GRID_FACTOR_KG_PER_KWH",
    "ESG_WATER_FACTOR_KG_PER_M3",
    "ESG_ELECTRICAL_FACTOR_KG_PER_KWH",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)


def make_conn(fetchone_row=None):
    """Mock psycopg2 connection whose cursor returns *fetchone_row* (default: no row)."""
    mock_cursor = MagicMock()
    mock_cursor.fetchall.return_value = []
    mock_cursor.fetchone.return_value = fetchone_row

    mock_ctx = MagicMock()
    mock_ctx.__enter__ = MagicMock(return_value=mock_cursor)
    mock_ctx.__exit__ = MagicMock(return_value=False)

    mock_conn = MagicMock()
    mock_conn.cursor.return_value = mock_ctx
    return mock_conn, mock_cursor


def write_submissions(tmp_path, payload):
    path = tmp_path / "submissions.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


SUBMISSIONS = [
    {"project_id": "P1", "date": "2024-05-02",
     "equipment": [{"name": "Excavator", "hours": 8, "fuel_rate": 5}],
     "hours_worked": 8000, "incident_count": 0},
    {"project_id": "P1", "month": "2024-05", "electricity_kwh": 2000},
]


class TestLoadSubmissions:

    def test_detects_daily_and_monthly(self, tmp_path):
        subs = load_submissions(write_submissions(tmp_path, SUBMISSIONS))
        assert isinstance(subs[0], DailyLogSubmission)
        assert isinstance(subs[1], MonthlyLogSubmission)

    def test_single_object_accepted(self, tmp_path):
        subs = load_submissions(write_submissions(tmp_path, SUBMISSIONS[0]))
        assert len(subs) == 1


class TestAggregateSubmissions:

    def test_aggregates_each_submission(self, tmp_path):
        subs = load_submissions(write_submissions(tmp_path, SUBMISSIONS))
        aggregates, errors = aggregate_submissions(subs)
        assert errors == []
        by_type = {a.period_type: a for a in aggregates}
        assert by_type["daily"].scope1_kg_co2e == pytest.approx(107.2)
        assert by_type["monthly"].scope2_kg_co2e == pytest.approx(1014.0)

    def test_duplicate_period_reported(self, tmp_path):
        subs = load_submissions(write_submissions(tmp_path, [SUBMISSIONS[0], SUBMISSIONS[0]]))
        aggregates, errors = aggregate_submissions(subs)
        assert len(aggregates) == 1
        assert len(errors) == 1
        assert "already exists" in errors[0]


class TestMain:

    def test_trir_command(self):
        with pytest.raises(SystemExit) as exc_info:
            main(["trir", "--incidents", "5", "--hours", "100000"])
        assert exc_info.value.code == 0

    def test_aggregate_command(self, tmp_path):
        path = write_submissions(tmp_path, SUBMISSIONS)
        with pytest.raises(SystemExit) as exc_info:
            main(["aggregate", "--file", str(path)])
        assert exc_info.value.code == 0

    def test_dashboard_command(self, tmp_path):
        path = write_submissions(tmp_path, SUBMISSIONS)
        with pytest.raises(SystemExit) as exc_info:
            main(["dashboard", "--file", str(path)])
        assert exc_info.value.code == 0

    def test_missing_file(self, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            main(["aggregate", "--file", str(tmp_path / "nope.json")])
        assert exc_info.value.code == 1

    def test_sync_without_database_url(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(SystemExit) as exc_info:
            main(["sync", "--project", "P1", "--period", "2024-05-02", "--dry-run"])
        assert exc_info.value.code == 1

    def test_sync_rejects_unparsable_period(self):
        with pytest.raises(SystemExit) as exc_info:
            main([
                "sync", "--project", "P1", "--period", "not-a-date",
                "--database-url", "postgresql://localhost/esg",
            ])
        assert exc_info.value.code == 1

    def test_sync_saves_and_compares_without_target(self, monkeypatch):
        conn, _ = make_conn()
        monkeypatch.setattr(cli, "get_connection", lambda url: conn)
        monkeypatch.setattr(
            cli, "fetch_period_entries",
            lambda c, project, key, period_type: [EquipmentEntry(hours=8, fuel_rate=5)],
        )
        with pytest.raises(SystemExit) as exc_info:
            main([
                "sync", "--project", "P1", "--period", "2024-05-02",
                "--database-url", "postgresql://localhost/esg",
            ])
        assert exc_info.value.code == 0
        conn.commit.assert_called_once()
        conn.close.assert_called_once()

    def test_init_db_with_bad_config_returns_error(self, monkeypatch):
        monkeypatch.setenv("ESG_GRID_FACTOR_KG_PER_KWH", "lots")
        assert cmd_init_db(argparse.Namespace(database_url=None)) == 1

    def test_bad_log_level_exits(self, monkeypatch):
        monkeypatch.setenv("ESG_LOG_LEVEL", "LOUD")
        with pytest.raises(SystemExit) as exc_info:
            main(["trir", "--incidents", "1", "--hours", "1000"])
        assert exc_info.value.code == 1

    def test_log_level_from_environment(self, monkeypatch):
        monkeypatch.setenv("ESG_LOG_LEVEL", "WARNING")
        calls = []
        monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))
        with pytest.raises(SystemExit):
            main(["trir", "--incidents", "1", "--hours", "1000"])
        assert calls[0]["level"] == logging.WARNING

    def test_verbose_overrides_log_level(self, monkeypatch):
        monkeypatch.setenv("ESG_LOG_LEVEL", "ERROR")
        calls = []
        monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))
        with pytest.raises(SystemExit):
            main(["--verbose", "trir", "--incidents", "1", "--hours", "1000"])
        assert calls[0]["level"] == logging.DEBUG


class TestElectricalCommand:

    def test_uses_configured_factor(self, monkeypatch, capsys):
        monkeypatch.setenv("ESG_ELECTRICAL_FACTOR_KG_PER_KWH", "0.5")
        with pytest.raises(SystemExit) as exc_info:
            main(["electrical", "--kwh", "2000"])
        assert exc_info.value.code == 0
        assert "1.00 t CO₂e" in capsys.readouterr().out

    def test_default_factor(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["electrical", "--kwh", "2000"])
        assert exc_info.value.code == 0
        assert "1.52 t CO₂e" in capsys.readouterr().out

    def test_negative_consumption_rejected(self):
        with pytest.raises(SystemExit) as exc_info:
            main(["electrical", "--kwh", "-5"])
        assert exc_info.value.code == 1


class TestTargets:

    def test_missing_target_falls_back_to_none(self):
        conn, _ = make_conn(fetchone_row=None)
        assert load_target(conn, "P1") is None

    def test_stored_target_loaded(self):
        conn, _ = make_conn(fetchone_row=(1.0, 2.0, None, 3.0))
        target = load_target(conn, "P1")
        assert target.scope_one == pytest.approx(1.0)
        assert target.scope_three is None

    def test_comparisons_without_benchmark(self):
        summary = ProjectSummary(project_id="P1", target=None, scope1_tco2e=0.5)
        comparisons = target_comparisons(summary)
        assert comparisons["Scope 1"].status == TARGET_NO_BENCHMARK
        assert comparisons["Scope 1"].target is None

    def test_comparisons_against_target(self):
        target = ProjectTarget(project_id="P1", scope_one=1.0, scope_two=0.5)
        summary = ProjectSummary(
            project_id="P1", target=target, scope1_tco2e=0.8, scope2_tco2e=0.9,
        )
        comparisons = target_comparisons(summary)
        assert comparisons["Scope 1"].status == TARGET_BELOW
        assert comparisons["Scope 2"].status == TARGET_ABOVE
