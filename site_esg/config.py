"""
config.py – Load and validate environment configuration.

Configuration comes from environment variables (or a .env file at the
repository root or inside the package).  Call `get_config()` once at startup
to obtain a validated Config object.

 Variable                             Default
 ─────────────────────────────────────────────────────────────
 DATABASE_URL                         (unset: store commands disabled)
 ESG_LOG_LEVEL                        INFO
 ESG_EQUIPMENT_FACTOR_KG_PER_LITER    2.68
 ESG_GRID_FACTOR_KG_PER_KWH           0.507
 ESG_WATER_FACTOR_KG_PER_M3           0.264
 ESG_ELECTRICAL_FACTOR_KG_PER_KWH     0.76
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from site_esg.electrical import PHILIPPINES_GRID_EMISSION_FACTOR
from site_esg.emission_factors import (
    EQUIPMENT_FUEL_KG_PER_LITER,
    GRID_ELECTRICITY_KG_PER_KWH,
    WATER_SUPPLY_KG_PER_M3,
    EmissionFactors,
)

# Package directory: site_esg/
_PACKAGE_ROOT = Path(__file__).resolve().parent
# Repository root, so .env can live beside pyproject.toml
_PARENT_ROOT = _PACKAGE_ROOT.parent

# Repository .env first, then package .env (package overrides).
_env_parent = _PARENT_ROOT / ".env"
_env_package = _PACKAGE_ROOT / ".env"
if _env_parent.exists():
    load_dotenv(_env_parent, override=True)
if _env_package.exists():
    load_dotenv(_env_package, override=True)


_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass
class Config:
    """Validated runtime configuration."""

    database_url: str | None = None
    log_level: str = "INFO"
    equipment_factor_kg_per_liter: float = EQUIPMENT_FUEL_KG_PER_LITER
    grid_factor_kg_per_kwh: float = GRID_ELECTRICITY_KG_PER_KWH
    water_factor_kg_per_m3: float = WATER_SUPPLY_KG_PER_M3
    electrical_factor_kg_per_kwh: float = PHILIPPINES_GRID_EMISSION_FACTOR

    def factors(self) -> EmissionFactors:
        """Factor set for the aggregator; vehicle fuel shares the diesel factor."""
        return EmissionFactors(
            equipment_kg_per_liter=self.equipment_factor_kg_per_liter,
            vehicle_kg_per_liter=self.equipment_factor_kg_per_liter,
            grid_kg_per_kwh=self.grid_factor_kg_per_kwh,
            water_kg_per_m3=self.water_factor_kg_per_m3,
        )

    @property
    def log_level_value(self) -> int:
        return getattr(logging, self.log_level)


def _read_factor(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        raise EnvironmentError(f"{name} must be a number, got '{raw}'") from None
    if value < 0:
        raise EnvironmentError(f"{name} cannot be negative, got {value}")
    return value


def get_config(database_url: str | None = None) -> Config:
    """
    Read environment variables, validate them, and return a Config.

    Parameters
    ----------
    database_url:
        Override DATABASE_URL (e.g. from a CLI flag).

    Raises
    ------
    EnvironmentError
        If a factor override is not a non-negative number or the log level
        is unknown.
    """
    log_level = (os.environ.get("ESG_LOG_LEVEL") or "INFO").strip().upper()
    if log_level not in _VALID_LOG_LEVELS:
        raise EnvironmentError(
            f"ESG_LOG_LEVEL must be one of {sorted(_VALID_LOG_LEVELS)}, got '{log_level}'"
        )

    return Config(
        database_url=database_url or os.environ.get("DATABASE_URL") or None,
        log_level=log_level,
        equipment_factor_kg_per_liter=_read_factor(
            "ESG_EQUIPMENT_FACTOR_KG_PER_LITER", EQUIPMENT_FUEL_KG_PER_LITER
        ),
        grid_factor_kg_per_kwh=_read_factor(
            "ESG_GRID_FACTOR_KG_PER_KWH", GRID_ELECTRICITY_KG_PER_KWH
        ),
        water_factor_kg_per_m3=_read_factor(
            "ESG_WATER_FACTOR_KG_PER_M3", WATER_SUPPLY_KG_PER_M3
        ),
        electrical_factor_kg_per_kwh=_read_factor(
            "ESG_ELECTRICAL_FACTOR_KG_PER_KWH", PHILIPPINES_GRID_EMISSION_FACTOR
        ),
    )
