"""
safety.py – Total Recordable Incident Rate.

TRIR = (incidents × 200,000) ÷ total employee hours

Zero hours does not mean zero risk, so the rate is undefined (None) rather
than 0 when no exposure hours were recorded.
"""
from __future__ import annotations

from typing import Any

from site_esg.constants import TRIR_STANDARD_HOURS
from site_esg.normalize import to_quantity


def compute_trir(incident_count: Any, hours: Any) -> float | None:
    """Return the TRIR, or None when *hours* is not a positive number."""
    exposure = to_quantity(hours)
    if exposure <= 0:
        return None
    return (to_quantity(incident_count) * TRIR_STANDARD_HOURS) / exposure
