"""
errors.py – Exceptions raised by the emissions accounting engine.

Malformed numeric input is never raised: the normalizer folds it to
"absent" (0 contribution).  Everything below is an explicit rejection the
caller has to handle.
"""
from __future__ import annotations


class EngineError(Exception):
    """Base class for every engine error."""


class ValidationError(EngineError, ValueError):
    """An entry breaks an input invariant and was not accepted."""


class AllocationExceededError(ValidationError):
    """Treatment percentages for one waste type would exceed 100 %."""

    def __init__(self, waste_type: str, existing_pct: float, requested_pct: float) -> None:
        self.waste_type = waste_type
        self.existing_pct = existing_pct
        self.requested_pct = requested_pct
        super().__init__(
            f"Treatment percentages for waste type '{waste_type}' would exceed 100% "
            f"({existing_pct:.2f}% already allocated + {requested_pct:.2f}% requested). "
            "Adjust the allocation before adding another entry."
        )


class MissingDataError(EngineError, LookupError):
    """A required upstream record (e.g. a project target) does not exist."""


class DuplicatePeriodError(EngineError):
    """A reporting period already owns a canonical record."""

    def __init__(self, project_id: str, period_key: str, period_type: str | None = None) -> None:
        self.project_id = project_id
        self.period_key = period_key
        self.period_type = period_type
        label = f"{period_type} " if period_type else ""
        super().__init__(
            f"A {label}report for project '{project_id}' and period '{period_key}' "
            "already exists."
        )
