"""
waste.py – Waste allocation engine.

A waste stream of one type is described by several entries, one per
treatment method, each carrying the share of the stream it treats.  Rules:

 Rule                         Formula
 ─────────────────────────────────────────────────────────────────────────
 Allocation invariant         Σ treatment_pct (same waste type) ≤ 100.0001
 Allocated mass (per entry)   mass_kg × pct / 100
 Emissions (per entry)        allocated_mass_kg × factor
 Period waste emissions       Σ per-entry emissions          (additive)
 Input mass (per waste type)  max(mass_kg)                   (NOT a sum)
 Weighted average factor      Σ(factor × mass_kg) / Σ mass_kg
 Weighted average pct         Σ(pct × mass_kg) / Σ mass_kg

Input mass takes the maximum because entries of one type are alternative
split descriptions of the same underlying stream; summing them would count
the stream once per treatment method.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from site_esg.constants import (
    ALLOCATION_LIMIT_PCT,
    ALLOWED_WASTE_UNITS,
    FACTOR_SOURCE_MISSING,
)
from site_esg.emission_factors import DEFAULT_FACTORS, EmissionFactors, waste_type_key
from site_esg.errors import AllocationExceededError, ValidationError
from site_esg.normalize import WasteEntry, to_number, waste_mass_kg

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WasteEntrySummary:
    """Per-entry waste calculation result."""
    entry: WasteEntry
    mass_kg: float
    percentage: float
    allocated_mass_kg: float
    emission_factor: float
    factor_source: str
    emission_kg: float

    @property
    def low_confidence(self) -> bool:
        return self.factor_source == FACTOR_SOURCE_MISSING


# ─────────────────────────────────────────────────────────────
# Validation
# ─────────────────────────────────────────────────────────────

def allocated_percentage(entries: Iterable[WasteEntry], waste_type: str) -> float:
    """
    Sum of treatment percentages already recorded for *waste_type*.

    Types match on their stripped spelling; negative percentages count as 0.
    """
    key = waste_type_key(waste_type)
    return sum(
        max(to_number(e.treatment_percentage) or 0.0, 0.0)
        for e in entries
        if waste_type_key(e.waste_type) == key
    )


def validate_waste_allocation(existing_entries: Iterable[WasteEntry], new_entry: WasteEntry) -> float:
    """
    Check *new_entry* against its own fields and the entries already recorded
    for the same period.

    Returns the waste type's allocation percentage after the entry is added.

    Raises
    ------
    ValidationError
        Mass, waste type, treatment method, unit or percentage is invalid.
    AllocationExceededError
        The waste type's percentages would exceed 100 %.
    """
    mass = to_number(new_entry.mass)
    if mass is None or mass <= 0:
        raise ValidationError("Waste mass must be a valid positive number.")
    if (new_entry.unit or "").strip().lower() not in ALLOWED_WASTE_UNITS:
        raise ValidationError(
            f"Waste unit '{new_entry.unit}' is not allowed; expected one of "
            f"{sorted(ALLOWED_WASTE_UNITS)}."
        )
    if not (new_entry.waste_type or "").strip():
        raise ValidationError("Select a waste type before adding.")
    if not (new_entry.treatment_method or "").strip():
        raise ValidationError("Select a treatment method before adding.")

    pct = to_number(new_entry.treatment_percentage)
    if pct is None or pct <= 0:
        raise ValidationError("Treatment percentage must be a valid positive number.")
    if pct > 100:
        raise ValidationError("Treatment percentage cannot exceed 100%.")

    existing = allocated_percentage(existing_entries, new_entry.waste_type)
    if existing + pct > ALLOCATION_LIMIT_PCT:
        raise AllocationExceededError(waste_type_key(new_entry.waste_type), existing, pct)
    return existing + pct


def check_allocation_invariant(entries: Iterable[WasteEntry]) -> None:
    """
    Re-check the 100 % rule over an already-recorded entry set.

    Only the per-type percentage sum is enforced here; malformed fields on
    stored entries fold to 0 like any other numeric input.
    """
    seen: list[WasteEntry] = []
    for entry in entries:
        pct = max(to_number(entry.treatment_percentage) or 0.0, 0.0)
        existing = allocated_percentage(seen, entry.waste_type)
        if existing + pct > ALLOCATION_LIMIT_PCT:
            raise AllocationExceededError(waste_type_key(entry.waste_type), existing, pct)
        seen.append(entry)


# ─────────────────────────────────────────────────────────────
# Per-entry and period calculations
# ─────────────────────────────────────────────────────────────

def summarize_waste_entry(
    entry: WasteEntry, factors: EmissionFactors = DEFAULT_FACTORS
) -> WasteEntrySummary:
    """Compute mass, allocated mass, factor and emissions for one entry."""
    mass_kg = waste_mass_kg(entry)
    percentage = max(to_number(entry.treatment_percentage) or 0.0, 0.0)
    factor, source = factors.lookup_waste_factor(entry.waste_type, entry.treatment_method)
    allocated = mass_kg * (percentage / 100)
    emission_kg = allocated * factor

    if source == FACTOR_SOURCE_MISSING:
        logger.warning(
            "No emission factor for waste type=%r method=%r; counted as 0 kg CO₂e",
            entry.waste_type, entry.treatment_method,
        )
    logger.debug(
        "Waste %s/%s | %.2f kg × %.2f%% = %.2f kg × %.4f = %.4f kg CO₂e",
        entry.waste_type, entry.treatment_method, mass_kg, percentage,
        allocated, factor, emission_kg,
    )
    return WasteEntrySummary(
        entry=entry,
        mass_kg=mass_kg,
        percentage=percentage,
        allocated_mass_kg=allocated,
        emission_factor=factor,
        factor_source=source,
        emission_kg=emission_kg,
    )


def input_mass_by_type(summaries: Iterable[WasteEntrySummary]) -> dict[str, float]:
    """Highest single-entry mass per waste type."""
    highest: dict[str, float] = {}
    for s in summaries:
        waste_type = waste_type_key(s.entry.waste_type)
        if s.mass_kg > highest.get(waste_type, 0.0):
            highest[waste_type] = s.mass_kg
    return highest


def total_input_mass(summaries: Iterable[WasteEntrySummary]) -> float:
    """Period input mass: Σ over waste types of each type's max entry mass."""
    return sum(input_mass_by_type(summaries).values())


def total_allocated_mass(summaries: Iterable[WasteEntrySummary]) -> float:
    return sum(s.allocated_mass_kg for s in summaries)


def total_waste_emissions(summaries: Iterable[WasteEntrySummary]) -> float:
    return sum(s.emission_kg for s in summaries)


def weighted_waste_averages(summaries: Iterable[WasteEntrySummary]) -> tuple[float, float]:
    """
    Mass-weighted average emission factor and treatment percentage.

    Weights are the entry masses (not allocated masses).  Both averages are
    0.0 when the total mass is 0.
    """
    total_mass = 0.0
    factor_sum = 0.0
    pct_sum = 0.0
    for s in summaries:
        total_mass += s.mass_kg
        factor_sum += s.emission_factor * s.mass_kg
        pct_sum += s.percentage * s.mass_kg
    if total_mass <= 0:
        return 0.0, 0.0
    return factor_sum / total_mass, pct_sum / total_mass


# ─────────────────────────────────────────────────────────────
# Ledger – the entry set for one period
# ─────────────────────────────────────────────────────────────

class WasteLedger:
    """
    Waste entries for one project period.

    ``add`` validates before appending; a rejected entry leaves the ledger
    unchanged.
    """

    def __init__(
        self,
        entries: Iterable[WasteEntry] = (),
        factors: EmissionFactors = DEFAULT_FACTORS,
    ) -> None:
        self.factors = factors
        self._entries: list[WasteEntry] = []
        for entry in entries:
            self.add(entry)

    @property
    def entries(self) -> tuple[WasteEntry, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, entry: WasteEntry) -> float:
        """Validate and append *entry*; return the type's new allocation %."""
        try:
            updated = validate_waste_allocation(self._entries, entry)
        except AllocationExceededError as exc:
            logger.warning("Waste entry rejected: %s", exc)
            raise
        self._entries.append(entry)
        logger.info(
            "Waste entry recorded. %s allocation now %.2f%% of 100%%.",
            entry.waste_type, updated,
        )
        return updated

    def remove(self, entry_id: str) -> bool:
        """Drop the entry with *entry_id*; return False if none matched."""
        before = len(self._entries)
        self._entries = [e for e in self._entries if e.entry_id != entry_id]
        return len(self._entries) != before

    def allocation_for(self, waste_type: str) -> float:
        return allocated_percentage(self._entries, waste_type)

    @property
    def summaries(self) -> list[WasteEntrySummary]:
        return [summarize_waste_entry(e, self.factors) for e in self._entries]

    @property
    def total_input_mass_kg(self) -> float:
        return total_input_mass(self.summaries)

    @property
    def total_allocated_mass_kg(self) -> float:
        return total_allocated_mass(self.summaries)

    @property
    def total_emissions_kg(self) -> float:
        return total_waste_emissions(self.summaries)

    @property
    def weighted_averages(self) -> tuple[float, float]:
        return weighted_waste_averages(self.summaries)
