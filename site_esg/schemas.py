"""
schemas.py – Pydantic models for daily and monthly log submissions.

Numeric fields accept strings as typed on the site forms ("1,200", "",
"n/a"); they are not coerced here.  The normalizer folds anything that does
not parse to "absent".
"""
from __future__ import annotations

from typing import Optional, Union

from pydantic import BaseModel, Field

from site_esg.aggregation import ProjectTarget
from site_esg.constants import PERIOD_DAILY, PERIOD_MONTHLY
from site_esg.normalize import (
    ElectricityEntry,
    EquipmentEntry,
    RawActivityEntry,
    SafetyEntry,
    VehicleEntry,
    WasteEntry,
    WaterEntry,
)

FormNumber = Optional[Union[float, str]]


# ─────────────────────────────────────────────────────────────
# Line items
# ─────────────────────────────────────────────────────────────

class EquipmentItem(BaseModel):
    """One piece of equipment on a daily log."""

    name: str = Field("", description="Equipment name, e.g. Excavator")
    hours: FormNumber = Field(None, description="Operating hours")
    fuel_rate: FormNumber = Field(None, description="Fuel consumption in L/h")

    def to_entry(self) -> EquipmentEntry:
        return EquipmentEntry(hours=self.hours, fuel_rate=self.fuel_rate, name=self.name)


class VehicleItem(BaseModel):
    """One logistics trip."""

    name: str = Field("", description="Vehicle or plate number")
    distance_km: FormNumber = Field(None, description="Route distance in km")
    fuel_rate: FormNumber = Field(None, description="Fuel consumption in L/km")

    def to_entry(self) -> VehicleEntry:
        return VehicleEntry(distance_km=self.distance_km, fuel_rate=self.fuel_rate, name=self.name)


class WasteItem(BaseModel):
    """One treatment-method share of a waste stream."""

    id: str = Field("", description="Entry identifier")
    mass: FormNumber = Field(None, description="Mass of the waste stream")
    unit: str = Field("kg", description="kg or ton")
    waste_type: str = Field("", description="Plastic, Food, Paper, Metal, Glass or Other")
    treatment_method: str = Field("", description="landfill, incineration, recycling or compost")
    treatment_percentage: FormNumber = Field(None, description="Share of the stream, 0–100")

    def to_entry(self) -> WasteEntry:
        return WasteEntry(
            mass=self.mass,
            unit=self.unit,
            waste_type=self.waste_type,
            treatment_method=self.treatment_method,
            treatment_percentage=self.treatment_percentage,
            entry_id=self.id,
        )


# ─────────────────────────────────────────────────────────────
# Submissions
# ─────────────────────────────────────────────────────────────

class DailyLogSubmission(BaseModel):
    """A site's daily log: equipment, logistics and safety."""

    project_id: str = Field(..., description="Project identifier")
    date: str = Field(..., description="Log date, any format dateutil can parse")
    incident_count: FormNumber = Field(None, description="Recordable incidents")
    hours_worked: FormNumber = Field(None, description="Total employee hours")
    equipment: list[EquipmentItem] = Field(default_factory=list)
    vehicles: list[VehicleItem] = Field(default_factory=list)

    period_type: str = PERIOD_DAILY

    def to_entries(self) -> list[RawActivityEntry]:
        entries: list[RawActivityEntry] = [e.to_entry() for e in self.equipment]
        entries.extend(v.to_entry() for v in self.vehicles)
        if self.incident_count is not None or self.hours_worked is not None:
            entries.append(
                SafetyEntry(incident_count=self.incident_count, employee_hours=self.hours_worked)
            )
        return entries


class MonthlyLogSubmission(BaseModel):
    """A site's monthly log: utilities and waste."""

    project_id: str = Field(..., description="Project identifier")
    month: str = Field(..., description="Reporting month, e.g. 2024-05")
    electricity_kwh: FormNumber = Field(None, description="Metered electricity in kWh")
    water_m3: FormNumber = Field(None, description="Water supply in m³")
    waste: list[WasteItem] = Field(default_factory=list)

    period_type: str = PERIOD_MONTHLY

    @property
    def date(self) -> str:
        return self.month

    def to_entries(self) -> list[RawActivityEntry]:
        entries: list[RawActivityEntry] = []
        if self.electricity_kwh is not None:
            entries.append(ElectricityEntry(kwh=self.electricity_kwh))
        if self.water_m3 is not None:
            entries.append(WaterEntry(cubic_m=self.water_m3))
        entries.extend(w.to_entry() for w in self.waste)
        return entries


class ProjectTargetSchema(BaseModel):
    """Project benchmarks in tCO₂e per scope plus a TRIR target."""

    project_id: str
    target_scope_one: Optional[float] = Field(None, description="Scope 1 target, tCO2e")
    target_scope_two: Optional[float] = Field(None, description="Scope 2 target, tCO2e")
    target_scope_three: Optional[float] = Field(None, description="Scope 3 target, tCO2e")
    target_trir: Optional[float] = Field(None, description="TRIR target")

    def to_target(self) -> ProjectTarget:
        return ProjectTarget(
            project_id=self.project_id,
            scope_one=self.target_scope_one,
            scope_two=self.target_scope_two,
            scope_three=self.target_scope_three,
            trir=self.target_trir,
        )


Submission = Union[DailyLogSubmission, MonthlyLogSubmission]
