"""Pydantic models for logged menstrual cycles and symptoms.

These are the read-only records the analytics core consumes.  They are
created by user-logging actions outside the core and supplied through a
``CycleRepository``.
"""

from __future__ import annotations

import datetime as dt
from enum import Enum

from pydantic import Field, model_validator

from src.models.base import CadenceBase


# ---------- Enums ----------

class FlowIntensity(str, Enum):
    light = "light"
    medium = "medium"
    heavy = "heavy"
    very_heavy = "very_heavy"


# ---------- Cycles ----------

class CycleRecord(CadenceBase):
    id: str | None = None
    user_id: str
    start_date: dt.date
    end_date: dt.date | None = None
    flow_intensity: FlowIntensity | None = None
    mood: str | None = None
    notes: str | None = None
    is_predicted: bool = False

    @model_validator(mode="after")
    def _end_not_before_start(self) -> "CycleRecord":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self

    @property
    def period_length(self) -> int | None:
        """Days of bleeding, counting both ends, or None if still open."""
        if self.end_date is None:
            return None
        return (self.end_date - self.start_date).days + 1


# ---------- Symptoms ----------

class SymptomEntry(CadenceBase):
    user_id: str
    cycle_id: str | None = None
    date: dt.date
    symptom_type: str = Field(min_length=1)
    severity: int = Field(ge=1, le=5)
    notes: str | None = None
