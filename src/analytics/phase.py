"""Cycle phase classification from day-of-cycle.

The phase is recomputed on every call from the latest logged period start;
nothing is stored between calls.  Boundaries are fixed day counts and are
not scaled to the user's own average cycle length.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Sequence

from src.analytics.config_loader import AnalyticsConfig, PhaseConfig, get_analytics_config
from src.analytics.statistics import actual_cycles
from src.models.tracking import CycleRecord


class CyclePhase(str, Enum):
    unknown = "unknown"
    menstrual = "menstrual"
    follicular = "follicular"
    ovulation = "ovulation"
    luteal = "luteal"


PHASE_DESCRIPTIONS: dict[CyclePhase, str] = {
    CyclePhase.unknown: "Start tracking to see your cycle phase",
    CyclePhase.menstrual: "Menstruation phase",
    CyclePhase.follicular: "Follicular phase",
    CyclePhase.ovulation: "Ovulation phase",
    CyclePhase.luteal: "Luteal phase",
}


@dataclass
class PhaseResult:
    """Current phase for a user.

    Attributes:
        phase:       Phase label.
        day:         Cycle day (1-indexed); 0 when there is no data.
        description: Short display text.
        start_date:  Start of the cycle the day is counted from.
    """

    phase: CyclePhase
    day: int
    description: str
    start_date: date | None = None


def classify_phase(cycle_day: int, boundaries: PhaseConfig | None = None) -> CyclePhase:
    """Map a cycle day to a phase.  Total over all integers.

    Args:
        cycle_day:  Day within the cycle, day 1 being the first day of bleeding.
        boundaries: Optional override of the phase boundaries.

    Returns:
        menstrual, follicular, ovulation or luteal.
    """
    b = boundaries or PhaseConfig()
    if cycle_day <= b.menstrual_last_day:
        return CyclePhase.menstrual
    if cycle_day <= b.follicular_last_day:
        return CyclePhase.follicular
    if cycle_day <= b.ovulation_last_day:
        return CyclePhase.ovulation
    return CyclePhase.luteal


def cycle_day_from_start(period_start: date, today: date) -> int:
    """Return the cycle day for ``today``; the start date itself is day 1."""
    return (today - period_start).days + 1


class CyclePhaseClassifier:
    """Derive the current phase from a user's most recent cycle start."""

    def __init__(self, config: AnalyticsConfig | None = None) -> None:
        self._config = config or get_analytics_config()

    def classify(self, cycle_day: int) -> CyclePhase:
        return classify_phase(cycle_day, self._config.phase)

    def current_phase(
        self,
        records: Sequence[CycleRecord],
        as_of_date: date | None = None,
    ) -> PhaseResult:
        """Phase for ``as_of_date`` (defaults to today).

        Args:
            records:    The user's cycle records in any order.
            as_of_date: Reference date.

        Returns:
            PhaseResult; phase 'unknown' and day 0 when no cycle is logged.
        """
        today = as_of_date or date.today()
        cycles = actual_cycles(records, limit=1)
        if not cycles:
            return PhaseResult(
                phase=CyclePhase.unknown,
                day=0,
                description=PHASE_DESCRIPTIONS[CyclePhase.unknown],
            )

        latest_start = cycles[0].start_date
        day = cycle_day_from_start(latest_start, today)
        phase = self.classify(day)
        return PhaseResult(
            phase=phase,
            day=day,
            description=PHASE_DESCRIPTIONS[phase],
            start_date=latest_start,
        )
