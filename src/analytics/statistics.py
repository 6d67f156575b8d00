"""Cycle regularity and trend statistics.

Cycle lengths are the day-deltas between consecutive logged period starts.
Regularity is classified from the population standard deviation of those
lengths:

    std <= 3 days   -> regular
    std <= 7 days   -> fairly_regular
    otherwise       -> irregular

Fewer than three logged cycles is reported as ``insufficient_data``, never
raised.  Predicted (projected) cycles are ignored everywhere.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Sequence

from src.analytics.config_loader import AnalyticsConfig, get_analytics_config
from src.errors import INSUFFICIENT_DATA
from src.models.tracking import CycleRecord

logger = logging.getLogger("cadence.analytics.statistics")

REGULAR = "regular"
FAIRLY_REGULAR = "fairly_regular"
IRREGULAR = "irregular"

STABLE = "stable"
LENGTHENING = "lengthening"
SHORTENING = "shortening"


@dataclass
class RegularityResult:
    """Regularity of a user's recent cycle lengths.

    Attributes:
        status:             'regular', 'fairly_regular', 'irregular' or
                            'insufficient_data'.
        average_length:     Mean cycle length in days (1dp).
        standard_deviation: Population std of cycle lengths (1dp).
        cycles_analyzed:    Number of cycle lengths used.
        range_min:          Shortest cycle length.
        range_max:          Longest cycle length.
        message:            Explanation when status is insufficient_data.
    """

    status: str
    average_length: float | None = None
    standard_deviation: float | None = None
    cycles_analyzed: int = 0
    range_min: int | None = None
    range_max: int | None = None
    message: str | None = None

    @property
    def range(self) -> dict[str, int | None]:
        return {"min": self.range_min, "max": self.range_max}


@dataclass
class TrendResult:
    """Direction of change between recent and older cycle lengths."""

    direction: str
    change_days: float | None = None
    recent_average: float | None = None
    previous_average: float | None = None


@dataclass
class AccuracyEstimate:
    """Rough predictive accuracy derived from history size."""

    score: int
    basis: str = "cycle_regularity_and_history"
    confidence_level: str = "moderate"


@dataclass
class CycleStatistics:
    """Regularity plus trend, as returned by ``CycleStatisticsEngine.analyze``."""

    regularity: RegularityResult
    trend: TrendResult
    cycle_lengths: list[int] = field(default_factory=list)


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values)


def population_std(values: Sequence[float]) -> float:
    """Population standard deviation (divides by n, not n - 1).

    Args:
        values: Non-empty sequence of numbers.

    Returns:
        sqrt(mean((v - mean)^2)).
    """
    mean = _mean(values)
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    return math.sqrt(variance)


def actual_cycles(records: Sequence[CycleRecord], limit: int | None = None) -> list[CycleRecord]:
    """Drop predicted records and order the rest most-recent-first.

    Args:
        records: Records in any order.
        limit:   Optional cap applied after ordering.

    Returns:
        Logged (non-predicted) cycles, newest start first.
    """
    logged = sorted(
        (r for r in records if not r.is_predicted),
        key=lambda r: r.start_date,
        reverse=True,
    )
    return logged[:limit] if limit is not None else logged


def cycle_lengths(records: Sequence[CycleRecord]) -> list[int]:
    """Day-deltas between consecutive start dates.

    Args:
        records: Cycles ordered most-recent-first.

    Returns:
        One length per adjacent pair; the first element is the most recent
        complete cycle.
    """
    return [
        (records[i].start_date - records[i + 1].start_date).days
        for i in range(len(records) - 1)
    ]


class CycleStatisticsEngine:
    """Regularity and trend analysis over a user's cycle history.

    Usage::

        engine = CycleStatisticsEngine()
        stats = engine.analyze(cycles)
        print(stats.regularity.status, stats.trend.direction)
    """

    def __init__(self, config: AnalyticsConfig | None = None) -> None:
        self._config = config or get_analytics_config()

    @property
    def _st(self):
        return self._config.statistics

    def recent(self, records: Sequence[CycleRecord]) -> list[CycleRecord]:
        """Logged cycles, newest first, capped at the configured maximum."""
        return actual_cycles(records, self._st.max_cycles)

    def classify(self, standard_deviation: float) -> str:
        """Map a standard deviation to a regularity label."""
        st = self._st
        if standard_deviation <= st.regular_max_std_days:
            return REGULAR
        if standard_deviation <= st.fairly_regular_max_std_days:
            return FAIRLY_REGULAR
        return IRREGULAR

    def regularity(self, records: Sequence[CycleRecord]) -> RegularityResult:
        """Classify how consistent the user's cycle lengths are.

        Args:
            records: Cycle records in any order.

        Returns:
            RegularityResult; status 'insufficient_data' under the minimum.
        """
        st = self._st
        cycles = self.recent(records)
        if len(cycles) < st.min_cycles:
            return RegularityResult(
                status=INSUFFICIENT_DATA,
                message=f"Need at least {st.min_cycles} cycles for regularity analysis",
            )

        lengths = cycle_lengths(cycles)
        average = _mean(lengths)
        std = population_std(lengths)

        return RegularityResult(
            status=self.classify(std),
            average_length=round(average, 1),
            standard_deviation=round(std, 1),
            cycles_analyzed=len(lengths),
            range_min=min(lengths),
            range_max=max(lengths),
        )

    def trend(self, records: Sequence[CycleRecord]) -> TrendResult:
        """Compare the most recent cycle lengths against the ones before them.

        Args:
            records: Cycle records in any order.

        Returns:
            TrendResult with direction 'stable', 'lengthening', 'shortening'
            or 'insufficient_data'.
        """
        st = self._st
        cycles = self.recent(records)
        if len(cycles) < st.trend_min_cycles:
            return TrendResult(direction=INSUFFICIENT_DATA)

        lengths = cycle_lengths(cycles)
        recent = lengths[: st.trend_window]
        older = lengths[st.trend_window : st.trend_window * 2]
        if not recent or not older:
            return TrendResult(direction=INSUFFICIENT_DATA)

        recent_avg = _mean(recent)
        older_avg = _mean(older)
        difference = recent_avg - older_avg

        if abs(difference) < st.trend_stable_days:
            direction = STABLE
        elif difference > 0:
            direction = LENGTHENING
        else:
            direction = SHORTENING

        return TrendResult(
            direction=direction,
            change_days=round(abs(difference), 1),
            recent_average=round(recent_avg, 1),
            previous_average=round(older_avg, 1),
        )

    def analyze(self, records: Sequence[CycleRecord]) -> CycleStatistics:
        """Run regularity and trend analysis in one pass."""
        cycles = self.recent(records)
        stats = CycleStatistics(
            regularity=self.regularity(cycles),
            trend=self.trend(cycles),
            cycle_lengths=cycle_lengths(cycles),
        )
        logger.debug(
            "Cycle statistics: %d cycles, regularity=%s, trend=%s",
            len(cycles), stats.regularity.status, stats.trend.direction,
        )
        return stats

    def average_period_length(self, records: Sequence[CycleRecord]) -> int:
        """Average bleeding length over cycles with an end date.

        Falls back to the configured default when no cycle has ended.
        """
        lengths = [
            r.period_length for r in self.recent(records) if r.period_length is not None
        ]
        if not lengths:
            return self._st.default_period_length_days
        return round(_mean(lengths))

    def predictive_accuracy(self, records: Sequence[CycleRecord]) -> AccuracyEstimate:
        """Accuracy estimate that improves with the amount of history."""
        count = len(self.recent(records))
        return AccuracyEstimate(
            score=min(85 + count * 2, 95),
            confidence_level="high" if count >= 6 else "moderate",
        )
