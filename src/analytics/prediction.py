"""Next-period prediction.

Calendar averaging over the most recent logged cycles (up to three):

    average_cycle_length = mean(start-date deltas)
    next_period_date     = last_start + round(average_cycle_length)
    days_until_next      = max(0, round(average_cycle_length) - days_since_last_start)

Confidence is a single explicit formula in prediction-score units [0, 100]:

    confidence = clamp(70 + 3 * cycles_used, 60, 90)

Fewer than two cycles yields an ``unavailable`` prediction, not an error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Sequence

from src.analytics.config_loader import AnalyticsConfig, get_analytics_config
from src.analytics.statistics import actual_cycles, cycle_lengths
from src.models.tracking import CycleRecord

logger = logging.getLogger("cadence.analytics.prediction")

AVAILABLE = "available"
UNAVAILABLE = "unavailable"


@dataclass
class ForecastedCycle:
    """One projected future period start."""

    cycle_number: int
    predicted_start: date
    confidence: int


@dataclass
class Prediction:
    """Prediction for the user's next period.

    Attributes:
        status:                 'available' or 'unavailable'.
        next_period_date:       Best estimate for the next period start.
        average_cycle_length:   Mean of the recent cycle lengths (1dp).
        days_since_last_start:  Days since the latest logged start.
        days_until_next:        Days until next_period_date, never negative.
        confidence:             Prediction confidence in [0, 100].
        cycles_used:            Number of logged cycles the estimate is based on.
        ovulation_date:         next_period_date minus the luteal phase.
        fertile_window_start:   Start of the fertile window.
        fertile_window_end:     End of the fertile window.
    """

    status: str = UNAVAILABLE
    next_period_date: date | None = None
    average_cycle_length: float | None = None
    days_since_last_start: int | None = None
    days_until_next: int | None = None
    confidence: int = 0
    cycles_used: int = 0
    ovulation_date: date | None = None
    fertile_window_start: date | None = None
    fertile_window_end: date | None = None

    @property
    def available(self) -> bool:
        return self.status == AVAILABLE


class PredictionEngine:
    """Estimate the next period start with a bounded confidence score.

    Usage::

        engine = PredictionEngine()
        prediction = engine.predict(cycles, as_of_date=date(2026, 2, 15))
        if prediction.available:
            print(prediction.next_period_date, prediction.confidence)
    """

    def __init__(self, config: AnalyticsConfig | None = None) -> None:
        self._config = config or get_analytics_config()

    @property
    def _pr(self):
        return self._config.prediction

    def confidence(self, cycles_used: int) -> int:
        """Monotonic confidence from sample size, clamped to [floor, ceiling]."""
        pr = self._pr
        raw = pr.confidence_base + pr.confidence_per_cycle * cycles_used
        return max(pr.confidence_floor, min(pr.confidence_ceiling, raw))

    def predict(
        self,
        records: Sequence[CycleRecord],
        as_of_date: date | None = None,
    ) -> Prediction:
        """Predict the next period start.

        Args:
            records:    The user's cycle records in any order.
            as_of_date: Reference date (defaults to today).

        Returns:
            Prediction; status 'unavailable' with fewer than the minimum cycles.
        """
        pr = self._pr
        today = as_of_date or date.today()
        cycles = actual_cycles(records, limit=pr.max_cycles)

        if len(cycles) < pr.min_cycles:
            return Prediction(status=UNAVAILABLE, cycles_used=len(cycles))

        lengths = cycle_lengths(cycles)
        average = sum(lengths) / len(lengths)
        rounded = round(average)
        last_start = cycles[0].start_date
        days_since = (today - last_start).days

        next_period = last_start + timedelta(days=rounded)
        ovulation = next_period - timedelta(days=pr.luteal_phase_days)

        prediction = Prediction(
            status=AVAILABLE,
            next_period_date=next_period,
            average_cycle_length=round(average, 1),
            days_since_last_start=days_since,
            days_until_next=max(0, rounded - days_since),
            confidence=self.confidence(len(cycles)),
            cycles_used=len(cycles),
            ovulation_date=ovulation,
            fertile_window_start=ovulation - timedelta(days=pr.fertile_days_before_ovulation),
            fertile_window_end=ovulation + timedelta(days=pr.fertile_days_after_ovulation),
        )
        logger.debug(
            "Predicted next period %s from %d cycles (avg %.1f days)",
            next_period, len(cycles), average,
        )
        return prediction

    def forecast(
        self,
        records: Sequence[CycleRecord],
        count: int | None = None,
    ) -> list[ForecastedCycle]:
        """Project the next ``count`` period starts from the average length.

        Args:
            records: The user's cycle records in any order.
            count:   Number of future cycles (defaults to the configured value).

        Returns:
            Projected starts, nearest first; empty when no prediction is possible.
        """
        pr = self._pr
        n = count if count is not None else pr.forecast_cycles
        cycles = actual_cycles(records, limit=pr.max_cycles)
        if len(cycles) < pr.min_cycles or n <= 0:
            return []

        lengths = cycle_lengths(cycles)
        average = sum(lengths) / len(lengths)
        last_start = cycles[0].start_date
        confidence = self.confidence(len(cycles))
        return [
            ForecastedCycle(
                cycle_number=i,
                predicted_start=last_start + timedelta(days=round(average * i)),
                confidence=confidence,
            )
            for i in range(1, n + 1)
        ]
