"""Active notifications for a user.

Three independent rules are evaluated on every call:

- overdue_period   more than 35 days since the last logged start (alert, medium)
- period_reminder  the predicted next period is at most 3 days away (reminder, low)
- severe_symptoms  any symptom of severity >= 4 in the last 7 days (health flag, high)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Sequence

from src.analytics.config_loader import AnalyticsConfig, get_analytics_config
from src.analytics.prediction import Prediction, PredictionEngine
from src.analytics.statistics import actual_cycles
from src.models.tracking import CycleRecord, SymptomEntry

logger = logging.getLogger("cadence.analytics.notifications")

PRIORITY_LOW = "low"
PRIORITY_MEDIUM = "medium"
PRIORITY_HIGH = "high"


@dataclass
class NotificationItem:
    type: str
    title: str
    message: str
    priority: str


@dataclass
class NotificationBundle:
    """Alerts, reminders and health flags for one evaluation."""

    alerts: list[NotificationItem] = field(default_factory=list)
    reminders: list[NotificationItem] = field(default_factory=list)
    health_flags: list[NotificationItem] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.alerts) + len(self.reminders) + len(self.health_flags)

    @property
    def has_emergency(self) -> bool:
        return any(
            item.priority == PRIORITY_HIGH
            for item in (*self.alerts, *self.reminders, *self.health_flags)
        )


class NotificationEngine:
    """Evaluate the notification rules against a snapshot of user data."""

    def __init__(
        self,
        config: AnalyticsConfig | None = None,
        prediction_engine: PredictionEngine | None = None,
    ) -> None:
        self._config = config or get_analytics_config()
        self._predictions = prediction_engine or PredictionEngine(self._config)

    def evaluate(
        self,
        cycles: Sequence[CycleRecord],
        symptoms: Sequence[SymptomEntry],
        prediction: Prediction | None = None,
        as_of_date: date | None = None,
    ) -> NotificationBundle:
        """Build the notification bundle.

        Args:
            cycles:     The user's cycle records.
            symptoms:   Recent symptom entries.
            prediction: Precomputed prediction; computed from ``cycles`` if omitted.
            as_of_date: Reference date (defaults to today).

        Returns:
            NotificationBundle (possibly empty).
        """
        nc = self._config.notifications
        today = as_of_date or date.today()
        bundle = NotificationBundle()

        latest = actual_cycles(cycles, limit=1)
        if latest:
            days_since = (today - latest[0].start_date).days
            if days_since > nc.overdue_after_days:
                bundle.alerts.append(
                    NotificationItem(
                        type="overdue_period",
                        title="Period Overdue",
                        message=f"It's been {days_since} days since your last period",
                        priority=PRIORITY_MEDIUM,
                    )
                )

            if prediction is None:
                prediction = self._predictions.predict(cycles, as_of_date=today)
            if prediction.available and prediction.days_until_next <= nc.reminder_within_days:
                bundle.reminders.append(
                    NotificationItem(
                        type="period_reminder",
                        title="Period Starting Soon",
                        message="Your period is expected to start in the next few days",
                        priority=PRIORITY_LOW,
                    )
                )

        since = today - timedelta(days=nc.severe_lookback_days)
        if any(
            since <= s.date <= today and s.severity >= nc.severe_threshold for s in symptoms
        ):
            bundle.health_flags.append(
                NotificationItem(
                    type="severe_symptoms",
                    title="Severe Symptoms Noted",
                    message="Consider consulting with a healthcare provider",
                    priority=PRIORITY_HIGH,
                )
            )

        logger.debug("Evaluated notifications: %d active", bundle.count)
        return bundle
