"""Symptom pattern analysis.

Groups logged symptoms by type and reports, per type, how often the symptom
was logged, its average severity (1–5), and whether it is getting worse:

- "Your cramps were logged 6 times with an average severity of 4.3"
- "Your headaches are improving compared with earlier entries"
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Sequence

from src.analytics.config_loader import AnalyticsConfig, get_analytics_config
from src.errors import INSUFFICIENT_DATA
from src.models.tracking import SymptomEntry

logger = logging.getLogger("cadence.analytics.symptoms")

STABLE = "stable"
WORSENING = "worsening"
IMPROVING = "improving"

# Display names for common symptom types
SYMPTOM_DISPLAY_NAMES: dict[str, str] = {
    "cramps": "Menstrual Cramps",
    "headache": "Headaches",
    "bloating": "Bloating",
    "mood_changes": "Mood Changes",
    "fatigue": "Fatigue",
    "breast_tenderness": "Breast Tenderness",
    "nausea": "Nausea",
    "back_pain": "Back Pain",
}


def symptom_display_name(symptom_type: str) -> str:
    return SYMPTOM_DISPLAY_NAMES.get(
        symptom_type, symptom_type.replace("_", " ").capitalize()
    )


@dataclass
class SymptomPattern:
    """Aggregated statistics for one symptom type.

    Attributes:
        symptom_type:     Symptom key (e.g. 'cramps').
        frequency:        Number of entries in the lookback window.
        average_severity: Mean severity (1dp).
        trend:            'stable', 'worsening', 'improving' or
                          'insufficient_data'.
        high_severity:    True when the average severity is at or above the
                          high-severity threshold.
        recurring:        True when the frequency is at or above the
                          recurring threshold.
    """

    symptom_type: str
    frequency: int
    average_severity: float
    trend: str
    high_severity: bool = False
    recurring: bool = False


@dataclass
class SymptomAnalysis:
    """All patterns for a user plus summary counts."""

    patterns: dict[str, SymptomPattern] = field(default_factory=dict)
    most_common: str | None = None
    total_logged: int = 0


class SymptomPatternAnalyzer:
    """Frequency / severity / trend analysis over logged symptoms.

    Usage::

        analyzer = SymptomPatternAnalyzer()
        analysis = analyzer.analyze(entries, as_of_date=date.today())
        for pattern in analysis.patterns.values():
            print(pattern.symptom_type, pattern.trend)
    """

    def __init__(self, config: AnalyticsConfig | None = None) -> None:
        self._config = config or get_analytics_config()

    @property
    def _sy(self):
        return self._config.symptoms

    def severity_trend(self, entries: Sequence[SymptomEntry]) -> str:
        """Compare mean severity of the newest entries against the ones before.

        Args:
            entries: Entries of a single symptom type, any order.

        Returns:
            Trend label.
        """
        sy = self._sy
        if len(entries) < sy.trend_min_entries:
            return INSUFFICIENT_DATA

        ordered = sorted(entries, key=lambda e: e.date, reverse=True)
        recent = ordered[: sy.trend_window]
        older = ordered[sy.trend_window : sy.trend_window * 2]
        if not recent or not older:
            return INSUFFICIENT_DATA

        recent_avg = sum(e.severity for e in recent) / len(recent)
        older_avg = sum(e.severity for e in older) / len(older)
        difference = recent_avg - older_avg

        if abs(difference) < sy.trend_stable_delta:
            return STABLE
        if difference > 0:
            return WORSENING
        return IMPROVING

    def analyze(
        self,
        entries: Sequence[SymptomEntry],
        as_of_date: date | None = None,
        lookback_days: int | None = None,
    ) -> SymptomAnalysis:
        """Build per-type patterns over the lookback window.

        Args:
            entries:       Symptom entries for one user.
            as_of_date:    End of the window (defaults to today).
            lookback_days: Window length; defaults to the analytics lookback.

        Returns:
            SymptomAnalysis (empty patterns when nothing was logged).
        """
        sy = self._sy
        today = as_of_date or date.today()
        window = lookback_days if lookback_days is not None else sy.analytics_lookback_days
        since = today - timedelta(days=window)

        in_window = [e for e in entries if since <= e.date <= today]
        by_type: dict[str, list[SymptomEntry]] = {}
        for entry in in_window:
            by_type.setdefault(entry.symptom_type, []).append(entry)

        patterns: dict[str, SymptomPattern] = {}
        for symptom_type, typed in by_type.items():
            average = sum(e.severity for e in typed) / len(typed)
            patterns[symptom_type] = SymptomPattern(
                symptom_type=symptom_type,
                frequency=len(typed),
                average_severity=round(average, 1),
                trend=self.severity_trend(typed),
                high_severity=average >= sy.high_severity_threshold,
                recurring=len(typed) >= sy.recurring_frequency,
            )

        counts = Counter(e.symptom_type for e in in_window)
        most_common = counts.most_common(1)[0][0] if counts else None

        logger.debug(
            "Analyzed %d symptom entries across %d types", len(in_window), len(patterns)
        )
        return SymptomAnalysis(
            patterns=patterns,
            most_common=most_common,
            total_logged=len(in_window),
        )
