"""CycleInsightsService: cached, failure-tolerant facade over the engines.

Reads a snapshot of the user's records through a ``CycleRepository``, runs
the relevant engine and memoizes the result in a ``ResultCache``.  Every
public call catches unexpected failures, logs them and returns a documented
fallback value, so callers never see an exception from analytics code.

Usage::

    from src.analytics.service import build_insights_service

    service = build_insights_service(repository)
    dashboard = service.dashboard(user_id)
    if service.has_minimum_data_for_analytics(user_id):
        analytics = service.comprehensive_analytics(user_id)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable, TypeVar

from src.analytics.cache import ResultCache
from src.analytics.config_loader import (
    AnalyticsConfig,
    get_analytics_config,
    load_analytics_config,
)
from src.analytics.export import EXPORT_DATA_TYPE, ExportOptions, SecureExport, build_export
from src.analytics.insights import HealthInsights, generate_health_insights
from src.analytics.notifications import NotificationBundle, NotificationEngine, NotificationItem
from src.analytics.phase import PHASE_DESCRIPTIONS, CyclePhase, CyclePhaseClassifier, PhaseResult
from src.analytics.prediction import ForecastedCycle, Prediction, PredictionEngine
from src.analytics.recommendations import Recommendation, RecommendationGenerator, RecommendationSet
from src.analytics.repository import CycleRepository
from src.analytics.statistics import (
    STABLE,
    AccuracyEstimate,
    CycleStatistics,
    CycleStatisticsEngine,
    RegularityResult,
    TrendResult,
    actual_cycles,
)
from src.analytics.symptoms import SymptomAnalysis, SymptomPatternAnalyzer
from src.config import Settings, get_settings
from src.errors import ComputationFailure, ExportFailure
from src.models.tracking import CycleRecord, SymptomEntry
from src.storage.kv import KeyValueStore, build_store

if TYPE_CHECKING:
    from src.audit.auditor import AccessAuditor

logger = logging.getLogger("cadence.analytics.service")

T = TypeVar("T")

DASHBOARD_RECOMMENDATIONS = 3


@dataclass
class DashboardSummary:
    """Compact view for the tracker dashboard.

    Attributes:
        notifications_count:   Number of active notifications.
        current_phase:         Phase label for today.
        recommendations:       Top personalized recommendations.
        health_alerts:         Health-flag notifications.
        cycle_summary:         Phase, cycle day and description.
        next_predicted_period: Prediction, or None when unavailable.
        last_updated:          When the summary was computed.
        degraded:              Components that fell back to default values;
                               a degraded summary is never cached.
    """

    notifications_count: int
    current_phase: str
    recommendations: list[Recommendation]
    health_alerts: list[NotificationItem]
    cycle_summary: dict[str, Any]
    next_predicted_period: Prediction | None
    last_updated: datetime
    degraded: list[str] = field(default_factory=list)


@dataclass
class ComprehensiveAnalytics:
    """Everything the analytics view shows in one object."""

    regularity: RegularityResult
    symptoms: SymptomAnalysis
    trends: TrendResult
    insights: HealthInsights
    accuracy: AccuracyEstimate
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _unknown_phase() -> PhaseResult:
    return PhaseResult(
        phase=CyclePhase.unknown,
        day=0,
        description=PHASE_DESCRIPTIONS[CyclePhase.unknown],
    )


class CycleInsightsService:
    """Cached analytics for one deployment.

    Results computed for today are cached under ``<kind>:<user_id>``; results
    for any other reference date are cached under a date-qualified key, so an
    ``as_of_date`` is always honoured.  Fallback values are never cached.

    Args:
        repository: Read-only source of cycle and symptom records.
        store:      Key-value store backing the result cache.
        config:     Analytics configuration (defaults to the global singleton).
        auditor:    Optional access auditor; secure exports are recorded on it.
    """

    def __init__(
        self,
        repository: CycleRepository,
        store: KeyValueStore,
        config: AnalyticsConfig | None = None,
        auditor: AccessAuditor | None = None,
    ) -> None:
        self._repo = repository
        self._config = config or get_analytics_config()
        self._cache = ResultCache(store, self._config)
        self._auditor = auditor

        self._statistics = CycleStatisticsEngine(self._config)
        self._phases = CyclePhaseClassifier(self._config)
        self._symptoms = SymptomPatternAnalyzer(self._config)
        self._predictions = PredictionEngine(self._config)
        self._recommendations = RecommendationGenerator(self._config, self._symptoms)
        self._notifications = NotificationEngine(self._config, self._predictions)

    @property
    def cache(self) -> ResultCache:
        return self._cache

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _cycles(self, user_id: str) -> list[CycleRecord]:
        return self._repo.recent_cycles(user_id, self._config.statistics.max_cycles)

    def _symptoms_within(self, user_id: str, days: int, today: date) -> list[SymptomEntry]:
        return self._repo.symptoms_since(user_id, today - timedelta(days=days))

    @staticmethod
    def _variant(as_of_date: date | None) -> str | None:
        if as_of_date is None or as_of_date == date.today():
            return None
        return as_of_date.isoformat()

    def _guarded(
        self,
        component: str,
        user_id: str,
        compute: Callable[[], T],
        fallback: Callable[[], T],
        degraded: list[str] | None = None,
    ) -> T:
        try:
            return compute()
        except Exception as exc:
            failure = exc if isinstance(exc, ComputationFailure) else ComputationFailure(component, exc)
            logger.error(
                "Error computing %s for user %s: %s",
                failure.component, user_id, failure.cause, exc_info=True,
            )
            if degraded is not None:
                degraded.append(component)
            return fallback()

    def _cached_prediction(self, user_id: str, as_of_date: date | None) -> Prediction:
        return self._cache.get_or_compute(
            "predictions",
            user_id,
            lambda: self._predictions.predict(self._cycles(user_id), as_of_date),
            variant=self._variant(as_of_date),
        )

    def _cached_notifications(self, user_id: str, today: date) -> NotificationBundle:
        def _compute() -> NotificationBundle:
            cycles = self._cycles(user_id)
            symptoms = self._symptoms_within(
                user_id, self._config.notifications.severe_lookback_days, today
            )
            return self._notifications.evaluate(cycles, symptoms, as_of_date=today)

        return self._cache.get_or_compute(
            "notifications", user_id, _compute, variant=self._variant(today)
        )

    def _compute_recommendations(
        self,
        user_id: str,
        today: date,
        include_lifestyle_tips: bool = True,
        privacy_level: str = "standard",
    ) -> RecommendationSet:
        cycles = self._repo.recent_cycles(user_id, self._config.recommendations.history_cycles)
        symptoms = self._symptoms_within(
            user_id, self._config.symptoms.recommendation_lookback_days, today
        )
        return self._recommendations.generate(
            cycles,
            symptoms,
            as_of_date=today,
            include_lifestyle_tips=include_lifestyle_tips,
            privacy_level=privacy_level,
        )

    def _cached_recommendations(self, user_id: str, today: date) -> RecommendationSet:
        return self._cache.get_or_compute(
            "recommendations",
            user_id,
            lambda: self._compute_recommendations(user_id, today),
            variant=self._variant(today),
            cacheable=lambda result: not result.is_fallback,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def has_minimum_data_for_analytics(self, user_id: str) -> bool:
        """True when the user has logged enough cycles for regularity analysis."""
        try:
            cycles = actual_cycles(self._cycles(user_id))
        except Exception as exc:
            logger.error("Error reading cycles for user %s: %s", user_id, exc)
            return False
        return len(cycles) >= self._config.statistics.min_cycles

    def statistics(self, user_id: str) -> CycleStatistics:
        return self._guarded(
            "cycle statistics",
            user_id,
            lambda: self._statistics.analyze(self._cycles(user_id)),
            lambda: CycleStatistics(
                regularity=RegularityResult(status="unknown"),
                trend=TrendResult(direction=STABLE),
            ),
        )

    def current_phase(self, user_id: str, as_of_date: date | None = None) -> PhaseResult:
        return self._guarded(
            "cycle phase",
            user_id,
            lambda: self._phases.current_phase(self._cycles(user_id), as_of_date),
            _unknown_phase,
        )

    def prediction(self, user_id: str, as_of_date: date | None = None) -> Prediction:
        """Next-period prediction, cached per user and reference date."""
        return self._guarded(
            "prediction",
            user_id,
            lambda: self._cached_prediction(user_id, as_of_date),
            Prediction,
        )

    def forecast(self, user_id: str, count: int | None = None) -> list[ForecastedCycle]:
        return self._guarded(
            "forecast",
            user_id,
            lambda: self._predictions.forecast(self._cycles(user_id), count),
            list,
        )

    def recommendations(
        self,
        user_id: str,
        as_of_date: date | None = None,
        include_lifestyle_tips: bool = True,
        privacy_level: str = "standard",
    ) -> RecommendationSet:
        """Personalized recommendations.

        Results for the default options are cached per user; calls with
        non-default options are computed fresh and not stored.  The generic
        fallback set is never cached.
        """
        today = as_of_date or date.today()

        def _fallback() -> RecommendationSet:
            return self._recommendations.fallback(privacy_level=privacy_level)

        if include_lifestyle_tips and privacy_level == "standard":
            return self._guarded(
                "recommendations",
                user_id,
                lambda: self._cached_recommendations(user_id, today),
                _fallback,
            )
        return self._guarded(
            "recommendations",
            user_id,
            lambda: self._compute_recommendations(
                user_id, today, include_lifestyle_tips, privacy_level
            ),
            _fallback,
        )

    def notifications(self, user_id: str, as_of_date: date | None = None) -> NotificationBundle:
        """Active notifications, cached per user and reference date."""
        today = as_of_date or date.today()
        return self._guarded(
            "notifications",
            user_id,
            lambda: self._cached_notifications(user_id, today),
            NotificationBundle,
        )

    def dashboard(self, user_id: str, as_of_date: date | None = None) -> DashboardSummary:
        """Dashboard summary, cached per user and reference date.

        A component that fails is replaced by its fallback and named in
        ``degraded``; such a summary is returned but not cached.
        """
        today = as_of_date or date.today()

        def _compute() -> DashboardSummary:
            degraded: list[str] = []
            bundle = self._guarded(
                "notifications",
                user_id,
                lambda: self._cached_notifications(user_id, today),
                NotificationBundle,
                degraded,
            )
            phase = self._guarded(
                "cycle phase",
                user_id,
                lambda: self._phases.current_phase(self._cycles(user_id), today),
                _unknown_phase,
                degraded,
            )
            prediction = self._guarded(
                "prediction",
                user_id,
                lambda: self._cached_prediction(user_id, today),
                Prediction,
                degraded,
            )
            recs = self._guarded(
                "recommendations",
                user_id,
                lambda: self._cached_recommendations(user_id, today),
                self._recommendations.fallback,
                degraded,
            )
            if recs.is_fallback and "recommendations" not in degraded:
                degraded.append("recommendations")

            return DashboardSummary(
                notifications_count=bundle.count,
                current_phase=phase.phase.value,
                recommendations=recs.recommendations[:DASHBOARD_RECOMMENDATIONS],
                health_alerts=list(bundle.health_flags),
                cycle_summary={
                    "current_phase": phase.phase.value,
                    "cycle_day": phase.day,
                    "phase_description": phase.description,
                },
                next_predicted_period=prediction if prediction.available else None,
                last_updated=_now(),
                degraded=degraded,
            )

        def _fallback() -> DashboardSummary:
            return DashboardSummary(
                notifications_count=0,
                current_phase=CyclePhase.unknown.value,
                recommendations=[],
                health_alerts=[],
                cycle_summary={
                    "current_phase": CyclePhase.unknown.value,
                    "cycle_day": 0,
                    "phase_description": "Unable to load cycle information",
                },
                next_predicted_period=None,
                last_updated=_now(),
                degraded=["dashboard"],
            )

        return self._guarded(
            "dashboard",
            user_id,
            lambda: self._cache.get_or_compute(
                "dashboard",
                user_id,
                _compute,
                variant=self._variant(today),
                cacheable=lambda summary: not summary.degraded,
            ),
            _fallback,
        )

    def comprehensive_analytics(
        self, user_id: str, as_of_date: date | None = None
    ) -> ComprehensiveAnalytics:
        """Regularity, symptoms, trends, insights and accuracy, cached per user and date."""
        today = as_of_date or date.today()

        def _compute() -> ComprehensiveAnalytics:
            cycles = self._cycles(user_id)
            symptoms = self._symptoms_within(
                user_id, self._config.symptoms.analytics_lookback_days, today
            )
            stats = self._statistics.analyze(cycles)
            return ComprehensiveAnalytics(
                regularity=stats.regularity,
                symptoms=self._symptoms.analyze(symptoms, as_of_date=today),
                trends=stats.trend,
                insights=generate_health_insights(cycles, symptoms, self._config),
                accuracy=self._statistics.predictive_accuracy(cycles),
                generated_at=_now(),
            )

        def _fallback() -> ComprehensiveAnalytics:
            return ComprehensiveAnalytics(
                regularity=RegularityResult(status="unknown"),
                symptoms=SymptomAnalysis(),
                trends=TrendResult(direction=STABLE),
                insights=HealthInsights(),
                accuracy=AccuracyEstimate(score=0),
            )

        return self._guarded(
            "comprehensive analytics",
            user_id,
            lambda: self._cache.get_or_compute(
                "analytics", user_id, _compute, variant=self._variant(today)
            ),
            _fallback,
        )

    def secure_export(
        self,
        user_id: str,
        options: ExportOptions | None = None,
        exported_at: datetime | None = None,
    ) -> SecureExport:
        """Export the user's logged cycles, optionally with a forecast.

        The export is recorded on the access auditor when one is configured.
        Exports are never cached.

        Args:
            user_id:     Owner of the records.
            options:     Format, date range, predictions and anonymization.
            exported_at: Timestamp override (defaults to now, UTC).

        Returns:
            SecureExport; serialization into the requested format is left
            to the caller.

        Raises:
            ExportFailure: If the records could not be read or assembled.
        """
        opts = options or ExportOptions()
        try:
            # Read past the range end so the last cycle in range keeps its length
            records = self._repo.cycles_between(user_id, opts.start, None)
            predictions = (
                self._predictions.forecast(self._cycles(user_id))
                if opts.include_predictions
                else None
            )
            export = build_export(
                user_id, records, opts, predictions=predictions, exported_at=exported_at
            )
        except Exception as exc:
            logger.error("Error generating secure export for user %s: %s", user_id, exc, exc_info=True)
            raise ExportFailure("Unable to generate secure export") from exc

        if self._auditor is not None:
            self._auditor.log_data_export(
                user_id, EXPORT_DATA_TYPE, opts.export_format, timestamp=exported_at
            )
        logger.info(
            "Generated %s export for user %s (%d cycles)",
            opts.export_format, user_id, len(export.cycles),
        )
        return export

    def invalidate(self, user_id: str) -> None:
        """Drop every cached result for a user after their records change."""
        self._cache.invalidate(user_id)


def build_insights_service(
    repository: CycleRepository,
    settings: Settings | None = None,
    store: KeyValueStore | None = None,
    auditor: AccessAuditor | None = None,
) -> CycleInsightsService:
    """Wire a service from settings: store backend and optional config path."""
    s = settings or get_settings()
    config = (
        load_analytics_config(s.analytics_config_path)
        if s.analytics_config_path
        else get_analytics_config()
    )
    return CycleInsightsService(repository, store or build_store(s), config, auditor=auditor)
