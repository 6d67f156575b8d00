"""Cadence cycle analytics engine.

Derives statistics, phase, predictions, recommendations and notifications
from a user's logged cycles and symptoms.  All computations are synchronous
and stateless; results are memoized per user with a TTL.

Core modules:
    statistics      — Regularity (population std) and trend detection
    phase           — Day-of-cycle phase classification
    symptoms        — Symptom frequency, severity and trend
    prediction      — Next-period prediction, fertile window, forecasts
    recommendations — Confidence-weighted recommendation ranking
    notifications   — Overdue / reminder / severe-symptom rules
    insights        — Health insights for the analytics view
    cache           — Per-user, per-kind result cache
    service         — Cached, failure-tolerant facade over the engines
    repository      — Read-only record source ABC + in-memory implementation
    config_loader   — Load/validate/hot-reload analytics_config.yaml
    export          — Secure, optionally anonymized cycle-history export
"""

from src.analytics.config_loader import AnalyticsConfig, get_analytics_config
from src.analytics.repository import CycleRepository, InMemoryCycleRepository
from src.analytics.service import CycleInsightsService, build_insights_service

__all__ = [
    "AnalyticsConfig",
    "get_analytics_config",
    "CycleRepository",
    "InMemoryCycleRepository",
    "CycleInsightsService",
    "build_insights_service",
]
