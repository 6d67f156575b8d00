"""Health insights for the comprehensive analytics view."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from src.analytics.config_loader import AnalyticsConfig, get_analytics_config
from src.analytics.statistics import actual_cycles, cycle_lengths
from src.models.tracking import CycleRecord, SymptomEntry

CATEGORY_ATTENTION = "attention"
CATEGORY_HEALTH = "health"


@dataclass
class HealthInsight:
    type: str
    category: str
    title: str
    description: str
    recommendation: str


@dataclass
class HealthInsights:
    """Insights plus an overall priority.

    Attributes:
        recommendations: The individual insights.
        total_insights:  len(recommendations).
        priority_level:  'high' if any health insight, 'medium' if more than
                         one attention insight, 'low' otherwise, 'none' when
                         there are no insights at all.
    """

    recommendations: list[HealthInsight] = field(default_factory=list)
    total_insights: int = 0
    priority_level: str = "none"


def insight_priority(insights: Sequence[HealthInsight]) -> str:
    if not insights:
        return "none"
    if any(i.category == CATEGORY_HEALTH for i in insights):
        return "high"
    if sum(1 for i in insights if i.category == CATEGORY_ATTENTION) > 1:
        return "medium"
    return "low"


def generate_health_insights(
    cycles: Sequence[CycleRecord],
    symptoms: Sequence[SymptomEntry],
    config: AnalyticsConfig | None = None,
) -> HealthInsights:
    """Flag short/long average cycles and severe symptoms.

    Args:
        cycles:   Cycle records in any order.
        symptoms: Symptom entries already restricted to the analytics window.
        config:   Optional analytics configuration.

    Returns:
        HealthInsights.
    """
    cfg = config or get_analytics_config()
    rc = cfg.recommendations
    insights: list[HealthInsight] = []

    recent = actual_cycles(cycles, limit=cfg.statistics.max_cycles)
    if len(recent) >= cfg.statistics.min_cycles:
        lengths = cycle_lengths(recent)
        average = sum(lengths) / len(lengths)
        if average < rc.short_cycle_days:
            insights.append(
                HealthInsight(
                    type="cycle_length",
                    category=CATEGORY_ATTENTION,
                    title="Short Cycles Detected",
                    description=(
                        "Your cycles are shorter than average. "
                        "Consider consulting a healthcare provider."
                    ),
                    recommendation="Track symptoms and consider medical consultation",
                )
            )
        elif average > rc.long_cycle_days:
            insights.append(
                HealthInsight(
                    type="cycle_length",
                    category=CATEGORY_ATTENTION,
                    title="Long Cycles Detected",
                    description=(
                        "Your cycles are longer than average. This could be normal for you "
                        "or worth discussing with a healthcare provider."
                    ),
                    recommendation="Monitor for consistency and consult if concerned",
                )
            )

    if any(s.severity >= cfg.symptoms.high_severity_threshold for s in symptoms):
        insights.append(
            HealthInsight(
                type="symptoms",
                category=CATEGORY_HEALTH,
                title="Severe Symptoms Noted",
                description=(
                    "You've logged several severe symptoms. Consider tracking more "
                    "details and consulting a healthcare provider."
                ),
                recommendation="Keep detailed symptom logs and seek medical advice",
            )
        )

    return HealthInsights(
        recommendations=insights,
        total_insights=len(insights),
        priority_level=insight_priority(insights),
    )
