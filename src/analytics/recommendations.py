"""Confidence-weighted personalized recommendations.

Candidates come from three rule sources, each assigning a fixed confidence:

    cycle      — irregular cycles (0.8), short cycles (0.9), long cycles (0.85)
    symptom    — severe symptom (0.9), recurring symptom (0.8)
    lifestyle  — general wellness (0.75), anti-inflammatory nutrition when
                 cramps were logged within the lookback window (0.85)

Candidates under the confidence threshold (0.7) are dropped, the rest are
ranked by source priority (cycle > symptom > lifestyle) and truncated to the
top five.  Any internal failure produces a fixed generic fallback set; the
generator never raises to its caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Sequence

from src.analytics.config_loader import AnalyticsConfig, get_analytics_config
from src.analytics.statistics import actual_cycles, cycle_lengths, population_std
from src.analytics.symptoms import SymptomPatternAnalyzer, symptom_display_name
from src.errors import ComputationFailure
from src.models.tracking import CycleRecord, SymptomEntry

logger = logging.getLogger("cadence.analytics.recommendations")

SOURCE_CYCLE = "cycle"
SOURCE_SYMPTOM = "symptom"
SOURCE_LIFESTYLE = "lifestyle"

# Lower rank sorts first
SOURCE_PRIORITY: dict[str, int] = {SOURCE_CYCLE: 0, SOURCE_SYMPTOM: 1, SOURCE_LIFESTYLE: 2}

PERSONALIZATION_FACTORS: dict[str, str] = {
    SOURCE_CYCLE: "cycle_history",
    SOURCE_SYMPTOM: "symptom_patterns",
    SOURCE_LIFESTYLE: "lifestyle_analysis",
}

FALLBACK_CONFIDENCE = 0.5
FALLBACK_FACTORS = ["general_guidelines"]

_MANAGEMENT_STEPS: dict[str, list[str]] = {
    "cramps": [
        "Apply heat therapy (heating pad, warm bath)",
        "Consider over-the-counter pain relievers",
        "Practice gentle stretching or yoga",
        "Consult healthcare provider for severe pain",
    ],
    "headache": [
        "Stay hydrated",
        "Manage stress levels",
        "Consider magnesium supplements (consult doctor)",
        "Track triggers in relation to your cycle",
    ],
    "bloating": [
        "Reduce sodium intake",
        "Stay hydrated",
        "Eat smaller, frequent meals",
        "Consider probiotics",
    ],
    "mood_changes": [
        "Practice stress management techniques",
        "Maintain regular exercise routine",
        "Consider mood tracking",
        "Seek support from healthcare provider if severe",
    ],
}
_DEFAULT_MANAGEMENT_STEPS = [
    "Track symptom patterns",
    "Practice self-care",
    "Consult healthcare provider if severe",
]

_PREVENTIVE_STEPS: dict[str, list[str]] = {
    "cramps": [
        "Regular exercise throughout the month",
        "Maintain adequate calcium and magnesium intake",
        "Reduce inflammatory foods",
        "Practice relaxation techniques",
    ],
    "headache": [
        "Maintain regular sleep schedule",
        "Stay consistently hydrated",
        "Manage stress proactively",
        "Track dietary triggers",
    ],
    "bloating": [
        "Maintain consistent eating schedule",
        "Include fiber gradually in diet",
        "Stay active with regular movement",
        "Monitor sodium intake",
    ],
}
_DEFAULT_PREVENTIVE_STEPS = [
    "Maintain healthy lifestyle habits",
    "Track patterns to identify triggers",
    "Practice preventive self-care",
]


@dataclass
class Recommendation:
    """A single piece of advice.

    Attributes:
        title:            Short display title.
        description:      One or two sentences of explanation.
        category:         e.g. 'cycle_health', 'symptom_management', 'nutrition'.
        priority:         'low', 'medium' or 'high'.
        source:           Rule source that produced it.
        confidence:       Fixed rule confidence in [0.0, 1.0].
        actionable_steps: Concrete next steps.
    """

    title: str
    description: str
    category: str
    priority: str
    source: str
    confidence: float
    actionable_steps: list[str] = field(default_factory=list)


@dataclass
class RecommendationSet:
    """Ranked recommendations with parallel confidence scores."""

    recommendations: list[Recommendation]
    confidence_scores: list[float]
    personalization_factors: list[str]
    model_version: str
    generated_at: datetime
    privacy_level: str = "standard"
    error: str | None = None

    @property
    def is_fallback(self) -> bool:
        return self.error is not None


def fallback_recommendations() -> list[Recommendation]:
    """Generic advice returned when personalized generation fails."""
    return [
        Recommendation(
            title="Track Consistently",
            description="Regular tracking helps identify patterns and improves health insights.",
            category="tracking",
            priority="low",
            source="fallback",
            confidence=FALLBACK_CONFIDENCE,
            actionable_steps=[
                "Log your period start and end dates",
                "Track symptoms with severity levels",
                "Note any lifestyle factors",
            ],
        ),
        Recommendation(
            title="Maintain Healthy Habits",
            description="Support your reproductive health with balanced lifestyle choices.",
            category="wellness",
            priority="low",
            source="fallback",
            confidence=FALLBACK_CONFIDENCE,
            actionable_steps=[
                "Eat a balanced diet rich in nutrients",
                "Exercise regularly but listen to your body",
                "Get adequate sleep",
            ],
        ),
        Recommendation(
            title="Know When to Seek Help",
            description="Consult healthcare providers for concerning symptoms or changes.",
            category="medical_attention",
            priority="medium",
            source="fallback",
            confidence=FALLBACK_CONFIDENCE,
            actionable_steps=[
                "Track severe or unusual symptoms",
                "Schedule regular gynecological checkups",
                "Don't hesitate to ask questions",
            ],
        ),
    ]


class RecommendationGenerator:
    """Merge cycle, symptom and lifestyle rules into ranked advice.

    Usage::

        generator = RecommendationGenerator()
        result = generator.generate(cycles, symptoms)
        for rec, score in zip(result.recommendations, result.confidence_scores):
            print(score, rec.title)
    """

    def __init__(
        self,
        config: AnalyticsConfig | None = None,
        symptom_analyzer: SymptomPatternAnalyzer | None = None,
    ) -> None:
        self._config = config or get_analytics_config()
        self._symptoms = symptom_analyzer or SymptomPatternAnalyzer(self._config)

    @property
    def _rc(self):
        return self._config.recommendations

    # ------------------------------------------------------------------
    # Rule sources
    # ------------------------------------------------------------------

    def _cycle_rules(self, cycles: Sequence[CycleRecord]) -> list[Recommendation]:
        rc = self._rc
        recent = actual_cycles(cycles, limit=rc.history_cycles)
        if len(recent) < rc.min_cycles:
            return []

        lengths = cycle_lengths(recent)
        average = sum(lengths) / len(lengths)
        std = population_std(lengths)
        out: list[Recommendation] = []

        if std > rc.irregular_std_days:
            out.append(
                Recommendation(
                    title="Improve Cycle Regularity",
                    description=(
                        "Your cycles show some irregularity. Consider stress management, "
                        "regular sleep, and balanced nutrition."
                    ),
                    category="cycle_health",
                    priority="medium",
                    source=SOURCE_CYCLE,
                    confidence=0.8,
                    actionable_steps=[
                        "Maintain consistent sleep schedule",
                        "Practice stress reduction techniques",
                        "Consider tracking additional factors like stress and exercise",
                    ],
                )
            )

        if average < rc.short_cycle_days:
            out.append(
                Recommendation(
                    title="Short Cycle Consideration",
                    description=(
                        "Your cycles are shorter than average. This might be normal for you, "
                        "but consider discussing with a healthcare provider."
                    ),
                    category="medical_attention",
                    priority="high",
                    source=SOURCE_CYCLE,
                    confidence=0.9,
                    actionable_steps=[
                        "Schedule a consultation with a gynecologist",
                        "Track symptoms in more detail",
                        "Note any changes in lifestyle or medications",
                    ],
                )
            )
        elif average > rc.long_cycle_days:
            out.append(
                Recommendation(
                    title="Long Cycle Management",
                    description=(
                        "Your cycles are longer than average. Monitor for consistency and "
                        "consider medical consultation if concerning."
                    ),
                    category="monitoring",
                    priority="medium",
                    source=SOURCE_CYCLE,
                    confidence=0.85,
                    actionable_steps=[
                        "Continue tracking consistently",
                        "Monitor for other symptoms",
                        "Consider lifestyle factors affecting hormones",
                    ],
                )
            )
        return out

    def _symptom_rules(
        self, symptoms: Sequence[SymptomEntry], today: date
    ) -> list[Recommendation]:
        analysis = self._symptoms.analyze(
            symptoms,
            as_of_date=today,
            lookback_days=self._config.symptoms.recommendation_lookback_days,
        )
        out: list[Recommendation] = []
        for symptom_type, pattern in analysis.patterns.items():
            name = symptom_display_name(symptom_type)
            readable = symptom_type.replace("_", " ")
            if pattern.high_severity:
                out.append(
                    Recommendation(
                        title=f"Manage {name}",
                        description=(
                            f"You've reported severe {readable}. Consider symptom management "
                            "strategies and medical consultation."
                        ),
                        category="symptom_management",
                        priority="high",
                        source=SOURCE_SYMPTOM,
                        confidence=0.9,
                        actionable_steps=list(
                            _MANAGEMENT_STEPS.get(symptom_type, _DEFAULT_MANAGEMENT_STEPS)
                        ),
                    )
                )
            if pattern.recurring:
                out.append(
                    Recommendation(
                        title=f"Address Recurring {name}",
                        description=(
                            f"You frequently experience {readable}. Consider preventive "
                            "measures and lifestyle adjustments."
                        ),
                        category="prevention",
                        priority="medium",
                        source=SOURCE_SYMPTOM,
                        confidence=0.8,
                        actionable_steps=list(
                            _PREVENTIVE_STEPS.get(symptom_type, _DEFAULT_PREVENTIVE_STEPS)
                        ),
                    )
                )
        return out

    def _lifestyle_rules(
        self, symptoms: Sequence[SymptomEntry], today: date
    ) -> list[Recommendation]:
        out = [
            Recommendation(
                title="Optimize Your Cycle Health",
                description=(
                    "Maintain overall reproductive health through balanced nutrition "
                    "and regular exercise."
                ),
                category="wellness",
                priority="low",
                source=SOURCE_LIFESTYLE,
                confidence=0.75,
                actionable_steps=[
                    "Include iron-rich foods in your diet",
                    "Stay hydrated throughout your cycle",
                    "Consider gentle exercise during menstruation",
                    "Practice stress management techniques",
                ],
            )
        ]
        since = today - timedelta(days=self._config.symptoms.recommendation_lookback_days)
        if any(s.symptom_type == "cramps" and since <= s.date <= today for s in symptoms):
            out.append(
                Recommendation(
                    title="Anti-Inflammatory Nutrition",
                    description=(
                        "Incorporate anti-inflammatory foods to help reduce menstrual discomfort."
                    ),
                    category="nutrition",
                    priority="medium",
                    source=SOURCE_LIFESTYLE,
                    confidence=0.85,
                    actionable_steps=[
                        "Include omega-3 rich foods (fish, walnuts, flaxseeds)",
                        "Add turmeric and ginger to your diet",
                        "Reduce processed foods and sugar",
                        "Consider magnesium-rich foods",
                    ],
                )
            )
        return out

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def candidates(
        self,
        cycles: Sequence[CycleRecord],
        symptoms: Sequence[SymptomEntry],
        as_of_date: date | None = None,
        include_lifestyle_tips: bool = True,
    ) -> list[Recommendation]:
        """Collect unfiltered candidates from every enabled rule source.

        Raises:
            ComputationFailure: If a rule source fails.
        """
        today = as_of_date or date.today()
        sources: list[tuple[str, Callable[[], list[Recommendation]]]] = [
            (SOURCE_CYCLE, lambda: self._cycle_rules(cycles)),
        ]
        if symptoms:
            sources.append((SOURCE_SYMPTOM, lambda: self._symptom_rules(symptoms, today)))
        if include_lifestyle_tips:
            sources.append((SOURCE_LIFESTYLE, lambda: self._lifestyle_rules(symptoms, today)))

        out: list[Recommendation] = []
        for name, rule in sources:
            try:
                out.extend(rule())
            except Exception as exc:
                raise ComputationFailure(f"{name} recommendations", exc) from exc
        return out

    def rank(self, candidates: Sequence[Recommendation]) -> list[Recommendation]:
        """Filter by confidence, order by source priority, keep the top N."""
        rc = self._rc
        kept = [c for c in candidates if c.confidence >= rc.confidence_threshold]
        kept.sort(key=lambda c: SOURCE_PRIORITY.get(c.source, len(SOURCE_PRIORITY)))
        return kept[: rc.max_recommendations]

    def generate(
        self,
        cycles: Sequence[CycleRecord],
        symptoms: Sequence[SymptomEntry],
        as_of_date: date | None = None,
        include_lifestyle_tips: bool = True,
        privacy_level: str = "standard",
        generated_at: datetime | None = None,
    ) -> RecommendationSet:
        """Produce ranked, confidence-filtered recommendations.

        Args:
            cycles:                 The user's cycle records.
            symptoms:               The user's recent symptom entries.
            as_of_date:             Reference date (defaults to today).
            include_lifestyle_tips: Whether to evaluate the lifestyle source.
            privacy_level:          Passed through to the result.
            generated_at:           Timestamp override (defaults to now, UTC).

        Returns:
            RecommendationSet; the generic fallback set if anything fails.
        """
        rc = self._rc
        stamp = generated_at or datetime.now(timezone.utc)
        try:
            ranked = self.rank(
                self.candidates(
                    cycles,
                    symptoms,
                    as_of_date=as_of_date,
                    include_lifestyle_tips=include_lifestyle_tips,
                )
            )
            factors = [
                PERSONALIZATION_FACTORS[source]
                for source in (SOURCE_CYCLE, SOURCE_SYMPTOM, SOURCE_LIFESTYLE)
                if any(r.source == source for r in ranked)
            ]
            return RecommendationSet(
                recommendations=ranked,
                confidence_scores=[r.confidence for r in ranked],
                personalization_factors=factors,
                model_version=rc.model_version,
                generated_at=stamp,
                privacy_level=privacy_level,
            )
        except Exception as exc:
            logger.error("Error generating recommendations: %s", exc, exc_info=True)
            return self.fallback(privacy_level=privacy_level, generated_at=stamp)

    def fallback(
        self,
        privacy_level: str = "standard",
        generated_at: datetime | None = None,
    ) -> RecommendationSet:
        """The generic set returned in place of personalized advice."""
        items = fallback_recommendations()
        return RecommendationSet(
            recommendations=items,
            confidence_scores=[r.confidence for r in items],
            personalization_factors=list(FALLBACK_FACTORS),
            model_version=self._rc.model_version,
            generated_at=generated_at or datetime.now(timezone.utc),
            privacy_level=privacy_level,
            error="Unable to generate personalized recommendations",
        )
