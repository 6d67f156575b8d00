"""Tests for the result cache and the cached insights service."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from src.analytics.cache import ResultCache
from src.analytics.config_loader import AnalyticsConfig
from src.analytics.phase import CyclePhase
from src.analytics.repository import CycleRepository, InMemoryCycleRepository
from src.analytics.service import CycleInsightsService, build_insights_service
from src.analytics.tests.conftest import TEST_DATE, TEST_USER_ID, cycles_from_lengths, make_symptom
from src.config import Settings
from src.storage.kv import InMemoryKeyValueStore


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def clocked_store(clock: FakeClock) -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore(clock=clock)


class TestResultCache:
    def test_hit_returns_stored_value(
        self, clocked_store: InMemoryKeyValueStore, analytics_config: AnalyticsConfig
    ) -> None:
        cache = ResultCache(clocked_store, analytics_config)
        compute = MagicMock(return_value={"count": 1})
        first = cache.get_or_compute("notifications", TEST_USER_ID, compute)
        second = cache.get_or_compute("notifications", TEST_USER_ID, compute)
        assert first is second
        compute.assert_called_once()

    def test_expires_after_ttl(
        self,
        clocked_store: InMemoryKeyValueStore,
        clock: FakeClock,
        analytics_config: AnalyticsConfig,
    ) -> None:
        cache = ResultCache(clocked_store, analytics_config)
        compute = MagicMock(side_effect=[1, 2])
        assert cache.get_or_compute("notifications", TEST_USER_ID, compute) == 1
        clock.advance(899)
        assert cache.get_or_compute("notifications", TEST_USER_ID, compute) == 1
        clock.advance(2)
        assert cache.get_or_compute("notifications", TEST_USER_ID, compute) == 2

    def test_cached_none_is_a_hit(
        self, clocked_store: InMemoryKeyValueStore, analytics_config: AnalyticsConfig
    ) -> None:
        cache = ResultCache(clocked_store, analytics_config)
        compute = MagicMock(return_value=None)
        cache.get_or_compute("dashboard", TEST_USER_ID, compute)
        cache.get_or_compute("dashboard", TEST_USER_ID, compute)
        compute.assert_called_once()

    def test_keys_are_per_user_and_kind(
        self, clocked_store: InMemoryKeyValueStore, analytics_config: AnalyticsConfig
    ) -> None:
        cache = ResultCache(clocked_store, analytics_config)
        cache.get_or_compute("dashboard", "a", lambda: "a-dash")
        cache.get_or_compute("dashboard", "b", lambda: "b-dash")
        cache.get_or_compute("analytics", "a", lambda: "a-analytics")
        assert clocked_store.get("dashboard:a") == "a-dash"
        assert clocked_store.get("dashboard:b") == "b-dash"
        assert clocked_store.get("analytics:a") == "a-analytics"

    def test_unknown_kind_raises(
        self, clocked_store: InMemoryKeyValueStore, analytics_config: AnalyticsConfig
    ) -> None:
        cache = ResultCache(clocked_store, analytics_config)
        with pytest.raises(KeyError):
            cache.get_or_compute("unknown", TEST_USER_ID, lambda: 1)

    def test_uncacheable_value_is_not_stored(
        self, clocked_store: InMemoryKeyValueStore, analytics_config: AnalyticsConfig
    ) -> None:
        cache = ResultCache(clocked_store, analytics_config)
        compute = MagicMock(side_effect=["degraded", "ok"])

        def healthy(value: str) -> bool:
            return value == "ok"

        assert cache.get_or_compute("dashboard", TEST_USER_ID, compute, cacheable=healthy) == "degraded"
        assert not clocked_store.has("dashboard:" + TEST_USER_ID)
        assert cache.get_or_compute("dashboard", TEST_USER_ID, compute, cacheable=healthy) == "ok"
        assert cache.get_or_compute("dashboard", TEST_USER_ID, compute, cacheable=healthy) == "ok"
        assert compute.call_count == 2

    def test_variants_have_own_keys_and_are_invalidated(
        self, clocked_store: InMemoryKeyValueStore, analytics_config: AnalyticsConfig
    ) -> None:
        cache = ResultCache(clocked_store, analytics_config)
        cache.get_or_compute("predictions", TEST_USER_ID, lambda: "today")
        dated = cache.get_or_compute(
            "predictions", TEST_USER_ID, lambda: "dated", variant="2026-02-23"
        )
        assert dated == "dated"
        assert clocked_store.get(f"predictions:{TEST_USER_ID}") == "today"
        assert clocked_store.get(f"predictions:{TEST_USER_ID}:2026-02-23") == "dated"

        cache.invalidate(TEST_USER_ID)
        assert not clocked_store.has(f"predictions:{TEST_USER_ID}")
        assert not clocked_store.has(f"predictions:{TEST_USER_ID}:2026-02-23")
        assert not clocked_store.has(ResultCache.variants_key("predictions", TEST_USER_ID))

    def test_invalidate_drops_every_kind(
        self, clocked_store: InMemoryKeyValueStore, analytics_config: AnalyticsConfig
    ) -> None:
        cache = ResultCache(clocked_store, analytics_config)
        for kind in cache.kinds:
            cache.get_or_compute(kind, TEST_USER_ID, lambda: kind)
        cache.get_or_compute("dashboard", "other", lambda: "keep")
        cache.invalidate(TEST_USER_ID)
        assert all(not clocked_store.has(ResultCache.key(k, TEST_USER_ID)) for k in cache.kinds)
        assert clocked_store.get("dashboard:other") == "keep"


class TestCycleInsightsService:
    def _service(
        self,
        analytics_config: AnalyticsConfig,
        repository: CycleRepository | None = None,
    ) -> CycleInsightsService:
        if repository is None:
            repository = InMemoryCycleRepository(
                cycles_from_lengths([28, 28, 28], last_start=TEST_DATE - timedelta(days=10)),
                [make_symptom("cramps", 5, TEST_DATE - timedelta(days=1))],
            )
        return CycleInsightsService(repository, InMemoryKeyValueStore(), analytics_config)

    def test_dashboard(self, analytics_config: AnalyticsConfig) -> None:
        dashboard = self._service(analytics_config).dashboard(TEST_USER_ID, as_of_date=TEST_DATE)
        assert dashboard.current_phase == "follicular"
        assert dashboard.cycle_summary["cycle_day"] == 11
        assert dashboard.notifications_count == 1
        assert [a.type for a in dashboard.health_alerts] == ["severe_symptoms"]
        assert dashboard.next_predicted_period is not None
        assert len(dashboard.recommendations) <= 3

    def test_prediction_is_cached(self, analytics_config: AnalyticsConfig) -> None:
        repo = InMemoryCycleRepository(cycles_from_lengths([28, 28], last_start=TEST_DATE))
        service = self._service(analytics_config, repo)
        first = service.prediction(TEST_USER_ID, as_of_date=TEST_DATE)
        repo.add_cycles(cycles_from_lengths([40], last_start=TEST_DATE + timedelta(days=40)))
        assert service.prediction(TEST_USER_ID, as_of_date=TEST_DATE) is first

        service.invalidate(TEST_USER_ID)
        refreshed = service.prediction(TEST_USER_ID, as_of_date=TEST_DATE)
        assert refreshed is not first

    def test_comprehensive_analytics(self, analytics_config: AnalyticsConfig) -> None:
        analytics = self._service(analytics_config).comprehensive_analytics(
            TEST_USER_ID, as_of_date=TEST_DATE
        )
        assert analytics.regularity.status == "regular"
        assert "cramps" in analytics.symptoms.patterns
        assert analytics.insights.priority_level == "high"
        assert analytics.accuracy.score == 93

    def test_minimum_data(self, analytics_config: AnalyticsConfig) -> None:
        service = self._service(analytics_config)
        assert service.has_minimum_data_for_analytics(TEST_USER_ID)
        assert not service.has_minimum_data_for_analytics("nobody")

    def test_failures_return_fallbacks(self, analytics_config: AnalyticsConfig) -> None:
        repo = MagicMock(spec=CycleRepository)
        repo.recent_cycles.side_effect = ConnectionError("database down")
        repo.symptoms_since.side_effect = ConnectionError("database down")
        service = self._service(analytics_config, repo)

        assert service.current_phase(TEST_USER_ID).phase == CyclePhase.unknown
        assert not service.prediction(TEST_USER_ID).available
        assert service.notifications(TEST_USER_ID).count == 0
        assert service.recommendations(TEST_USER_ID).is_fallback
        assert service.statistics(TEST_USER_ID).regularity.status == "unknown"
        assert service.comprehensive_analytics(TEST_USER_ID).accuracy.score == 0
        assert not service.has_minimum_data_for_analytics(TEST_USER_ID)

    def test_failures_are_not_cached(self, analytics_config: AnalyticsConfig) -> None:
        repo = MagicMock(spec=CycleRepository)
        repo.recent_cycles.side_effect = [ConnectionError("down"), []]
        service = self._service(analytics_config, repo)
        assert not service.prediction(TEST_USER_ID).available
        service.prediction(TEST_USER_ID)
        assert repo.recent_cycles.call_count == 2

    def test_fallback_recommendations_are_not_cached(
        self, analytics_config: AnalyticsConfig, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        service = self._service(analytics_config)
        generator = service._recommendations
        real_rules = generator._cycle_rules
        calls: list[int] = []

        def flaky_rules(cycles):
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("rule evaluation failed")
            return real_rules(cycles)

        monkeypatch.setattr(generator, "_cycle_rules", flaky_rules)
        first = service.recommendations(TEST_USER_ID, as_of_date=TEST_DATE)
        second = service.recommendations(TEST_USER_ID, as_of_date=TEST_DATE)
        assert first.is_fallback
        assert not second.is_fallback
        assert len(calls) == 2
        assert service.recommendations(TEST_USER_ID, as_of_date=TEST_DATE) is second

    def test_degraded_dashboard_is_not_cached(
        self, analytics_config: AnalyticsConfig, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        service = self._service(analytics_config)
        classifier = service._phases
        real_phase = classifier.current_phase
        calls: list[int] = []

        def flaky_phase(*args, **kwargs):
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("phase lookup failed")
            return real_phase(*args, **kwargs)

        monkeypatch.setattr(classifier, "current_phase", flaky_phase)
        first = service.dashboard(TEST_USER_ID, as_of_date=TEST_DATE)
        assert first.current_phase == "unknown"
        assert first.degraded == ["cycle phase"]

        second = service.dashboard(TEST_USER_ID, as_of_date=TEST_DATE)
        assert second.current_phase == "follicular"
        assert second.degraded == []
        assert service.dashboard(TEST_USER_ID, as_of_date=TEST_DATE) is second

    def test_reference_date_is_part_of_cache_key(self, analytics_config: AnalyticsConfig) -> None:
        repo = InMemoryCycleRepository(cycles_from_lengths([28, 28], last_start=TEST_DATE))
        service = self._service(analytics_config, repo)
        on_start = service.prediction(TEST_USER_ID, as_of_date=TEST_DATE)
        later = service.prediction(TEST_USER_ID, as_of_date=TEST_DATE + timedelta(days=5))
        assert on_start.days_until_next == 28
        assert later.days_until_next == 23

        dashboard = service.dashboard(TEST_USER_ID, as_of_date=TEST_DATE)
        next_day = service.dashboard(TEST_USER_ID, as_of_date=TEST_DATE + timedelta(days=1))
        assert dashboard.cycle_summary["cycle_day"] == 1
        assert next_day.cycle_summary["cycle_day"] == 2

    def test_recommendation_options_bypass_cache(self, analytics_config: AnalyticsConfig) -> None:
        service = self._service(analytics_config)
        default = service.recommendations(TEST_USER_ID, as_of_date=TEST_DATE)
        no_tips = service.recommendations(
            TEST_USER_ID, as_of_date=TEST_DATE, include_lifestyle_tips=False
        )
        assert any(r.source == "lifestyle" for r in default.recommendations)
        assert all(r.source != "lifestyle" for r in no_tips.recommendations)
        assert service.recommendations(TEST_USER_ID, as_of_date=TEST_DATE) is default


class TestBuildInsightsService:
    def test_builds_from_settings(self) -> None:
        settings = Settings(cache_backend="memory")
        service = build_insights_service(InMemoryCycleRepository(), settings=settings)
        assert isinstance(service, CycleInsightsService)
        assert not service.has_minimum_data_for_analytics(TEST_USER_ID)
