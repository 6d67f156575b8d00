"""Tests for analytics_config.yaml loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from src.analytics.config_loader import (
    AnalyticsConfig,
    ConfigValidationError,
    _validate_and_build,
    get_analytics_config,
    load_analytics_config,
    reload_analytics_config,
)

_TTLS = {
    "notifications": 900,
    "recommendations": 3600,
    "dashboard": 300,
    "analytics": 1800,
    "predictions": 600,
}


class TestConfigLoading:
    """Tests for loading the bundled analytics_config.yaml."""

    def test_load_default_config(self, analytics_config: AnalyticsConfig) -> None:
        assert analytics_config.version == "1.0"
        assert analytics_config.statistics.max_cycles == 12
        assert analytics_config.statistics.min_cycles == 3

    def test_phase_boundaries(self, analytics_config: AnalyticsConfig) -> None:
        ph = analytics_config.phase
        assert (ph.menstrual_last_day, ph.follicular_last_day, ph.ovulation_last_day) == (5, 13, 15)

    def test_prediction_confidence_bounds(self, analytics_config: AnalyticsConfig) -> None:
        pr = analytics_config.prediction
        assert pr.confidence_base == 70
        assert pr.confidence_per_cycle == 3
        assert 30 <= pr.confidence_floor <= pr.confidence_ceiling <= 95

    def test_cache_ttls(self, analytics_config: AnalyticsConfig) -> None:
        for kind, seconds in _TTLS.items():
            assert analytics_config.cache_ttl.ttl(kind) == seconds

    def test_recommendation_settings(self, analytics_config: AnalyticsConfig) -> None:
        rc = analytics_config.recommendations
        assert rc.model_version == "2024.1.0"
        assert rc.confidence_threshold == 0.7
        assert rc.max_recommendations == 5

    def test_audit_thresholds(self, analytics_config: AnalyticsConfig) -> None:
        au = analytics_config.audit
        assert au.window_seconds == 3600
        assert au.high_frequency_threshold == 10
        assert au.max_distinct_ips == 3
        assert au.max_distinct_user_agents == 2
        assert au.rate_limit_seconds == 1800

    def test_singleton(self) -> None:
        assert get_analytics_config() is get_analytics_config()


class TestConfigValidation:
    """Tests for config validation logic."""

    def test_minimal_config_uses_defaults(self) -> None:
        config = _validate_and_build({"version": "1.0", "cache_ttl_seconds": dict(_TTLS)})
        assert config.statistics.regular_max_std_days == 3.0
        assert config.notifications.overdue_after_days == 35

    def test_missing_ttl_raises(self) -> None:
        with pytest.raises(ConfigValidationError, match="cache_ttl_seconds.dashboard"):
            _validate_and_build(
                {"cache_ttl_seconds": {k: v for k, v in _TTLS.items() if k != "dashboard"}}
            )

    def test_negative_value_raises(self) -> None:
        with pytest.raises(ConfigValidationError, match="must not be negative"):
            _validate_and_build(
                {"cache_ttl_seconds": dict(_TTLS), "statistics": {"max_cycles": -1}}
            )

    def test_non_numeric_raises(self) -> None:
        with pytest.raises(ConfigValidationError, match="must be a number"):
            _validate_and_build(
                {"cache_ttl_seconds": dict(_TTLS), "notifications": {"overdue_after_days": "soon"}}
            )

    def test_phase_boundaries_must_increase(self) -> None:
        with pytest.raises(ConfigValidationError, match="strictly increasing"):
            _validate_and_build(
                {
                    "cache_ttl_seconds": dict(_TTLS),
                    "phase": {"menstrual_last_day": 10, "follicular_last_day": 8},
                }
            )

    def test_threshold_out_of_range(self) -> None:
        with pytest.raises(ConfigValidationError, match="out of range"):
            _validate_and_build(
                {
                    "cache_ttl_seconds": dict(_TTLS),
                    "recommendations": {"confidence_threshold": 1.5},
                }
            )

    def test_hot_reload(self, tmp_path: Path) -> None:
        config_file = tmp_path / "analytics_config.yaml"
        config_file.write_text(
            'version: "2.0-test"\n'
            "cache_ttl_seconds:\n"
            "  notifications: 60\n"
            "  recommendations: 60\n"
            "  dashboard: 60\n"
            "  analytics: 60\n"
            "  predictions: 60\n"
        )
        try:
            new_config = reload_analytics_config(path=config_file)
            assert new_config.version == "2.0-test"
            assert get_analytics_config() is new_config
        finally:
            reload_analytics_config()

    def test_load_nonexistent_file_raises(self) -> None:
        with pytest.raises(FileNotFoundError):
            load_analytics_config(path=Path("/nonexistent/path/config.yaml"))

    def test_malformed_yaml_raises(self, tmp_path: Path) -> None:
        config_file = tmp_path / "broken.yaml"
        config_file.write_text("statistics: [unclosed\n")
        with pytest.raises(ConfigValidationError):
            load_analytics_config(path=config_file)
