"""Load, validate, and hot-reload the Cadence analytics configuration.

The config lives in ``analytics_config.yaml`` alongside this module.  At
startup it is loaded once and cached.  Call ``reload_analytics_config()`` to
re-read from disk after an update — no restart required.

Usage::

    from src.analytics.config_loader import get_analytics_config

    config = get_analytics_config()
    config.statistics.max_cycles          # 12
    config.cache_ttl.ttl("notifications") # 900
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger("cadence.analytics.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "analytics_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class StatisticsConfig:
    """Cycle regularity and trend settings."""

    max_cycles: int = 12
    min_cycles: int = 3
    regular_max_std_days: float = 3.0
    fairly_regular_max_std_days: float = 7.0
    trend_min_cycles: int = 6
    trend_window: int = 3
    trend_stable_days: float = 1.0
    default_period_length_days: int = 5


@dataclass
class PhaseConfig:
    """Last cycle day of each phase; everything after ovulation is luteal."""

    menstrual_last_day: int = 5
    follicular_last_day: int = 13
    ovulation_last_day: int = 15


@dataclass
class PredictionConfig:
    """Next-period prediction settings.

    Confidence is ``clamp(base + per_cycle * cycles_used, floor, ceiling)``.
    """

    min_cycles: int = 2
    max_cycles: int = 3
    confidence_base: int = 70
    confidence_per_cycle: int = 3
    confidence_floor: int = 60
    confidence_ceiling: int = 90
    luteal_phase_days: int = 14
    fertile_days_before_ovulation: int = 5
    fertile_days_after_ovulation: int = 1
    forecast_cycles: int = 3


@dataclass
class SymptomConfig:
    """Symptom pattern analysis settings."""

    analytics_lookback_days: int = 180
    recommendation_lookback_days: int = 90
    trend_min_entries: int = 4
    trend_window: int = 2
    trend_stable_delta: float = 0.5
    high_severity_threshold: float = 4.0
    recurring_frequency: int = 5


@dataclass
class RecommendationConfig:
    """Recommendation ranking and rule thresholds."""

    model_version: str = "2024.1.0"
    confidence_threshold: float = 0.7
    max_recommendations: int = 5
    history_cycles: int = 6
    min_cycles: int = 3
    irregular_std_days: float = 7.0
    short_cycle_days: float = 21.0
    long_cycle_days: float = 35.0


@dataclass
class NotificationConfig:
    """Notification threshold rules."""

    overdue_after_days: int = 35
    reminder_within_days: int = 3
    severe_lookback_days: int = 7
    severe_threshold: int = 4


@dataclass
class CacheTTLConfig:
    """Per-kind result cache TTLs in seconds."""

    ttls: dict[str, int] = field(default_factory=dict)

    def ttl(self, kind: str) -> int:
        """Return the TTL for a computation kind.

        Raises:
            KeyError: If the kind has no configured TTL.
        """
        return self.ttls[kind]


@dataclass
class AuditConfig:
    """Access auditor thresholds and retention."""

    window_seconds: int = 3600
    high_frequency_threshold: int = 10
    max_distinct_ips: int = 3
    max_distinct_user_agents: int = 2
    suspicious_flag_seconds: int = 3600
    rate_limit_seconds: int = 1800
    verification_seconds: int = 3600
    statistics_retention_days: int = 30
    daily_count_days: int = 30
    pattern_retention_days: int = 90
    export_window_seconds: int = 86400
    export_alert_threshold: int = 5


@dataclass
class AnalyticsConfig:
    """Complete, validated analytics configuration.

    This is the single in-memory representation of analytics_config.yaml.
    All engines, the result cache and the auditor read from this object.
    """

    version: str
    statistics: StatisticsConfig
    phase: PhaseConfig
    prediction: PredictionConfig
    symptoms: SymptomConfig
    recommendations: RecommendationConfig
    notifications: NotificationConfig
    cache_ttl: CacheTTLConfig
    audit: AuditConfig
    _raw: dict = field(default_factory=dict, repr=False)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when analytics_config.yaml fails validation."""


_REQUIRED_TTL_KINDS = ("notifications", "recommendations", "dashboard", "analytics", "predictions")


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    import yaml

    if not path.exists():
        raise FileNotFoundError(f"Analytics config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> AnalyticsConfig:
    """Validate the raw YAML dict and construct an AnalyticsConfig.

    Missing sections and keys fall back to the dataclass defaults.

    Args:
        raw: Parsed YAML dict.

    Returns:
        Validated AnalyticsConfig instance.

    Raises:
        ConfigValidationError: If any value is malformed or out of range.
    """
    errors: list[str] = []

    def _section(name: str) -> dict:
        value = raw.get(name) or {}
        if not isinstance(value, dict):
            errors.append(f"'{name}' must be a mapping")
            return {}
        return value

    def _number(d: dict, key: str, section: str, default: Any, cast: type = int) -> Any:
        if key not in d:
            return default
        try:
            value = cast(d[key])
        except (TypeError, ValueError):
            errors.append(f"{section}.{key} must be a number, got {d[key]!r}")
            return default
        if value < 0:
            errors.append(f"{section}.{key} = {value} must not be negative")
        return value

    version = str(raw.get("version", "1.0"))

    # ── Statistics ──
    st_raw = _section("statistics")
    st_def = StatisticsConfig()
    statistics = StatisticsConfig(
        max_cycles=_number(st_raw, "max_cycles", "statistics", st_def.max_cycles),
        min_cycles=_number(st_raw, "min_cycles", "statistics", st_def.min_cycles),
        regular_max_std_days=_number(
            st_raw, "regular_max_std_days", "statistics", st_def.regular_max_std_days, float
        ),
        fairly_regular_max_std_days=_number(
            st_raw, "fairly_regular_max_std_days", "statistics",
            st_def.fairly_regular_max_std_days, float,
        ),
        trend_min_cycles=_number(st_raw, "trend_min_cycles", "statistics", st_def.trend_min_cycles),
        trend_window=_number(st_raw, "trend_window", "statistics", st_def.trend_window),
        trend_stable_days=_number(
            st_raw, "trend_stable_days", "statistics", st_def.trend_stable_days, float
        ),
        default_period_length_days=_number(
            st_raw, "default_period_length_days", "statistics", st_def.default_period_length_days
        ),
    )
    if statistics.regular_max_std_days > statistics.fairly_regular_max_std_days:
        errors.append(
            "statistics.regular_max_std_days must not exceed fairly_regular_max_std_days"
        )
    if statistics.min_cycles < 2:
        errors.append("statistics.min_cycles must be at least 2")

    # ── Phase boundaries ──
    ph_raw = _section("phase")
    ph_def = PhaseConfig()
    phase = PhaseConfig(
        menstrual_last_day=_number(ph_raw, "menstrual_last_day", "phase", ph_def.menstrual_last_day),
        follicular_last_day=_number(ph_raw, "follicular_last_day", "phase", ph_def.follicular_last_day),
        ovulation_last_day=_number(ph_raw, "ovulation_last_day", "phase", ph_def.ovulation_last_day),
    )
    if not (phase.menstrual_last_day < phase.follicular_last_day < phase.ovulation_last_day):
        errors.append("phase boundaries must be strictly increasing")

    # ── Prediction ──
    pr_raw = _section("prediction")
    conf_raw = pr_raw.get("confidence") or {}
    pr_def = PredictionConfig()
    prediction = PredictionConfig(
        min_cycles=_number(pr_raw, "min_cycles", "prediction", pr_def.min_cycles),
        max_cycles=_number(pr_raw, "max_cycles", "prediction", pr_def.max_cycles),
        confidence_base=_number(conf_raw, "base", "prediction.confidence", pr_def.confidence_base),
        confidence_per_cycle=_number(
            conf_raw, "per_cycle", "prediction.confidence", pr_def.confidence_per_cycle
        ),
        confidence_floor=_number(conf_raw, "floor", "prediction.confidence", pr_def.confidence_floor),
        confidence_ceiling=_number(
            conf_raw, "ceiling", "prediction.confidence", pr_def.confidence_ceiling
        ),
        luteal_phase_days=_number(pr_raw, "luteal_phase_days", "prediction", pr_def.luteal_phase_days),
        fertile_days_before_ovulation=_number(
            pr_raw, "fertile_days_before_ovulation", "prediction",
            pr_def.fertile_days_before_ovulation,
        ),
        fertile_days_after_ovulation=_number(
            pr_raw, "fertile_days_after_ovulation", "prediction",
            pr_def.fertile_days_after_ovulation,
        ),
        forecast_cycles=_number(pr_raw, "forecast_cycles", "prediction", pr_def.forecast_cycles),
    )
    if prediction.min_cycles < 2:
        errors.append("prediction.min_cycles must be at least 2")
    if prediction.max_cycles < prediction.min_cycles:
        errors.append("prediction.max_cycles must be >= prediction.min_cycles")
    if not (30 <= prediction.confidence_floor <= prediction.confidence_ceiling <= 95):
        errors.append("prediction.confidence floor/ceiling must satisfy 30 <= floor <= ceiling <= 95")

    # ── Symptoms ──
    sy_raw = _section("symptoms")
    sy_def = SymptomConfig()
    symptoms = SymptomConfig(
        analytics_lookback_days=_number(
            sy_raw, "analytics_lookback_days", "symptoms", sy_def.analytics_lookback_days
        ),
        recommendation_lookback_days=_number(
            sy_raw, "recommendation_lookback_days", "symptoms", sy_def.recommendation_lookback_days
        ),
        trend_min_entries=_number(sy_raw, "trend_min_entries", "symptoms", sy_def.trend_min_entries),
        trend_window=_number(sy_raw, "trend_window", "symptoms", sy_def.trend_window),
        trend_stable_delta=_number(
            sy_raw, "trend_stable_delta", "symptoms", sy_def.trend_stable_delta, float
        ),
        high_severity_threshold=_number(
            sy_raw, "high_severity_threshold", "symptoms", sy_def.high_severity_threshold, float
        ),
        recurring_frequency=_number(
            sy_raw, "recurring_frequency", "symptoms", sy_def.recurring_frequency
        ),
    )

    # ── Recommendations ──
    rc_raw = _section("recommendations")
    rc_def = RecommendationConfig()
    recommendations = RecommendationConfig(
        model_version=str(rc_raw.get("model_version", rc_def.model_version)),
        confidence_threshold=_number(
            rc_raw, "confidence_threshold", "recommendations", rc_def.confidence_threshold, float
        ),
        max_recommendations=_number(
            rc_raw, "max_recommendations", "recommendations", rc_def.max_recommendations
        ),
        history_cycles=_number(rc_raw, "history_cycles", "recommendations", rc_def.history_cycles),
        min_cycles=_number(rc_raw, "min_cycles", "recommendations", rc_def.min_cycles),
        irregular_std_days=_number(
            rc_raw, "irregular_std_days", "recommendations", rc_def.irregular_std_days, float
        ),
        short_cycle_days=_number(
            rc_raw, "short_cycle_days", "recommendations", rc_def.short_cycle_days, float
        ),
        long_cycle_days=_number(
            rc_raw, "long_cycle_days", "recommendations", rc_def.long_cycle_days, float
        ),
    )
    if not (0.0 <= recommendations.confidence_threshold <= 1.0):
        errors.append(
            f"recommendations.confidence_threshold = {recommendations.confidence_threshold} "
            "is out of range [0.0, 1.0]"
        )
    if recommendations.max_recommendations < 1:
        errors.append("recommendations.max_recommendations must be at least 1")

    # ── Notifications ──
    nt_raw = _section("notifications")
    nt_def = NotificationConfig()
    notifications = NotificationConfig(
        overdue_after_days=_number(
            nt_raw, "overdue_after_days", "notifications", nt_def.overdue_after_days
        ),
        reminder_within_days=_number(
            nt_raw, "reminder_within_days", "notifications", nt_def.reminder_within_days
        ),
        severe_lookback_days=_number(
            nt_raw, "severe_lookback_days", "notifications", nt_def.severe_lookback_days
        ),
        severe_threshold=_number(nt_raw, "severe_threshold", "notifications", nt_def.severe_threshold),
    )

    # ── Cache TTLs ──
    ttl_raw = _section("cache_ttl_seconds")
    ttls: dict[str, int] = {}
    for kind, value in ttl_raw.items():
        ttls[str(kind)] = _number(ttl_raw, kind, "cache_ttl_seconds", 0)
    for kind in _REQUIRED_TTL_KINDS:
        if kind not in ttls:
            errors.append(f"cache_ttl_seconds.{kind} is required")
        elif ttls[kind] <= 0:
            errors.append(f"cache_ttl_seconds.{kind} must be positive")
    cache_ttl = CacheTTLConfig(ttls=ttls)

    # ── Audit ──
    au_raw = _section("audit")
    au_def = AuditConfig()
    audit = AuditConfig(
        **{
            name: _number(au_raw, name, "audit", getattr(au_def, name))
            for name in AuditConfig.__dataclass_fields__
        }
    )
    if audit.window_seconds <= 0:
        errors.append("audit.window_seconds must be positive")

    if errors:
        raise ConfigValidationError(
            f"analytics_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return AnalyticsConfig(
        version=version,
        statistics=statistics,
        phase=phase,
        prediction=prediction,
        symptoms=symptoms,
        recommendations=recommendations,
        notifications=notifications,
        cache_ttl=cache_ttl,
        audit=audit,
        _raw=raw,
    )


def load_analytics_config(path: Path | str | None = None) -> AnalyticsConfig:
    """Load and validate the analytics config from disk.

    Args:
        path: Override path to YAML. Uses the bundled analytics_config.yaml by default.

    Returns:
        Validated AnalyticsConfig instance.
    """
    target = Path(path) if path else _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded analytics config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: AnalyticsConfig | None = None
_config_lock = threading.Lock()


def get_analytics_config() -> AnalyticsConfig:
    """Return the global AnalyticsConfig singleton, loading it on first call.

    Thread-safe.  Use ``reload_analytics_config()`` to refresh after YAML changes.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_analytics_config()
    return _config


def reload_analytics_config(path: Path | str | None = None) -> AnalyticsConfig:
    """Reload the analytics config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_analytics_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info(
        "Reloaded analytics config: %s → %s",
        old_version,
        new_config.version,
    )
    return new_config
