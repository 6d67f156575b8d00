"""Health-data access auditing and anomaly detection.

Every access event is written to the ``cadence.security`` log channel and
appended to the user's rolling one-hour window in the key-value store.  The
window is evaluated against three rules:

    high_frequency_access   more than 10 events in the window
    multiple_ip_addresses   more than 3 distinct hashed IPs
    multiple_user_agents    more than 2 distinct hashed user agents

Any flag raises a security alert and sets escalation markers that the
request layer consults (rate limit for 30 minutes, additional verification
for 60 minutes).  Two or more flags trigger a critical manual-review alert.

Auditing must never break the request it observes: sink failures and store
errors are logged at CRITICAL on the module logger and swallowed.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from typing import Any, Callable, Mapping

from src.analytics.config_loader import AuditConfig, get_analytics_config
from src.errors import INSUFFICIENT_DATA, AuditLoggingFailure
from src.logging_config import SECURITY_LOGGER_NAME
from src.models.audit import AccessEvent
from src.models.base import utc_now
from src.storage.kv import KeyValueStore

logger = logging.getLogger("cadence.audit.auditor")
security_logger = logging.getLogger(SECURITY_LOGGER_NAME)

HIGH_FREQUENCY_ACCESS = "high_frequency_access"
MULTIPLE_IP_ADDRESSES = "multiple_ip_addresses"
MULTIPLE_USER_AGENTS = "multiple_user_agents"

RATE_LIMITED = "rate_limited"
VERIFICATION_REQUIRED = "verification_required"

SENSITIVE_CONTEXT_KEYS = ("password", "token", "api_key", "secret")
MAX_CONTEXT_KEYS = 10
REDACTED = "[REDACTED]"

_DAY_SECONDS = 86400


def hash_identifier(value: str, salt: str) -> str:
    """SHA-256 of ``value`` concatenated with ``salt`` (hex digest)."""
    return hashlib.sha256(f"{value}{salt}".encode("utf-8")).hexdigest()


def sanitize_context(context: Mapping[str, Any] | None) -> dict[str, Any]:
    """Redact secrets and cap the number of keys kept for logging."""
    if not context:
        return {}
    cleaned = {
        key: (REDACTED if key in SENSITIVE_CONTEXT_KEYS else value)
        for key, value in context.items()
    }
    return dict(list(cleaned.items())[:MAX_CONTEXT_KEYS])


# ---------------------------------------------------------------------------
# Result / stored state containers
# ---------------------------------------------------------------------------


@dataclass
class AuditVerdict:
    """Outcome of evaluating one access event.

    Attributes:
        flags:              Anomaly rule names that fired.
        activity_count:     Events in the rolling window, this one included.
        unique_ips:         Distinct hashed IPs in the window.
        unique_user_agents: Distinct hashed user agents in the window.
        escalations:        Markers set as a result ('rate_limited',
                            'verification_required').
        manual_review:      True when two or more flags fired.
    """

    flags: list[str] = field(default_factory=list)
    activity_count: int = 0
    unique_ips: int = 0
    unique_user_agents: int = 0
    escalations: list[str] = field(default_factory=list)
    manual_review: bool = False

    @property
    def suspicious(self) -> bool:
        return bool(self.flags)


@dataclass
class AccessStatistics:
    """Per-user access counters, stored with a 30-day TTL.

    ``daily_counts`` maps ISO dates to counts, oldest first, and keeps at
    most the 30 most recent days.
    """

    total_accesses: int = 0
    actions: dict[str, int] = field(default_factory=dict)
    daily_counts: dict[str, int] = field(default_factory=dict)
    last_access: datetime | None = None


@dataclass
class ActionPattern:
    """When a user performs an action: hour-of-day and weekday (Monday=0) histograms."""

    total_count: int = 0
    hours: list[int] = field(default_factory=lambda: [0] * 24)
    days_of_week: list[int] = field(default_factory=lambda: [0] * 7)
    last_performed: datetime | None = None


@dataclass
class ActivitySummary:
    accesses_today: int
    accesses_yesterday: int
    most_frequent_action: str | None
    activity_trend: str


@dataclass
class SecurityMetrics:
    total_health_data_accesses: int
    last_access: datetime | None
    recent_activity_summary: ActivitySummary
    security_score: int


def activity_trend(daily_counts: Mapping[str, int]) -> str:
    """Compare the last 3 recorded days with the 3 days starting 7 entries back.

    Returns:
        'increasing' (> 1.2x), 'decreasing' (< 0.8x), 'stable', or
        'insufficient_data' with fewer than 7 recorded days.
    """
    counts = [daily_counts[day] for day in sorted(daily_counts)]
    if len(counts) < 7:
        return INSUFFICIENT_DATA

    recent = counts[-3:]
    previous = counts[-7:-4]
    recent_avg = sum(recent) / len(recent)
    previous_avg = sum(previous) / len(previous)

    if recent_avg > previous_avg * 1.2:
        return "increasing"
    if recent_avg < previous_avg * 0.8:
        return "decreasing"
    return "stable"


class AccessAuditor:
    """Rolling-window anomaly detection and escalation for health-data access.

    Usage::

        auditor = AccessAuditor(store)
        verdict = auditor.record_access(AccessEvent(
            user_id="u1", action="GET /api/v1/period-tracker/dashboard",
            ip_hash=hash_identifier(ip, salt), user_agent_hash=hash_identifier(ua, salt),
        ))
        if auditor.is_rate_limited("u1"):
            ...
    """

    def __init__(
        self,
        store: KeyValueStore,
        config: AuditConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._config = config or get_analytics_config().audit
        self._clock = clock

    @property
    def config(self) -> AuditConfig:
        return self._config

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    @staticmethod
    def window_key(user_id: str) -> str:
        return f"access_window:{user_id}"

    @staticmethod
    def stats_key(user_id: str) -> str:
        return f"access_stats:{user_id}"

    @staticmethod
    def suspicious_key(user_id: str) -> str:
        return f"suspicious_flags:{user_id}"

    @staticmethod
    def rate_limit_key(user_id: str) -> str:
        return f"rate_limit:{user_id}"

    @staticmethod
    def verification_key(user_id: str) -> str:
        return f"require_verification:{user_id}"

    @staticmethod
    def patterns_key(user_id: str) -> str:
        return f"action_patterns:{user_id}"

    @staticmethod
    def exports_key(user_id: str) -> str:
        return f"exports:{user_id}"

    # ------------------------------------------------------------------
    # Security channel
    # ------------------------------------------------------------------

    def _emit(self, level: int, message: str, payload: dict[str, Any]) -> None:
        try:
            security_logger.log(level, message, extra={"audit": payload})
        except Exception as exc:
            raise AuditLoggingFailure(f"{message}: {exc}") from exc

    # ------------------------------------------------------------------
    # Access events
    # ------------------------------------------------------------------

    def record_access(
        self, event: AccessEvent, context: Mapping[str, Any] | None = None
    ) -> AuditVerdict:
        """Audit one access event.

        Writes the audit record, updates the rolling window and evaluates it,
        applies escalations, and updates the access statistics.  Statistics
        are updated even when evaluation fails.

        Args:
            event:   The access event (IP and user agent already hashed).
            context: Optional extra request context; sanitized before logging.

        Returns:
            AuditVerdict; empty when evaluation could not run.
        """
        try:
            self._emit(
                logging.INFO,
                "Health Data Access",
                {
                    "user_id": event.user_id,
                    "action": event.action,
                    "ip_address": event.ip_hash,
                    "user_agent": event.user_agent_hash,
                    "timestamp": event.timestamp.isoformat(),
                    "context": sanitize_context(context),
                    "data_classification": "health_sensitive",
                },
            )
        except AuditLoggingFailure as exc:
            logger.critical(
                "Audit logging failed for user %s action %s: %s", event.user_id, event.action, exc
            )

        verdict = AuditVerdict()
        try:
            verdict = self._detect(event)
        except Exception as exc:
            logger.critical(
                "Anomaly evaluation failed for user %s: %s", event.user_id, exc, exc_info=True
            )

        try:
            self._update_statistics(event)
        except Exception as exc:
            logger.critical(
                "Access statistics update failed for user %s: %s", event.user_id, exc, exc_info=True
            )

        return verdict

    def _detect(self, event: AccessEvent) -> AuditVerdict:
        cfg = self._config
        now_ts = event.timestamp.timestamp()
        entry = {
            "action": event.action,
            "ip_hash": event.ip_hash,
            "user_agent_hash": event.user_agent_hash,
            "timestamp": now_ts,
        }

        def _append_and_prune(current: list[dict[str, Any]]) -> list[dict[str, Any]]:
            cutoff = now_ts - cfg.window_seconds
            kept = [e for e in current if e["timestamp"] > cutoff]
            kept.append(entry)
            return kept

        window = self._store.update(
            self.window_key(event.user_id),
            _append_and_prune,
            ttl=cfg.window_seconds,
            default=[],
        )

        unique_ips = len({e["ip_hash"] for e in window})
        unique_agents = len({e["user_agent_hash"] for e in window})

        flags: list[str] = []
        if len(window) > cfg.high_frequency_threshold:
            flags.append(HIGH_FREQUENCY_ACCESS)
        if unique_ips > cfg.max_distinct_ips:
            flags.append(MULTIPLE_IP_ADDRESSES)
        if unique_agents > cfg.max_distinct_user_agents:
            flags.append(MULTIPLE_USER_AGENTS)

        verdict = AuditVerdict(
            flags=flags,
            activity_count=len(window),
            unique_ips=unique_ips,
            unique_user_agents=unique_agents,
        )
        if flags:
            self._escalate(event, verdict)
        return verdict

    def _escalate(self, event: AccessEvent, verdict: AuditVerdict) -> None:
        cfg = self._config
        user_id = event.user_id

        self._store.set(self.suspicious_key(user_id), list(verdict.flags), ttl=cfg.suspicious_flag_seconds)

        if HIGH_FREQUENCY_ACCESS in verdict.flags:
            self._store.set(self.rate_limit_key(user_id), True, ttl=cfg.rate_limit_seconds)
            verdict.escalations.append(RATE_LIMITED)
        if MULTIPLE_IP_ADDRESSES in verdict.flags or MULTIPLE_USER_AGENTS in verdict.flags:
            self._store.set(self.verification_key(user_id), True, ttl=cfg.verification_seconds)
            verdict.escalations.append(VERIFICATION_REQUIRED)

        try:
            self._emit(
                logging.ERROR,
                "Suspicious Activity Detected",
                {
                    "user_id": user_id,
                    "flags": verdict.flags,
                    "activity_count": verdict.activity_count,
                    "unique_ips": verdict.unique_ips,
                    "unique_user_agents": verdict.unique_user_agents,
                    "timestamp": event.timestamp.isoformat(),
                },
            )
            if len(verdict.flags) >= 2:
                verdict.manual_review = True
                self._emit(
                    logging.CRITICAL,
                    "Multiple Security Flags Triggered",
                    {
                        "user_id": user_id,
                        "flags": verdict.flags,
                        "action_required": "manual_review",
                        "timestamp": event.timestamp.isoformat(),
                    },
                )
        except AuditLoggingFailure as exc:
            logger.critical("Security alert logging failed for user %s: %s", user_id, exc)

    def _update_statistics(self, event: AccessEvent) -> AccessStatistics:
        cfg = self._config
        day = event.timestamp.date().isoformat()

        def _apply(current: AccessStatistics | None) -> AccessStatistics:
            stats = current or AccessStatistics()
            actions = dict(stats.actions)
            actions[event.action] = actions.get(event.action, 0) + 1
            daily = dict(stats.daily_counts)
            daily[day] = daily.get(day, 0) + 1
            kept_days = sorted(daily)[-cfg.daily_count_days:]
            return replace(
                stats,
                total_accesses=stats.total_accesses + 1,
                actions=actions,
                daily_counts={d: daily[d] for d in kept_days},
                last_access=event.timestamp,
            )

        return self._store.update(
            self.stats_key(event.user_id),
            _apply,
            ttl=cfg.statistics_retention_days * _DAY_SECONDS,
        )

    # ------------------------------------------------------------------
    # Escalation state
    # ------------------------------------------------------------------

    def is_rate_limited(self, user_id: str) -> bool:
        return self._store.has(self.rate_limit_key(user_id))

    def requires_verification(self, user_id: str) -> bool:
        return self._store.has(self.verification_key(user_id))

    def has_suspicious_flags(self, user_id: str) -> bool:
        return self._store.has(self.suspicious_key(user_id))

    def security_score(self, user_id: str) -> int:
        """100 minus 20 (suspicious), 15 (rate-limited) and 10 (verification), floored at 0."""
        score = 100
        if self.has_suspicious_flags(user_id):
            score -= 20
        if self.is_rate_limited(user_id):
            score -= 15
        if self.requires_verification(user_id):
            score -= 10
        return max(0, score)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def access_statistics(self, user_id: str) -> AccessStatistics:
        return self._store.get(self.stats_key(user_id)) or AccessStatistics()

    def action_patterns(self, user_id: str) -> dict[str, ActionPattern]:
        return self._store.get(self.patterns_key(user_id)) or {}

    def security_metrics(self, user_id: str, today: date | None = None) -> SecurityMetrics:
        """Access totals, a recent-activity summary and the security score."""
        day = today or self._clock().date()
        stats = self.access_statistics(user_id)
        most_frequent = (
            Counter(stats.actions).most_common(1)[0][0] if stats.actions else None
        )
        return SecurityMetrics(
            total_health_data_accesses=stats.total_accesses,
            last_access=stats.last_access,
            recent_activity_summary=ActivitySummary(
                accesses_today=stats.daily_counts.get(day.isoformat(), 0),
                accesses_yesterday=stats.daily_counts.get((day - timedelta(days=1)).isoformat(), 0),
                most_frequent_action=most_frequent,
                activity_trend=activity_trend(stats.daily_counts),
            ),
            security_score=self.security_score(user_id),
        )

    # ------------------------------------------------------------------
    # Other audited actions
    # ------------------------------------------------------------------

    def log_health_action(
        self,
        user_id: str,
        action: str,
        data: Mapping[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> None:
        """Audit a write of health data and track when the user performs it.

        Only a SHA-256 hash of ``data`` is logged.
        """
        when = timestamp or self._clock()
        data_hash = hashlib.sha256(
            json.dumps(dict(data or {}), sort_keys=True, default=str).encode("utf-8")
        ).hexdigest()
        try:
            self._emit(
                logging.INFO,
                "Health Action",
                {
                    "user_id": user_id,
                    "action_type": "health_action",
                    "action": action,
                    "data_hash": data_hash,
                    "timestamp": when.isoformat(),
                },
            )
            self._track_action_pattern(user_id, action, when)
        except Exception as exc:
            logger.critical("Health action audit failed for user %s action %s: %s", user_id, action, exc)

    def _track_action_pattern(self, user_id: str, action: str, when: datetime) -> None:
        def _apply(current: dict[str, ActionPattern]) -> dict[str, ActionPattern]:
            patterns = dict(current)
            pattern = patterns.get(action) or ActionPattern()
            hours = list(pattern.hours)
            hours[when.hour] += 1
            days = list(pattern.days_of_week)
            days[when.weekday()] += 1
            patterns[action] = ActionPattern(
                total_count=pattern.total_count + 1,
                hours=hours,
                days_of_week=days,
                last_performed=when,
            )
            return patterns

        self._store.update(
            self.patterns_key(user_id),
            _apply,
            ttl=self._config.pattern_retention_days * _DAY_SECONDS,
            default={},
        )

    def log_data_export(
        self,
        user_id: str,
        data_type: str,
        export_format: str,
        timestamp: datetime | None = None,
    ) -> int:
        """Audit a data export and alert on excessive export activity.

        Returns:
            Number of exports by the user in the export window, this one
            included; 0 if the export could not be recorded.
        """
        cfg = self._config
        when = timestamp or self._clock()
        now_ts = when.timestamp()
        try:
            self._emit(
                logging.WARNING,
                "Data Export",
                {
                    "user_id": user_id,
                    "action_type": "data_export",
                    "data_type": data_type,
                    "export_format": export_format,
                    "timestamp": when.isoformat(),
                },
            )

            def _append(current: list[float]) -> list[float]:
                cutoff = now_ts - cfg.export_window_seconds
                return [ts for ts in current if ts > cutoff] + [now_ts]

            exports = self._store.update(
                self.exports_key(user_id), _append, ttl=cfg.export_window_seconds, default=[]
            )
            if len(exports) > cfg.export_alert_threshold:
                self._emit(
                    logging.ERROR,
                    "Excessive Data Export Activity",
                    {
                        "user_id": user_id,
                        "export_count_24h": len(exports),
                        "timestamp": when.isoformat(),
                    },
                )
            return len(exports)
        except Exception as exc:
            logger.critical("Data export audit failed for user %s (%s): %s", user_id, data_type, exc)
            return 0
