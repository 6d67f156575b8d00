"""Tests for access auditing, anomaly rules and escalation."""

from __future__ import annotations

import hashlib
import logging
from datetime import timedelta

import pytest

from src.audit.auditor import (
    HIGH_FREQUENCY_ACCESS,
    MULTIPLE_IP_ADDRESSES,
    MULTIPLE_USER_AGENTS,
    RATE_LIMITED,
    REDACTED,
    VERIFICATION_REQUIRED,
    AccessAuditor,
    activity_trend,
    hash_identifier,
    sanitize_context,
    security_logger,
)
from src.audit.tests.conftest import TEST_TIME, TEST_USER_ID, FakeClock, make_event
from src.errors import INSUFFICIENT_DATA
from src.logging_config import SECURITY_LOGGER_NAME
from src.storage.kv import InMemoryKeyValueStore

IPS = ["198.51.100.1", "198.51.100.2", "198.51.100.3", "198.51.100.4"]


class TestHelpers:
    def test_hash_identifier(self) -> None:
        expected = hashlib.sha256(b"203.0.113.10salt").hexdigest()
        assert hash_identifier("203.0.113.10", "salt") == expected
        assert hash_identifier("203.0.113.10", "other") != expected

    def test_sanitize_context_redacts_secrets(self) -> None:
        cleaned = sanitize_context({"password": "hunter2", "token": "t", "path": "/a"})
        assert cleaned == {"password": REDACTED, "token": REDACTED, "path": "/a"}

    def test_sanitize_context_caps_keys(self) -> None:
        cleaned = sanitize_context({f"k{i}": i for i in range(15)})
        assert list(cleaned) == [f"k{i}" for i in range(10)]

    def test_sanitize_empty(self) -> None:
        assert sanitize_context(None) == {}

    def test_activity_trend(self) -> None:
        days = [f"2026-02-{d:02d}" for d in range(1, 8)]
        assert activity_trend(dict(zip(days, [1, 1, 1, 1, 5, 5, 5]))) == "increasing"
        assert activity_trend(dict(zip(days, [5, 5, 5, 5, 1, 1, 1]))) == "decreasing"
        assert activity_trend(dict(zip(days, [3] * 7))) == "stable"
        assert activity_trend(dict(zip(days[:6], [3] * 6))) == INSUFFICIENT_DATA


class TestAnomalyRules:
    def test_normal_access_not_flagged(self, auditor: AccessAuditor) -> None:
        verdict = auditor.record_access(make_event())
        assert not verdict.suspicious
        assert verdict.activity_count == 1
        assert auditor.security_score(TEST_USER_ID) == 100

    def test_scenario_burst_from_four_ips(
        self, auditor: AccessAuditor, caplog: pytest.LogCaptureFixture
    ) -> None:
        """12 events in 59 minutes over 4 IPs: two flags and a manual review."""
        minutes = [i * 59 / 11 for i in range(12)]
        with caplog.at_level(logging.INFO, logger=SECURITY_LOGGER_NAME):
            verdicts = [
                auditor.record_access(make_event(m, ip=IPS[i % 4])) for i, m in enumerate(minutes)
            ]
        final = verdicts[-1]
        assert final.activity_count == 12
        assert final.unique_ips == 4
        assert final.flags == [HIGH_FREQUENCY_ACCESS, MULTIPLE_IP_ADDRESSES]
        assert final.manual_review
        assert set(final.escalations) == {RATE_LIMITED, VERIFICATION_REQUIRED}

        critical = [r for r in caplog.records if r.levelno == logging.CRITICAL]
        assert critical
        assert critical[-1].audit["action_required"] == "manual_review"

    def test_ten_events_is_not_high_frequency(self, auditor: AccessAuditor) -> None:
        verdicts = [auditor.record_access(make_event(i)) for i in range(10)]
        assert HIGH_FREQUENCY_ACCESS not in verdicts[-1].flags
        verdict = auditor.record_access(make_event(10))
        assert verdict.flags == [HIGH_FREQUENCY_ACCESS]
        assert not verdict.manual_review

    def test_multiple_user_agents(self, auditor: AccessAuditor) -> None:
        for i, agent in enumerate(["Safari", "Chrome", "Firefox"]):
            verdict = auditor.record_access(make_event(i, user_agent=agent))
        assert verdict.flags == [MULTIPLE_USER_AGENTS]
        assert auditor.requires_verification(TEST_USER_ID)
        assert not auditor.is_rate_limited(TEST_USER_ID)

    def test_window_prunes_old_events(self, auditor: AccessAuditor) -> None:
        for i in range(10):
            auditor.record_access(make_event(i))
        verdict = auditor.record_access(make_event(75))
        assert verdict.activity_count == 1
        assert not verdict.suspicious

    def test_users_are_isolated(self, auditor: AccessAuditor) -> None:
        for i in range(11):
            auditor.record_access(make_event(i, user_id="someone_else"))
        verdict = auditor.record_access(make_event(12))
        assert verdict.activity_count == 1
        assert not auditor.is_rate_limited(TEST_USER_ID)


class TestEscalation:
    def test_rate_limit_expires_before_verification(
        self, auditor: AccessAuditor, clock: FakeClock
    ) -> None:
        for i in range(12):
            auditor.record_access(make_event(i, ip=IPS[i % 4]))
        assert auditor.is_rate_limited(TEST_USER_ID)
        assert auditor.requires_verification(TEST_USER_ID)

        clock.advance(1800)
        assert not auditor.is_rate_limited(TEST_USER_ID)
        assert auditor.requires_verification(TEST_USER_ID)

        clock.advance(1800)
        assert not auditor.requires_verification(TEST_USER_ID)

    def test_security_score(self, auditor: AccessAuditor, clock: FakeClock) -> None:
        for i in range(12):
            auditor.record_access(make_event(i, ip=IPS[i % 4]))
        assert auditor.security_score(TEST_USER_ID) == 55
        clock.advance(1800)
        assert auditor.security_score(TEST_USER_ID) == 70
        clock.advance(1800)
        assert auditor.security_score(TEST_USER_ID) == 100


class TestAccessStatistics:
    def test_counts_and_last_access(self, auditor: AccessAuditor) -> None:
        auditor.record_access(make_event(0))
        auditor.record_access(make_event(1, action="GET /api/v1/period-tracker/analytics"))
        stats = auditor.access_statistics(TEST_USER_ID)
        assert stats.total_accesses == 2
        assert stats.actions["GET /api/v1/period-tracker/analytics"] == 1
        assert stats.daily_counts == {"2026-02-23": 2}
        assert stats.last_access == TEST_TIME + timedelta(minutes=1)

    def test_keeps_thirty_days(self, auditor: AccessAuditor) -> None:
        for day in range(31):
            auditor.record_access(make_event(day * 24 * 60))
        stats = auditor.access_statistics(TEST_USER_ID)
        assert len(stats.daily_counts) == 30
        assert "2026-02-23" not in stats.daily_counts
        assert stats.total_accesses == 31

    def test_statistics_survive_evaluation_failure(
        self, auditor: AccessAuditor, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def broken(event):
            raise RuntimeError("store unavailable")

        monkeypatch.setattr(auditor, "_detect", broken)
        verdict = auditor.record_access(make_event())
        assert not verdict.suspicious
        assert auditor.access_statistics(TEST_USER_ID).total_accesses == 1

    def test_logging_sink_failure_is_swallowed(
        self, auditor: AccessAuditor, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def broken_log(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(security_logger, "log", broken_log)
        verdict = auditor.record_access(make_event())
        assert verdict.activity_count == 1
        assert auditor.access_statistics(TEST_USER_ID).total_accesses == 1

    def test_security_metrics(self, auditor: AccessAuditor) -> None:
        for day in range(8):
            count = 1 if day < 5 else 4
            for n in range(count):
                auditor.record_access(make_event(day * 24 * 60 + n))
        last_day = (TEST_TIME + timedelta(days=7)).date()
        metrics = auditor.security_metrics(TEST_USER_ID, today=last_day)
        assert metrics.total_health_data_accesses == 17
        summary = metrics.recent_activity_summary
        assert summary.accesses_today == 4
        assert summary.accesses_yesterday == 4
        assert summary.most_frequent_action == "GET /api/v1/period-tracker/dashboard"
        assert summary.activity_trend == "increasing"
        assert metrics.security_score == 100

    def test_metrics_for_unknown_user(self, auditor: AccessAuditor) -> None:
        metrics = auditor.security_metrics("nobody")
        assert metrics.total_health_data_accesses == 0
        assert metrics.last_access is None
        assert metrics.recent_activity_summary.most_frequent_action is None
        assert metrics.recent_activity_summary.activity_trend == INSUFFICIENT_DATA


class TestHealthActionsAndExports:
    def test_action_pattern_histogram(self, auditor: AccessAuditor) -> None:
        auditor.log_health_action(TEST_USER_ID, "log_period", {"start_date": "2026-02-23"})
        auditor.log_health_action(TEST_USER_ID, "log_period", timestamp=TEST_TIME + timedelta(days=1))
        pattern = auditor.action_patterns(TEST_USER_ID)["log_period"]
        assert pattern.total_count == 2
        assert pattern.hours[14] == 2
        assert pattern.days_of_week[0] == 1
        assert pattern.days_of_week[1] == 1
        assert pattern.last_performed == TEST_TIME + timedelta(days=1)

    def test_health_action_logs_only_data_hash(
        self, auditor: AccessAuditor, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.INFO, logger=SECURITY_LOGGER_NAME):
            auditor.log_health_action(TEST_USER_ID, "track_symptom", {"severity": 5})
        record = next(r for r in caplog.records if r.getMessage() == "Health Action")
        assert "severity" not in str(record.audit)
        assert len(record.audit["data_hash"]) == 64

    def test_excessive_exports_alert(
        self, auditor: AccessAuditor, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.INFO, logger=SECURITY_LOGGER_NAME):
            counts = [
                auditor.log_data_export(
                    TEST_USER_ID, "cycles", "csv", timestamp=TEST_TIME + timedelta(hours=i)
                )
                for i in range(6)
            ]
        assert counts == [1, 2, 3, 4, 5, 6]
        alerts = [r for r in caplog.records if r.getMessage() == "Excessive Data Export Activity"]
        assert len(alerts) == 1
        assert alerts[0].audit["export_count_24h"] == 6

    def test_exports_outside_window_dropped(self, auditor: AccessAuditor) -> None:
        auditor.log_data_export(TEST_USER_ID, "cycles", "pdf", timestamp=TEST_TIME)
        count = auditor.log_data_export(
            TEST_USER_ID, "cycles", "pdf", timestamp=TEST_TIME + timedelta(hours=25)
        )
        assert count == 1


class TestSharedStore:
    def test_two_auditors_share_state(self, audit_config) -> None:
        store = InMemoryKeyValueStore()
        first = AccessAuditor(store, audit_config)
        second = AccessAuditor(store, audit_config)
        for i in range(6):
            first.record_access(make_event(i))
            second.record_access(make_event(i + 0.5))
        assert second.is_rate_limited(TEST_USER_ID)
