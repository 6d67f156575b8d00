"""Shared fixtures for access auditing tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from src.analytics.config_loader import AuditConfig, load_analytics_config
from src.audit.auditor import AccessAuditor, hash_identifier
from src.models.audit import AccessEvent
from src.storage.kv import InMemoryKeyValueStore

TEST_USER_ID = "user_2abc123"
TEST_SALT = "test_salt"
# Monday
TEST_TIME = datetime(2026, 2, 23, 14, 30, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic-style clock for the in-memory store."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_event(
    minutes: float = 0,
    ip: str = "203.0.113.10",
    user_agent: str = "Mozilla/5.0",
    action: str = "GET /api/v1/period-tracker/dashboard",
    user_id: str = TEST_USER_ID,
) -> AccessEvent:
    return AccessEvent(
        user_id=user_id,
        action=action,
        ip_hash=hash_identifier(ip, TEST_SALT),
        user_agent_hash=hash_identifier(user_agent, TEST_SALT),
        timestamp=TEST_TIME + timedelta(minutes=minutes),
    )


@pytest.fixture
def audit_config() -> AuditConfig:
    return load_analytics_config().audit


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore(clock=clock)


@pytest.fixture
def auditor(store: InMemoryKeyValueStore, audit_config: AuditConfig) -> AccessAuditor:
    return AccessAuditor(store, audit_config, clock=lambda: TEST_TIME)
