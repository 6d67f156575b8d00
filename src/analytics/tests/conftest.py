"""Shared fixtures and record builders for analytics engine tests."""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from src.analytics.config_loader import AnalyticsConfig, load_analytics_config
from src.analytics.repository import InMemoryCycleRepository
from src.models.tracking import CycleRecord, SymptomEntry
from src.storage.kv import InMemoryKeyValueStore

# Canonical test user and reference date
TEST_USER_ID = "user_2abc123"
TEST_DATE = date(2026, 2, 23)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_cycle(
    start: date,
    end: date | None = None,
    user_id: str = TEST_USER_ID,
    is_predicted: bool = False,
) -> CycleRecord:
    return CycleRecord(user_id=user_id, start_date=start, end_date=end, is_predicted=is_predicted)


def cycles_from_lengths(
    lengths: list[int],
    last_start: date = TEST_DATE,
    period_days: int | None = None,
    user_id: str = TEST_USER_ID,
) -> list[CycleRecord]:
    """Build cycles whose start-date deltas (newest first) equal ``lengths``."""
    starts = [last_start]
    for length in lengths:
        starts.append(starts[-1] - timedelta(days=length))
    return [
        make_cycle(
            s,
            s + timedelta(days=period_days - 1) if period_days else None,
            user_id=user_id,
        )
        for s in starts
    ]


def make_symptom(
    symptom_type: str,
    severity: int,
    on: date,
    user_id: str = TEST_USER_ID,
) -> SymptomEntry:
    return SymptomEntry(user_id=user_id, date=on, symptom_type=symptom_type, severity=severity)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def analytics_config() -> AnalyticsConfig:
    """Load the bundled analytics config for tests."""
    return load_analytics_config()


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def repository() -> InMemoryCycleRepository:
    return InMemoryCycleRepository()
