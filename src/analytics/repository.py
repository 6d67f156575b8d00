"""Read-only access to a user's logged cycles and symptoms.

The engines never talk to a database or ORM.  They receive snapshots from a
``CycleRepository``; the calling layer decides where the records live.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import date
from typing import Iterable

from src.models.tracking import CycleRecord, SymptomEntry


class CycleRepository(ABC):
    """Read-only source of cycle and symptom records."""

    @abstractmethod
    def recent_cycles(self, user_id: str, limit: int) -> list[CycleRecord]:
        """Return up to ``limit`` cycles for a user, most recent start first."""

    @abstractmethod
    def cycles_between(
        self, user_id: str, start: date | None = None, end: date | None = None
    ) -> list[CycleRecord]:
        """Return every cycle starting within [start, end], most recent first.

        Either bound may be None for an open-ended range.
        """

    @abstractmethod
    def symptoms_since(self, user_id: str, since: date) -> list[SymptomEntry]:
        """Return a user's symptom entries dated on or after ``since``."""


class InMemoryCycleRepository(CycleRepository):
    """Repository backed by plain lists, for embedding and tests.

    Usage::

        repo = InMemoryCycleRepository()
        repo.add_cycles(cycles)
        repo.recent_cycles("user-1", limit=12)
    """

    def __init__(
        self,
        cycles: Iterable[CycleRecord] = (),
        symptoms: Iterable[SymptomEntry] = (),
    ) -> None:
        self._lock = threading.Lock()
        self._cycles: dict[str, list[CycleRecord]] = defaultdict(list)
        self._symptoms: dict[str, list[SymptomEntry]] = defaultdict(list)
        self.add_cycles(cycles)
        self.add_symptoms(symptoms)

    def add_cycles(self, cycles: Iterable[CycleRecord]) -> None:
        with self._lock:
            for cycle in cycles:
                self._cycles[cycle.user_id].append(cycle)

    def add_symptoms(self, symptoms: Iterable[SymptomEntry]) -> None:
        with self._lock:
            for entry in symptoms:
                self._symptoms[entry.user_id].append(entry)

    def recent_cycles(self, user_id: str, limit: int) -> list[CycleRecord]:
        with self._lock:
            ordered = sorted(self._cycles.get(user_id, []), key=lambda c: c.start_date, reverse=True)
        return ordered[:limit]

    def symptoms_since(self, user_id: str, since: date) -> list[SymptomEntry]:
        with self._lock:
            entries = list(self._symptoms.get(user_id, []))
        return [e for e in entries if e.date >= since]

    def cycles_between(
        self, user_id: str, start: date | None = None, end: date | None = None
    ) -> list[CycleRecord]:
        with self._lock:
            cycles = list(self._cycles.get(user_id, []))
        kept = [
            c for c in cycles
            if (start is None or c.start_date >= start) and (end is None or c.start_date <= end)
        ]
        return sorted(kept, key=lambda c: c.start_date, reverse=True)
