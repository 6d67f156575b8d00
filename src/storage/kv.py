"""Key-value store with per-key TTL, used for result caching and auditing.

The analytics cache and the access auditor never touch global state; they
receive a ``KeyValueStore`` and keep everything under string keys.  Two
implementations ship:

- ``InMemoryKeyValueStore`` — thread-safe dict with expiry, sufficient for a
  single process and for deterministic tests (the clock is injectable).
  Expired keys are dropped when read and swept every ``sweep_interval``
  writes, so idle users' keys do not accumulate.
- ``RedisKeyValueStore`` — shared store for multi-process deployments.
  Values are pickled so cached result objects come back unchanged.

``update()`` is the atomic read-modify-write primitive.  The auditor's
rolling access window depends on it so that concurrent appends for the same
user are never lost.
"""

from __future__ import annotations

import logging
import pickle
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable

from src.config import Settings, get_settings

logger = logging.getLogger("cadence.storage.kv")

Updater = Callable[[Any], Any]


class KeyValueStore(ABC):
    """Minimal cache interface: get / set / has / increment / delete / update.

    ``ttl`` is in seconds; ``None`` means the key never expires.
    """

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Return the live value for ``key`` or ``default``."""

    @abstractmethod
    def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key`` if present."""

    @abstractmethod
    def update(
        self,
        key: str,
        fn: Updater,
        ttl: int | None = None,
        default: Any = None,
    ) -> Any:
        """Atomically replace the value of ``key`` with ``fn(current)``.

        Args:
            key:     Key to update.
            fn:      Called with the current value (or ``default`` when the
                     key is missing or expired); its return value is stored.
            ttl:     Expiry applied to the new value.
            default: Value passed to ``fn`` when nothing is stored.

        Returns:
            The newly stored value.
        """

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def increment(self, key: str, amount: int = 1, ttl: int | None = None) -> int:
        """Atomically add ``amount`` to an integer counter and return it."""
        return self.update(key, lambda current: int(current) + amount, ttl=ttl, default=0)


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store.  One re-entrant lock guards every key.

    Usage::

        store = InMemoryKeyValueStore()
        store.set("notifications:42", bundle, ttl=900)
        store.get("notifications:42")
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval: int = 1000,
    ) -> None:
        self._clock = clock
        self._lock = threading.RLock()
        # key -> (value, expires_at or None)
        self._data: dict[str, tuple[Any, float | None]] = {}
        self._sweep_interval = sweep_interval
        self._writes = 0

    def _expiry(self, ttl: int | None) -> float | None:
        return self._clock() + ttl if ttl is not None else None

    def _record_write(self) -> None:
        self._writes += 1
        if self._sweep_interval > 0 and self._writes >= self._sweep_interval:
            self._writes = 0
            self.purge_expired()

    def purge_expired(self) -> int:
        """Remove every expired key and return how many were dropped."""
        with self._lock:
            now = self._clock()
            expired = [
                key for key, (_, expires_at) in self._data.items()
                if expires_at is not None and expires_at <= now
            ]
            for key in expired:
                del self._data[key]
        if expired:
            logger.debug("Purged %d expired keys", len(expired))
        return len(expired)

    def _live(self, key: str) -> tuple[bool, Any]:
        entry = self._data.get(key)
        if entry is None:
            return False, None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return False, None
        return True, value

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            found, value = self._live(key)
            return value if found else default

    def has(self, key: str) -> bool:
        with self._lock:
            found, _ = self._live(key)
            return found

    def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        with self._lock:
            self._data[key] = (value, self._expiry(ttl))
            self._record_write()

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def update(
        self,
        key: str,
        fn: Updater,
        ttl: int | None = None,
        default: Any = None,
    ) -> Any:
        with self._lock:
            found, current = self._live(key)
            new_value = fn(current if found else default)
            self._data[key] = (new_value, self._expiry(ttl))
            self._record_write()
            return new_value

    def clear(self) -> None:
        """Drop every key."""
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for key in list(self._data) if self._live(key)[0])


class RedisKeyValueStore(KeyValueStore):
    """Redis-backed store using redis-py.

    Values are pickled.  ``update()`` runs inside ``Redis.transaction`` with
    the key WATCHed, so a concurrent writer forces a retry instead of a lost
    update.
    """

    def __init__(self, client: Any, prefix: str = "cadence") -> None:
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "cadence") -> "RedisKeyValueStore":
        import redis

        return cls(redis.Redis.from_url(url), prefix=prefix)

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}" if self._prefix else key

    @staticmethod
    def _dumps(value: Any) -> bytes:
        return pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL)

    @staticmethod
    def _loads(raw: bytes | None, default: Any) -> Any:
        if raw is None:
            return default
        return pickle.loads(raw)

    def get(self, key: str, default: Any = None) -> Any:
        return self._loads(self._client.get(self._key(key)), default)

    def has(self, key: str) -> bool:
        return bool(self._client.exists(self._key(key)))

    def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        self._client.set(self._key(key), self._dumps(value), ex=ttl)

    def delete(self, key: str) -> None:
        self._client.delete(self._key(key))

    def update(
        self,
        key: str,
        fn: Updater,
        ttl: int | None = None,
        default: Any = None,
    ) -> Any:
        full_key = self._key(key)

        def _apply(pipe: Any) -> Any:
            current = self._loads(pipe.get(full_key), default)
            new_value = fn(current)
            pipe.multi()
            pipe.set(full_key, self._dumps(new_value), ex=ttl)
            return new_value

        return self._client.transaction(_apply, full_key, value_from_callable=True)


def build_store(settings: Settings | None = None) -> KeyValueStore:
    """Create the store selected by ``settings.cache_backend``.

    Args:
        settings: Optional settings override.

    Returns:
        A ready-to-use KeyValueStore.

    Raises:
        ValueError: If the backend name is not recognised.
    """
    s = settings or get_settings()
    backend = s.cache_backend.lower()
    if backend == "memory":
        logger.info("Using in-memory key-value store")
        return InMemoryKeyValueStore()
    if backend == "redis":
        logger.info("Using Redis key-value store (prefix=%s)", s.cache_key_prefix)
        return RedisKeyValueStore.from_url(s.redis_url, prefix=s.cache_key_prefix)
    raise ValueError(f"Unknown cache backend: {s.cache_backend!r}")
