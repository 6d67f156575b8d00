"""Per-user, per-kind memoization of analytics results.

Keys are ``"<kind>:<user_id>"`` and expire after the kind's configured TTL.
Results computed for a reference date other than today carry the date as a
third key segment (``"<kind>:<user_id>:<YYYY-MM-DD>"``); the dates in use are
indexed under ``"variants:<kind>:<user_id>"`` so ``invalidate()`` can drop
them too.  There is no single-flight: two concurrent misses both compute and
the last write wins.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, TypeVar

from src.analytics.config_loader import AnalyticsConfig, get_analytics_config
from src.storage.kv import KeyValueStore

logger = logging.getLogger("cadence.analytics.cache")

T = TypeVar("T")

_MISSING = object()


class ResultCache:
    """Memoize computations over an injected ``KeyValueStore``.

    Usage::

        cache = ResultCache(store)
        bundle = cache.get_or_compute(
            "notifications", user_id, lambda: engine.evaluate(cycles, symptoms)
        )
    """

    def __init__(self, store: KeyValueStore, config: AnalyticsConfig | None = None) -> None:
        self._store = store
        self._config = config or get_analytics_config()

    @staticmethod
    def key(kind: str, user_id: str, variant: str | None = None) -> str:
        base = f"{kind}:{user_id}"
        return f"{base}:{variant}" if variant else base

    @staticmethod
    def variants_key(kind: str, user_id: str) -> str:
        return f"variants:{kind}:{user_id}"

    @property
    def kinds(self) -> list[str]:
        return list(self._config.cache_ttl.ttls)

    def get_or_compute(
        self,
        kind: str,
        user_id: str,
        compute: Callable[[], T],
        variant: str | None = None,
        cacheable: Callable[[T], bool] | None = None,
    ) -> T:
        """Return the cached value for (kind, user) or compute and store it.

        Args:
            kind:      Computation kind; must have a configured TTL.
            user_id:   Owner of the result.
            compute:   Zero-argument callable producing the value on a miss.
            variant:   Optional extra key segment, e.g. a reference date.
            cacheable: Predicate over the computed value; when it returns
                       False the value is returned without being stored.

        Returns:
            The cached or freshly computed value.

        Raises:
            KeyError: If ``kind`` has no configured TTL.
        """
        ttl = self._config.cache_ttl.ttl(kind)
        key = self.key(kind, user_id, variant)

        cached: Any = self._store.get(key, _MISSING)
        if cached is not _MISSING:
            logger.debug("Cache hit %s", key)
            return cached

        logger.debug("Cache miss %s (ttl=%ds)", key, ttl)
        value = compute()
        if cacheable is not None and not cacheable(value):
            logger.debug("Not caching degraded result %s", key)
            return value

        self._store.set(key, value, ttl=ttl)
        if variant:
            self._store.update(
                self.variants_key(kind, user_id),
                lambda current: sorted(set(current) | {variant}),
                ttl=ttl,
                default=[],
            )
        return value

    def invalidate(self, user_id: str, kinds: list[str] | None = None) -> None:
        """Drop cached results for a user (every kind unless ``kinds`` given)."""
        for kind in kinds or self.kinds:
            self._store.delete(self.key(kind, user_id))
            index = self.variants_key(kind, user_id)
            for variant in self._store.get(index) or []:
                self._store.delete(self.key(kind, user_id, variant))
            self._store.delete(index)
        logger.debug("Invalidated cached results for user %s", user_id)
