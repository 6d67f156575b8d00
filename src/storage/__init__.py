"""Key-value store collaborators for Cadence.

Modules:
    kv — KeyValueStore ABC, in-memory and Redis implementations, build_store()
"""

from src.storage.kv import (
    InMemoryKeyValueStore,
    KeyValueStore,
    RedisKeyValueStore,
    build_store,
)

__all__ = [
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "RedisKeyValueStore",
    "build_store",
]
