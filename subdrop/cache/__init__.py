"""Caching and request coordination for remote lookups."""

from subdrop.cache.backends import KeyValueStore, MemoryKeyValueStore, SqlKeyValueStore
from subdrop.cache.codec import CacheCodec
from subdrop.cache.coordinator import RequestCoordinator
from subdrop.cache.store import CacheStore, make_key

__all__ = [
    "CacheCodec",
    "CacheStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "RequestCoordinator",
    "SqlKeyValueStore",
    "make_key",
]
