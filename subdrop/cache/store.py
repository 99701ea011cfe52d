"""TTL cache over a string key-value store.

Each entry is two stored keys: ``<key>`` holding the encoded value and
``<key>_expiry`` holding the expiry as epoch milliseconds. A missing or past
expiry reads as a miss, never as an error. Keys are namespaced
``<category>:<query>`` so whole categories can be cleared.
"""

import time
from collections.abc import Callable
from typing import Any

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from subdrop.cache.backends import KeyValueStore
from subdrop.cache.codec import CacheCodec, is_compressed
from subdrop.config import DEFAULT_CACHE_TTL
from subdrop.core.errors import CacheError, handle_errors
from subdrop.models.cache import CacheEntry, CacheStats

EXPIRY_SUFFIX = "_expiry"
CATEGORY_SEPARATOR = ":"
UNCATEGORIZED = "uncategorized"

# Cache categories used by the pipeline
MOVIE_GUESS = "movie_guess"
FEATURES = "features"
EPISODE = "episode"

_STORAGE_ERRORS = (CacheError, SQLAlchemyError, OSError)


def make_key(category: str, query: str) -> str:
    return f"{category}{CATEGORY_SEPARATOR}{query}"


def category_of(key: str) -> str:
    category, sep, _ = key.partition(CATEGORY_SEPARATOR)
    return category if sep else UNCATEGORIZED


class CacheStore:
    """Key -> value cache with per-entry TTL and optional compression."""

    def __init__(
        self,
        backend: KeyValueStore,
        codec: CacheCodec | None = None,
        default_ttl: float = DEFAULT_CACHE_TTL,
        clock: Callable[[], float] = time.time,
    ):
        self._backend = backend
        self._codec = codec or CacheCodec()
        self._default_ttl = default_ttl
        self._clock = clock

    @handle_errors(
        error_types=_STORAGE_ERRORS,
        default_message="Cache read failed, treating as miss",
        log_level="warning",
        reraise=False,
    )
    def lookup(self, key: str) -> CacheEntry | None:
        """Return the live entry for ``key`` or None on a miss.

        A hit may carry ``value=None`` (a cached negative result).
        """
        expires_at = self._read_expiry(key)
        if expires_at is None or self._clock() >= expires_at:
            return None

        stored = self._backend.get(key)
        if stored is None:
            return None
        return CacheEntry(
            key=key,
            value=self._codec.decode(stored),
            expires_at=expires_at,
            compressed=is_compressed(stored),
        )

    def get(self, key: str, default: Any = None) -> Any:
        entry = self.lookup(key)
        return default if entry is None else entry.value

    @handle_errors(
        error_types=_STORAGE_ERRORS,
        default_message="Cache expiry check failed",
        log_level="warning",
        reraise=False,
    )
    def is_valid(self, key: str) -> bool:
        """True when ``key`` has an unexpired expiry marker."""
        expires_at = self._read_expiry(key)
        return expires_at is not None and self._clock() < expires_at

    @handle_errors(
        error_types=_STORAGE_ERRORS,
        default_message="Cache write failed",
        log_level="warning",
        reraise=False,
    )
    def set(self, key: str, value: Any, ttl: float | None = None) -> bool | None:
        """Store ``value`` for ``ttl`` seconds (the default TTL when None).

        Returns:
            True when stored, None when storage failed (already logged)
        """
        ttl = self._default_ttl if ttl is None else ttl
        expires_at_ms = int((self._clock() + ttl) * 1000)
        self._backend.set_many(
            {
                key: self._codec.encode(value),
                key + EXPIRY_SUFFIX: str(expires_at_ms),
            }
        )
        return True

    @handle_errors(
        error_types=_STORAGE_ERRORS,
        default_message="Cache delete failed",
        log_level="warning",
        reraise=False,
    )
    def delete(self, key: str) -> None:
        self._backend.delete_many([key, key + EXPIRY_SUFFIX])

    def clear_all(self) -> int:
        """Remove every entry. Returns the number of entries removed."""
        return self._remove_where(lambda key: True)

    def clear_category(self, category: str) -> int:
        """Remove every entry whose key starts with ``<category>:``."""
        removed = self._remove_where(lambda key: category_of(key) == category)
        logger.info(f"Cleared {removed} '{category}' cache entries")
        return removed

    def purge_expired(self) -> int:
        """Remove entries whose expiry is missing or in the past."""
        now = self._clock()

        def expired(key: str) -> bool:
            expires_at = self._read_expiry(key)
            return expires_at is None or now >= expires_at

        return self._remove_where(expired)

    def stats(self) -> CacheStats:
        """Entry count, stored size and per-category counts.

        Raises:
            CacheError: If the backend cannot be enumerated
        """
        try:
            now = self._clock()
            stats = CacheStats()
            for key in self._data_keys():
                stored = self._backend.get(key)
                if stored is None:
                    continue
                expiry_raw = self._backend.get(key + EXPIRY_SUFFIX) or ""
                stats.entry_count += 1
                stats.total_bytes += len((key + stored + expiry_raw).encode("utf-8"))
                if is_compressed(stored):
                    stats.compressed_entries += 1
                expires_at = _parse_expiry(expiry_raw)
                if expires_at is None or now >= expires_at:
                    stats.expired_entries += 1
                category = category_of(key)
                stats.per_category_counts[category] = stats.per_category_counts.get(category, 0) + 1
            return stats
        except (SQLAlchemyError, OSError) as e:
            raise CacheError(f"Failed to collect cache stats: {e}") from e

    def _data_keys(self) -> list[str]:
        return [k for k in self._backend.keys() if not k.endswith(EXPIRY_SUFFIX)]

    def _read_expiry(self, key: str) -> float | None:
        return _parse_expiry(self._backend.get(key + EXPIRY_SUFFIX))

    def _remove_where(self, predicate: Callable[[str], bool]) -> int:
        try:
            keys = [k for k in self._data_keys() if predicate(k)]
            doomed = keys + [k + EXPIRY_SUFFIX for k in keys]
            # expiry markers whose value is already gone
            doomed += [
                k
                for k in self._backend.keys()
                if k.endswith(EXPIRY_SUFFIX)
                and k[: -len(EXPIRY_SUFFIX)] not in keys
                and predicate(k[: -len(EXPIRY_SUFFIX)])
                and self._backend.get(k[: -len(EXPIRY_SUFFIX)]) is None
            ]
            self._backend.delete_many(doomed)
            return len(keys)
        except (SQLAlchemyError, OSError) as e:
            raise CacheError(f"Failed to clear cache entries: {e}") from e


def _parse_expiry(raw: str | None) -> float | None:
    """Epoch-millisecond string to epoch seconds; None when absent or malformed."""
    if not raw:
        return None
    try:
        return int(raw) / 1000
    except ValueError:
        return None
