"""Cache persistence table and cache value types."""

from dataclasses import dataclass, field
from typing import Any

from sqlmodel import Field, SQLModel


class CacheRecord(SQLModel, table=True):
    """One key/value row of the persistent cache.

    Expiry timestamps live in sibling rows keyed ``<key>_expiry``.
    """

    __tablename__ = "cache_entries"

    key: str = Field(primary_key=True)
    value: str


@dataclass
class CacheEntry:
    """A decoded cache entry."""

    key: str
    value: Any
    expires_at: float | None  # epoch seconds, None when no expiry is stored
    compressed: bool = False


@dataclass
class CacheStats:
    """Derived statistics over every stored entry."""

    entry_count: int = 0
    total_bytes: int = 0
    compressed_entries: int = 0
    expired_entries: int = 0
    per_category_counts: dict[str, int] = field(default_factory=dict)
