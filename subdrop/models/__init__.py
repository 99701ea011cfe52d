"""Data models for subdrop."""

from subdrop.models.cache import CacheEntry, CacheRecord, CacheStats
from subdrop.models.identity import (
    Failed,
    GuessOutcome,
    IdentificationRecord,
    IdentificationState,
    IdentityKind,
    MovieIdentity,
    NoMatch,
    Pending,
    Resolved,
)
from subdrop.models.media import FileEntry, MediaKind, PairedGroup, PairingResult

__all__ = [
    "CacheEntry",
    "CacheRecord",
    "CacheStats",
    "Failed",
    "FileEntry",
    "GuessOutcome",
    "IdentificationRecord",
    "IdentificationState",
    "IdentityKind",
    "MediaKind",
    "MovieIdentity",
    "NoMatch",
    "PairedGroup",
    "PairingResult",
    "Pending",
    "Resolved",
]
