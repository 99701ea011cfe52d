"""Domain-specific event broadcasting layer.

Provides semantic event methods over a list of async listeners, so the
identification pipeline never depends on how (or whether) a UI observes it.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from subdrop.models.identity import MovieIdentity
from subdrop.models.media import PairingResult

logger = logging.getLogger(__name__)

Listener = Callable[[str, dict[str, Any]], Awaitable[None]]


class EventBroadcaster:
    """Fans identification events out to subscribed listeners.

    A failing listener is logged and skipped; it never aborts identification.
    """

    def __init__(self):
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _emit(self, event: str, **payload: Any) -> None:
        for listener in list(self._listeners):
            try:
                await listener(event, payload)
            except Exception as e:
                logger.error(f"Listener failed on '{event}': {e}", exc_info=True)

    # --- Pairing Events ---

    async def broadcast_pairing_completed(self, result: PairingResult):
        """Broadcast pairing results."""
        await self._emit(
            "pairing_completed",
            groups=len(result.groups),
            orphans=[o.full_path for o in result.orphans],
        )

    # --- Identification Lifecycle Events ---

    async def broadcast_identification_started(self, path: str):
        await self._emit("identification_started", path=path)

    async def broadcast_identification_resolved(self, path: str, identity: MovieIdentity):
        """Broadcast a resolved identity, including reused ones."""
        await self._emit(
            "identification_resolved",
            path=path,
            imdb_id=identity.imdb_id,
            title=identity.display_title,
            year=identity.year,
            kind=identity.kind.value,
            reason=identity.reason,
        )

    async def broadcast_no_match(self, path: str):
        await self._emit("identification_no_match", path=path)

    async def broadcast_identification_failed(self, path: str, error_message: str):
        await self._emit("identification_failed", path=path, error=error_message)

    # --- Enrichment Events ---

    async def broadcast_features_loaded(self, imdb_id: str, found: bool):
        await self._emit("features_loaded", imdb_id=imdb_id, found=found)

    async def broadcast_episode_enriched(self, path: str, identity: MovieIdentity):
        """Broadcast a series identity replaced by its episode identity."""
        await self._emit(
            "episode_enriched",
            path=path,
            imdb_id=identity.imdb_id,
            series_imdb_id=identity.series_imdb_id,
            season=identity.season,
            episode=identity.episode,
            title=identity.display_title,
        )
