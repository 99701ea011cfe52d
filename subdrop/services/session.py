"""Drop session facade.

One DropSession serves one drop of files: pairing, hashing, identification
and cache maintenance behind a single object. ``build_session`` wires the
default OpenSubtitles/guessit collaborators from settings.
"""

import asyncio
import logging

from subdrop.cache.backends import KeyValueStore, SqlKeyValueStore
from subdrop.cache.codec import CacheCodec
from subdrop.cache.coordinator import RequestCoordinator
from subdrop.cache.store import CacheStore
from subdrop.config import Settings, settings as default_settings
from subdrop.core.files import ContentReader, LocalContentReader, confirm_subtitle
from subdrop.core.hasher import ContentHasher
from subdrop.core.logging import setup_logging
from subdrop.core.naming import needs_content_sniffing
from subdrop.core.pairing import PairingEngine
from subdrop.lookup.base import EpisodeDetector, FeatureProvider, MovieGuesser
from subdrop.lookup.episode_detector import GuessitEpisodeDetector
from subdrop.lookup.opensubtitles_rest import OpenSubtitlesRestClient
from subdrop.lookup.opensubtitles_xmlrpc import OpenSubtitlesXmlRpcClient
from subdrop.models.cache import CacheStats
from subdrop.models.identity import GuessOutcome
from subdrop.models.media import FileEntry, PairingResult
from subdrop.services.event_broadcaster import EventBroadcaster
from subdrop.services.identification import IdentificationCoordinator

logger = logging.getLogger(__name__)


class DropSession:
    """Entry point used by the rest of the application."""

    def __init__(
        self,
        *,
        cache: CacheStore,
        reader: ContentReader,
        guesser: MovieGuesser,
        features: FeatureProvider,
        episode_detector: EpisodeDetector,
        config: Settings | None = None,
        broadcaster: EventBroadcaster | None = None,
        sleep=asyncio.sleep,
    ):
        self.config = config or default_settings
        self.cache = cache
        self.reader = reader
        self.broadcaster = broadcaster or EventBroadcaster()
        self.pairing_engine = PairingEngine()
        self.hasher = ContentHasher(
            reader,
            timeout=self.config.hash_timeout,
            max_attempts=self.config.hash_max_attempts,
            base_delay=self.config.retry_base_delay,
            sleep=sleep,
        )
        self.requests = RequestCoordinator(
            cache, base_delay=self.config.retry_base_delay, sleep=sleep
        )
        self.identification = IdentificationCoordinator(
            self.requests,
            guesser,
            features,
            episode_detector,
            broadcaster=self.broadcaster,
            config=self.config,
        )

    async def pair(self, files: list[FileEntry]) -> PairingResult:
        """Pair videos with subtitles.

        ``.txt`` files are sniffed first; plain text is dropped, real
        subtitles stay (as orphans, since .txt never pairs by name).
        """
        kept = []
        for entry in files:
            if entry.is_subtitle and needs_content_sniffing(entry.name):
                try:
                    if not await confirm_subtitle(entry, self.reader):
                        continue
                except OSError as e:
                    logger.warning(f"Could not sniff {entry.full_path}: {e}")
                    continue
            kept.append(entry)

        result = self.pairing_engine.pair(kept)
        await self.broadcaster.broadcast_pairing_completed(result)
        return result

    async def identify(self, entry: FileEntry) -> GuessOutcome | None:
        return await self.identification.identify(entry)

    async def identify_subtitle(self, entry: FileEntry) -> GuessOutcome | None:
        return await self.identification.identify_subtitle(entry)

    async def identify_all(self, pairing: PairingResult) -> dict[str, GuessOutcome | None]:
        return await self.identification.identify_all(pairing)

    async def hash_video(self, entry: FileEntry) -> str:
        return await self.hasher.hash_video(entry)

    async def hash_subtitle(self, entry: FileEntry) -> str:
        return await self.hasher.hash_subtitle(entry)

    def stats(self) -> CacheStats:
        return self.cache.stats()

    def clear_all(self) -> int:
        return self.cache.clear_all()

    def clear_category(self, category: str) -> int:
        return self.cache.clear_category(category)

    def purge_expired(self) -> int:
        return self.cache.purge_expired()

    def reset(self) -> None:
        """Start a fresh batch. The persistent cache is kept."""
        self.identification.reset()

    async def wait_idle(self) -> None:
        await self.identification.wait_idle()


def build_session(
    config: Settings | None = None,
    backend: KeyValueStore | None = None,
    configure_logging: bool = True,
) -> DropSession:
    """Create a DropSession with the default collaborators.

    Args:
        config: Settings to use (the module settings when None)
        backend: Cache backend (SQLite under ``data_dir`` when None)
        configure_logging: Install the Loguru sinks first; embedders that
            configure logging themselves pass False
    """
    config = config or default_settings
    if configure_logging:
        setup_logging(config)
    backend = backend or SqlKeyValueStore(config.resolved_cache_url(), echo=False)
    cache = CacheStore(
        backend,
        codec=CacheCodec(compress=config.cache_compression),
        default_ttl=config.movie_guess_ttl,
    )
    purged = cache.purge_expired()
    if purged:
        logger.info(f"Purged {purged} expired cache entries")

    return DropSession(
        cache=cache,
        reader=LocalContentReader(),
        guesser=OpenSubtitlesXmlRpcClient(
            config.xmlrpc_url,
            token=config.xmlrpc_token,
            user_agent=config.user_agent,
            request_delay=config.network_request_delay,
            timeout=config.request_timeout,
        ),
        features=OpenSubtitlesRestClient(
            config.rest_url,
            api_key=config.api_key,
            user_agent=config.user_agent,
            request_delay=config.network_request_delay,
            timeout=config.request_timeout,
        ),
        episode_detector=GuessitEpisodeDetector(),
        config=config,
    )
