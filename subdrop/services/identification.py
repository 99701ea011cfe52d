"""Identification coordinator.

Resolves each dropped video (or orphaned subtitle) to a movie or episode:

1. reuse an identity already resolved for the same MovieKey,
2. guess from the filename,
3. fall back to the parent directory name,
4. hydrate features and, for series, enrich to an episode in the background.

Per-file bookkeeping (processing set, failed set, outcomes) lives here and is
only mutated through synchronous claim/release helpers, so checks and
inserts never straddle an await.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass

from subdrop.cache.coordinator import RequestCoordinator
from subdrop.cache.store import EPISODE, FEATURES, MOVIE_GUESS, make_key
from subdrop.config import Settings, settings as default_settings
from subdrop.core.errors import InvalidResultError, SubdropError
from subdrop.core.naming import best_detection_name, extract_directory_name, movie_key, subtitle_base_name
from subdrop.lookup.base import EpisodeDetector, FeatureProvider, MovieGuesser
from subdrop.lookup.models import EpisodeDetection, FeatureSet, MovieGuessResult
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
from subdrop.models.media import FileEntry, PairingResult
from subdrop.services.event_broadcaster import EventBroadcaster
from subdrop.services.state_machine import IdentificationStateMachine

logger = logging.getLogger(__name__)


@dataclass
class _KeyedIdentity:
    identity: MovieIdentity
    source_path: str


def to_identity(guess: MovieGuessResult) -> MovieIdentity:
    """Map a raw movie guess to a MovieIdentity."""
    kind = guess.kind.lower()
    if kind == "episode":
        identity_kind = IdentityKind.EPISODE
    elif guess.is_series:
        identity_kind = IdentityKind.SERIES
    else:
        identity_kind = IdentityKind.MOVIE
    return MovieIdentity(
        imdb_id=guess.imdb_id,
        title=(guess.title or "").strip(),
        year=guess.year,
        kind=identity_kind,
        reason=guess.reason or "",
    )


def build_episode_identity(
    series: MovieIdentity,
    detection: EpisodeDetection,
    features: FeatureSet | None = None,
) -> MovieIdentity:
    """Turn a series identity into an episode identity.

    The episode IMDb id comes from the hydrated season data when it lists
    the episode; otherwise the series id is kept.
    """
    season, episode = detection.season, detection.episode
    feature_episode = features.find_episode(season, episode) if features else None

    episode_title = detection.episode_title
    if not episode_title and feature_episode and feature_episode.title:
        episode_title = feature_episode.title
    episode_title = episode_title or f"Episode {episode}"

    imdb_id = series.imdb_id
    if feature_episode and feature_episode.imdb_id:
        imdb_id = feature_episode.imdb_id

    return series.model_copy(
        update={
            "imdb_id": imdb_id,
            "kind": IdentityKind.EPISODE,
            "season": season,
            "episode": episode,
            "episode_title": episode_title,
            "series_imdb_id": series.imdb_id,
            "formatted_title": f"{series.title} - S{season:02d}E{episode:02d} - {episode_title}",
        }
    )


class IdentificationCoordinator:
    """Drives per-file identification over a RequestCoordinator."""

    def __init__(
        self,
        requests: RequestCoordinator,
        guesser: MovieGuesser,
        features: FeatureProvider,
        episode_detector: EpisodeDetector,
        broadcaster: EventBroadcaster | None = None,
        config: Settings | None = None,
    ):
        self._requests = requests
        self._guesser = guesser
        self._feature_provider = features
        self._episode_detector = episode_detector
        self._broadcaster = broadcaster or EventBroadcaster()
        self._state_machine = IdentificationStateMachine(self._broadcaster)
        self._config = config or default_settings

        self._records: dict[str, IdentificationRecord] = {}
        self._processing: set[str] = set()
        self._failed: set[str] = set()
        self._active_tokens: dict[str, int] = {}
        self._resolved_by_key: dict[str, _KeyedIdentity] = {}
        # first in-flight guess per MovieKey; later members wait on it
        self._key_leaders: dict[str, asyncio.Future] = {}
        self._features: dict[str, FeatureSet | None] = {}
        self._tasks: set[asyncio.Task] = set()
        self._token_counter = itertools.count(1)

    @property
    def broadcaster(self) -> EventBroadcaster:
        return self._broadcaster

    # --- Public API ---

    async def identify(self, entry: FileEntry) -> GuessOutcome | None:
        """Identify a video file by its name.

        Returns:
            The file's outcome, or None when a clear/reset discarded the result
        """
        return await self._identify(entry.full_path, entry.name, entry.directory)

    async def identify_subtitle(self, entry: FileEntry) -> GuessOutcome | None:
        """Identify an orphaned subtitle.

        Generic subtitle names (``en.srt``) are replaced by the nearest
        meaningful ancestor directory before guessing.
        """
        detection_name = best_detection_name(entry.full_path)
        from_parent = detection_name != subtitle_base_name(entry.name)
        if from_parent:
            logger.info(f"Using directory '{detection_name}' for generic subtitle {entry.name}")
        return await self._identify(
            entry.full_path,
            f"{detection_name}.srt",
            entry.directory,
            detection_reason=f"subtitle parent directory: {detection_name}" if from_parent else None,
        )

    async def identify_all(self, pairing: PairingResult) -> dict[str, GuessOutcome | None]:
        """Identify every paired video and orphaned subtitle concurrently."""
        videos = pairing.videos
        orphans = pairing.orphans
        results = await asyncio.gather(
            *(self.identify(v) for v in videos),
            *(self.identify_subtitle(o) for o in orphans),
            return_exceptions=True,
        )
        paths = [v.full_path for v in videos] + [o.full_path for o in orphans]
        outcomes = {}
        for path, result in zip(paths, results):
            if isinstance(result, Exception):
                logger.error(f"Identification of {path} raised: {result}", exc_info=result)
                result = Failed(reason=str(result))
            outcomes[path] = result
        return outcomes

    async def set_identity(self, path: str, identity: MovieIdentity) -> None:
        """Manually assign an identity (user selection), replacing any outcome."""
        name = path.rpartition("/")[2]
        self.clear_file(path)
        record, _ = self._claim(path, name)
        await self._state_machine.transition(
            record, IdentificationState.RESOLVED, outcome=Resolved(identity)
        )
        self._processing.discard(path)
        self._remember(movie_key(path), identity, path)

    def outcome(self, path: str) -> GuessOutcome | None:
        record = self._records.get(path)
        return record.outcome if record else None

    def record(self, path: str) -> IdentificationRecord | None:
        return self._records.get(path)

    def outcomes(self) -> dict[str, GuessOutcome | None]:
        return {path: record.outcome for path, record in self._records.items()}

    def features_for(self, imdb_id: str) -> FeatureSet | None:
        return self._features.get(imdb_id)

    def processing_status(self, path: str) -> dict[str, bool]:
        record = self._records.get(path)
        return {
            "is_processing": path in self._processing,
            "has_failed": path in self._failed,
            "is_complete": record is not None and isinstance(record.outcome, Resolved),
        }

    def clear_file(self, path: str) -> None:
        """Forget a file's markers and outcome so it can be identified again.

        Results of calls already in flight for it are discarded on arrival.
        """
        self._processing.discard(path)
        self._failed.discard(path)
        self._active_tokens.pop(path, None)
        self._records.pop(path, None)

    def reset(self) -> None:
        """Clear everything for a new batch; old in-flight results are discarded."""
        self._records.clear()
        self._processing.clear()
        self._failed.clear()
        self._active_tokens.clear()
        self._resolved_by_key.clear()
        self._key_leaders.clear()
        self._features.clear()
        logger.info("Identification state reset")

    async def wait_idle(self) -> None:
        """Wait for all scheduled background enrichment to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # --- Bookkeeping ---

    def _claim(self, path: str, name: str) -> tuple[IdentificationRecord, int]:
        token = next(self._token_counter)
        record = IdentificationRecord(path=path, name=name, token=token)
        self._records[path] = record
        self._active_tokens[path] = token
        self._processing.add(path)
        return record, token

    def _is_current(self, path: str, token: int) -> bool:
        return self._active_tokens.get(path) == token

    def _release(self, path: str, token: int) -> None:
        if self._is_current(path, token):
            self._processing.discard(path)

    def _remember(self, key: str, identity: MovieIdentity, path: str) -> None:
        if identity.imdb_id:
            self._resolved_by_key[key] = _KeyedIdentity(identity=identity, source_path=path)

    def _should_skip(self, path: str, name: str) -> bool:
        if path in self._processing:
            logger.debug(f"Identification already in progress for {name}, skipping")
            return True
        if path in self._failed:
            logger.debug(f"Identification previously failed for {name}, skipping")
            return True
        record = self._records.get(path)
        if record is not None and record.outcome is not None:
            logger.debug(f"{name} already identified, skipping")
            return True
        return False

    # --- Identification flow ---

    async def _identify(
        self,
        path: str,
        query_name: str,
        directory: str,
        detection_reason: str | None = None,
    ) -> GuessOutcome | None:
        if self._should_skip(path, query_name):
            return self.outcome(path)

        key = movie_key(f"{directory}/{query_name}")
        leader = self._key_leaders.get(key)
        if leader is not None and not leader.done():
            logger.debug(f"Waiting for in-flight identification of {key} before {query_name}")
            await asyncio.shield(leader)
            if self._should_skip(path, query_name):
                return self.outcome(path)

        existing = self._resolved_by_key.get(key)
        if existing is not None and existing.source_path != path:
            return await self._reuse(path, query_name, existing)

        record, token = self._claim(path, query_name)
        leader = None
        if key not in self._key_leaders:
            leader = asyncio.get_running_loop().create_future()
            self._key_leaders[key] = leader
        try:
            try:
                await self._state_machine.transition(
                    record, IdentificationState.GUESSING, outcome=Pending()
                )
                outcome = await self._guess_with_fallback(path, query_name, detection_reason)
            except (SubdropError, OSError) as e:
                logger.warning(f"Identification failed for {query_name}: {e}")
                outcome = Failed(reason=str(e))
            except Exception as e:
                logger.error(f"Unexpected error identifying {query_name}: {e}", exc_info=True)
                outcome = Failed(reason=f"{type(e).__name__}: {e}")

            if not self._is_current(path, token):
                logger.debug(f"Discarding stale identification result for {query_name}")
                return None

            await self._settle(record, token, key, query_name, outcome)
        finally:
            self._release(path, token)
            if leader is not None:
                if self._key_leaders.get(key) is leader:
                    del self._key_leaders[key]
                if not leader.done():
                    leader.set_result(None)
        return record.outcome

    async def _settle(
        self,
        record: IdentificationRecord,
        token: int,
        key: str,
        query_name: str,
        outcome: GuessOutcome,
    ) -> None:
        if isinstance(outcome, Failed):
            self._failed.add(record.path)
            await self._state_machine.transition_to_failed(record, outcome.reason, outcome)
        elif isinstance(outcome, Resolved):
            identity = outcome.identity
            await self._state_machine.transition(record, IdentificationState.RESOLVED, outcome=outcome)
            self._remember(key, identity, record.path)
            logger.info(f"Identified {query_name}: {identity.title} ({identity.year})")
            if identity.imdb_id:
                self._schedule_enrichment(
                    record.path, token, key, query_name, identity, enrich_episode=identity.is_series
                )
        else:
            await self._state_machine.transition(record, IdentificationState.NO_MATCH, outcome=outcome)
            logger.info(f"No match found for {query_name} or its directory")

    async def _reuse(self, path: str, name: str, existing: _KeyedIdentity) -> GuessOutcome:
        source_name = existing.source_path.rpartition("/")[2]
        identity = existing.identity.model_copy(update={"reason": f"reused from {source_name}"})
        record, token = self._claim(path, name)
        await self._state_machine.transition(
            record, IdentificationState.RESOLVED, outcome=Resolved(identity)
        )
        self._release(path, token)
        logger.info(f"Reusing identification from {source_name} for {name}")
        if identity.imdb_id:
            self._schedule_enrichment(path, token, None, name, identity, enrich_episode=False)
        return record.outcome

    async def _guess_with_fallback(
        self, path: str, query_name: str, detection_reason: str | None
    ) -> GuessOutcome:
        guess = await self._guess(query_name)
        reason = None

        if guess is None or not guess.has_usable_title:
            directory_name = extract_directory_name(path)
            if directory_name and directory_name != query_name:
                logger.info(f"Primary guess failed, trying directory name '{directory_name}'")
                guess = await self._guess(directory_name)
                reason = f"directory match: {directory_name}"

        if guess is None or not guess.has_usable_title:
            return NoMatch(query=query_name)

        identity = to_identity(guess)
        if detection_reason:
            reason = detection_reason
        if reason:
            identity = identity.model_copy(update={"reason": reason})
        return Resolved(identity)

    async def _guess(self, query: str) -> MovieGuessResult | None:
        async def producer():
            # unusable answers are cached as negative results
            try:
                result = await self._guesser.guess_movie(query)
            except InvalidResultError as e:
                logger.debug(f"Invalid guess result for {query}: {e}")
                return None
            if result is not None and not result.has_usable_title:
                return None
            return result

        return await self._requests.resolve(
            make_key(MOVIE_GUESS, query),
            producer,
            ttl=self._config.movie_guess_ttl,
            endpoint=f"{MOVIE_GUESS}_{query}",
            rate_limit_window=self._config.movie_guess_rate_limit,
            max_attempts=self._config.identification_max_attempts,
            model=MovieGuessResult,
        )

    # --- Background enrichment ---

    def _schedule_enrichment(
        self,
        path: str,
        token: int,
        key: str | None,
        filename: str,
        identity: MovieIdentity,
        enrich_episode: bool,
    ) -> None:
        task = asyncio.create_task(
            self._run_enrichment(path, token, key, filename, identity, enrich_episode)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_enrichment(self, path: str, token: int, *args) -> None:
        """Background wrapper: enrichment failures never touch the resolved identity."""
        try:
            await self._enrich(path, token, *args)
        except Exception as e:
            logger.error(f"Enrichment failed for {path}: {e}", exc_info=True)

    async def _enrich(
        self,
        path: str,
        token: int,
        key: str | None,
        filename: str,
        identity: MovieIdentity,
        enrich_episode: bool,
    ) -> None:
        features = await self.fetch_features(identity.imdb_id)
        if not enrich_episode:
            return

        detection = await self._detect_episode(filename)
        if detection is None or not detection.is_complete:
            logger.debug(f"No episode information found in {filename}")
            return

        if not self._is_current(path, token):
            return
        record = self._records[path]

        episode_identity = build_episode_identity(identity, detection, features)
        await self._state_machine.transition(
            record, IdentificationState.RESOLVED, outcome=Resolved(episode_identity), broadcast=False
        )
        if key is not None:
            self._remember(key, episode_identity, path)
        logger.info(f"Enriched {filename} to {episode_identity.formatted_title}")
        try:
            await self._broadcaster.broadcast_episode_enriched(path, episode_identity)
        except Exception as e:
            logger.error(f"{filename}: episode broadcast failed: {e}", exc_info=True)

    async def fetch_features(self, imdb_id: str) -> FeatureSet | None:
        """Feature set for ``imdb_id``, memoized; concurrent calls share one request.

        Failures are logged and return None without being memoized.
        """
        if imdb_id in self._features:
            return self._features[imdb_id]

        try:
            features = await self._requests.resolve(
                make_key(FEATURES, imdb_id),
                lambda: self._feature_provider.get_features_by_id(imdb_id),
                ttl=self._config.features_ttl,
                endpoint=f"{FEATURES}_{imdb_id}",
                rate_limit_window=self._config.features_rate_limit,
                model=FeatureSet,
            )
        except (SubdropError, OSError) as e:
            logger.warning(f"Features lookup failed for {imdb_id}: {e}")
            return None
        except Exception as e:
            logger.error(f"Unexpected error loading features for {imdb_id}: {e}", exc_info=True)
            return None

        self._features[imdb_id] = features
        try:
            await self._broadcaster.broadcast_features_loaded(imdb_id, features is not None)
        except Exception as e:
            logger.error(f"Features broadcast failed for {imdb_id}: {e}", exc_info=True)
        return features

    async def _detect_episode(self, filename: str) -> EpisodeDetection | None:
        try:
            return await self._requests.resolve(
                make_key(EPISODE, filename),
                lambda: self._episode_detector.detect_episode(filename),
                ttl=self._config.episode_ttl,
                model=EpisodeDetection,
            )
        except (SubdropError, OSError) as e:
            logger.warning(f"Episode detection failed for {filename}: {e}")
            return None
        except Exception as e:
            logger.error(f"Unexpected error detecting episode in {filename}: {e}", exc_info=True)
            return None
