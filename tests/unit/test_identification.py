"""Unit tests for IdentificationCoordinator.

Tests the guess/fallback flow, MovieKey reuse, failure bookkeeping, stale
result handling and background episode enrichment.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from subdrop.cache.store import FEATURES, MOVIE_GUESS, make_key
from subdrop.core.errors import InvalidResultError, NetworkError
from subdrop.lookup.models import (
    EpisodeDetection,
    EpisodeFeature,
    FeatureSet,
    MovieGuessResult,
    SeasonInfo,
)
from subdrop.models.identity import (
    Failed,
    IdentificationState,
    IdentityKind,
    MovieIdentity,
    NoMatch,
    Pending,
    Resolved,
)
from subdrop.models.media import PairedGroup, PairingResult
from subdrop.services.identification import (
    IdentificationCoordinator,
    build_episode_identity,
    to_identity,
)

INCEPTION = MovieGuessResult(
    imdb_id="1375666", title="Inception", year=2010, kind="movie", reason="guessit"
)
BREAKING_BAD = MovieGuessResult(
    imdb_id="903747", title="Breaking Bad", year=2008, kind="tv series", reason="guessit"
)
MATRIX = MovieGuessResult(imdb_id="133093", title="The Matrix", year=1999, reason="guessit")
BREAKING_BAD_FEATURES = FeatureSet(
    imdb_id="903747",
    title="Breaking Bad",
    feature_type="Tvshow",
    seasons=[
        SeasonInfo(
            season_number=1,
            episodes=[
                EpisodeFeature(episode_number=1, title="Pilot", imdb_id="959621"),
                EpisodeFeature(episode_number=2, title="Cat's in the Bag...", imdb_id="1054724"),
            ],
        )
    ],
)


@pytest.fixture
async def coordinator(
    request_coordinator,
    mock_guesser,
    mock_features,
    mock_episode_detector,
    recorded_events,
    test_settings,
):
    broadcaster, _ = recorded_events
    coordinator = IdentificationCoordinator(
        request_coordinator,
        mock_guesser,
        mock_features,
        mock_episode_detector,
        broadcaster=broadcaster,
        config=test_settings,
    )
    yield coordinator
    await coordinator.wait_idle()


def guesses(mapping):
    """side_effect answering guess_movie from a query -> result mapping."""

    async def _guess(query):
        return mapping.get(query)

    return _guess


@pytest.mark.unit
class TestToIdentity:
    def test_movie(self):
        identity = to_identity(INCEPTION)

        assert identity.kind == IdentityKind.MOVIE
        assert identity.imdb_id == "1375666"
        assert identity.reason == "guessit"

    def test_series(self):
        assert to_identity(BREAKING_BAD).kind == IdentityKind.SERIES

    def test_episode_kind_and_title_trimmed(self):
        identity = to_identity(MovieGuessResult(title="  Pilot ", kind="episode"))

        assert identity.kind == IdentityKind.EPISODE
        assert identity.title == "Pilot"
        assert identity.reason == ""


@pytest.mark.unit
class TestBuildEpisodeIdentity:
    def test_uses_feature_episode(self):
        series = to_identity(BREAKING_BAD)

        identity = build_episode_identity(
            series, EpisodeDetection(season=1, episode=2), BREAKING_BAD_FEATURES
        )

        assert identity.kind == IdentityKind.EPISODE
        assert identity.imdb_id == "1054724"
        assert identity.series_imdb_id == "903747"
        assert identity.s_e_format == "S01E02"
        assert identity.formatted_title == "Breaking Bad - S01E02 - Cat's in the Bag..."

    def test_without_features_keeps_series_id(self):
        series = to_identity(BREAKING_BAD)

        identity = build_episode_identity(series, EpisodeDetection(season=3, episode=7))

        assert identity.imdb_id == "903747"
        assert identity.display_title == "Breaking Bad - S03E07 - Episode 7"

    def test_detected_title_wins(self):
        series = to_identity(BREAKING_BAD)

        identity = build_episode_identity(
            series,
            EpisodeDetection(season=1, episode=1, episode_title="Pilot Episode"),
            BREAKING_BAD_FEATURES,
        )

        assert identity.episode_title == "Pilot Episode"
        assert identity.imdb_id == "959621"


@pytest.mark.unit
class TestIdentify:
    async def test_resolves_movie(self, coordinator, mock_guesser, mock_features, entry, recorded_events):
        _, events = recorded_events
        mock_guesser.guess_movie.side_effect = guesses({"Inception.mkv": INCEPTION})
        video = entry("Movies/Inception/Inception.mkv")

        outcome = await coordinator.identify(video)
        await coordinator.wait_idle()

        assert isinstance(outcome, Resolved)
        assert outcome.identity.title == "Inception"
        assert coordinator.record(video.full_path).state == IdentificationState.RESOLVED
        assert coordinator.processing_status(video.full_path) == {
            "is_processing": False,
            "has_failed": False,
            "is_complete": True,
        }
        mock_features.get_features_by_id.assert_awaited_once_with("1375666")
        assert [name for name, _ in events] == [
            "identification_started",
            "identification_resolved",
            "features_loaded",
        ]

    async def test_already_resolved_is_skipped(self, coordinator, mock_guesser, entry):
        mock_guesser.guess_movie.side_effect = guesses({"Inception.mkv": INCEPTION})
        video = entry("Movies/Inception/Inception.mkv")

        first = await coordinator.identify(video)
        second = await coordinator.identify(video)

        assert first == second
        assert mock_guesser.guess_movie.await_count == 1

    async def test_directory_fallback(self, coordinator, mock_guesser, entry):
        mock_guesser.guess_movie.side_effect = guesses({"Inception (2010)": INCEPTION})

        outcome = await coordinator.identify(entry("Movies/Inception (2010) [1080p]/xyz123.mkv"))

        assert isinstance(outcome, Resolved)
        assert outcome.identity.reason == "directory match: Inception (2010)"
        queried = [call.args[0] for call in mock_guesser.guess_movie.await_args_list]
        assert queried == ["xyz123.mkv", "Inception (2010)"]

    async def test_unusable_title_falls_back(self, coordinator, mock_guesser, entry):
        mock_guesser.guess_movie.side_effect = guesses(
            {"abc.mkv": MovieGuessResult(title="undefined"), "Inception": INCEPTION}
        )

        outcome = await coordinator.identify(entry("Inception/abc.mkv"))

        assert outcome.identity.title == "Inception"

    async def test_no_match(self, coordinator, mock_guesser, entry, recorded_events):
        _, events = recorded_events
        video = entry("Unknown/qwerty.mkv")

        outcome = await coordinator.identify(video)

        assert outcome == NoMatch(query="qwerty.mkv")
        assert coordinator.record(video.full_path).state == IdentificationState.NO_MATCH
        assert not coordinator.processing_status(video.full_path)["has_failed"]
        assert events[-1] == ("identification_no_match", {"path": "Unknown/qwerty.mkv"})

    async def test_invalid_result_is_cached_as_no_match(
        self, coordinator, mock_guesser, request_coordinator, entry
    ):
        mock_guesser.guess_movie.side_effect = InvalidResultError("no MovieName")

        outcome = await coordinator.identify(entry("qwerty.mkv"))

        assert isinstance(outcome, NoMatch)
        entry_ = request_coordinator.cache.lookup(make_key(MOVIE_GUESS, "qwerty.mkv"))
        assert entry_ is not None and entry_.value is None

    async def test_network_failure_marks_failed(self, coordinator, mock_guesser, entry, test_settings):
        mock_guesser.guess_movie.side_effect = NetworkError("connection reset")
        video = entry("Movies/Inception.mkv")

        outcome = await coordinator.identify(video)

        assert isinstance(outcome, Failed)
        assert "connection reset" in outcome.reason
        assert mock_guesser.guess_movie.await_count == test_settings.identification_max_attempts
        status = coordinator.processing_status(video.full_path)
        assert status["has_failed"] and not status["is_processing"]
        assert coordinator.record(video.full_path).state == IdentificationState.ERROR

    async def test_failed_file_is_not_retried_until_cleared(self, coordinator, mock_guesser, entry):
        mock_guesser.guess_movie.side_effect = NetworkError("down")
        video = entry("Movies/Inception.mkv")
        await coordinator.identify(video)
        calls = mock_guesser.guess_movie.await_count

        again = await coordinator.identify(video)
        assert isinstance(again, Failed)
        assert mock_guesser.guess_movie.await_count == calls

        coordinator.clear_file(video.full_path)
        mock_guesser.guess_movie.side_effect = guesses({"Inception.mkv": INCEPTION})
        outcome = await coordinator.identify(video)

        assert isinstance(outcome, Resolved)


@pytest.mark.unit
class TestReuse:
    async def test_same_movie_key_reuses_identity(self, coordinator, mock_guesser, entry):
        mock_guesser.guess_movie.side_effect = guesses({"Film.cd1.avi": INCEPTION})

        first = await coordinator.identify(entry("Movies/Film.cd1.avi"))
        second = await coordinator.identify(entry("Movies/Film.cd2.avi"))

        assert mock_guesser.guess_movie.await_count == 1
        assert second.identity.imdb_id == first.identity.imdb_id
        assert second.identity.reason == "reused from Film.cd1.avi"

    async def test_subtitle_reuses_video_identity(self, coordinator, mock_guesser, entry):
        mock_guesser.guess_movie.side_effect = guesses({"Inception.mkv": INCEPTION})

        await coordinator.identify(entry("Movies/Inception/Inception.mkv"))
        outcome = await coordinator.identify_subtitle(entry("Movies/Inception/Inception.en.srt"))

        assert outcome.identity.title == "Inception"
        assert outcome.identity.reason == "reused from Inception.mkv"
        assert mock_guesser.guess_movie.await_count == 1

    async def test_identity_without_imdb_id_is_not_reused(self, coordinator, mock_guesser, entry):
        mock_guesser.guess_movie.side_effect = guesses(
            {"Film.cd1.avi": MovieGuessResult(title="Film"), "Film.cd2.avi": MovieGuessResult(title="Film")}
        )

        await coordinator.identify(entry("Movies/Film.cd1.avi"))
        await coordinator.identify(entry("Movies/Film.cd2.avi"))

        assert mock_guesser.guess_movie.await_count == 2


@pytest.mark.unit
class TestSubtitles:
    async def test_generic_subtitle_uses_parent_directory(self, coordinator, mock_guesser, entry):
        mock_guesser.guess_movie.side_effect = guesses({"Inception (2010).srt": INCEPTION})

        outcome = await coordinator.identify_subtitle(entry("Inception (2010)/Subs/English.srt"))

        assert outcome.identity.title == "Inception"
        assert outcome.identity.reason == "subtitle parent directory: Inception (2010)"

    async def test_named_subtitle_keeps_guess_reason(self, coordinator, mock_guesser, entry):
        mock_guesser.guess_movie.side_effect = guesses({"Inception.2010.srt": INCEPTION})

        outcome = await coordinator.identify_subtitle(entry("Downloads/Inception.2010.eng.srt"))

        assert outcome.identity.reason == "guessit"


@pytest.mark.unit
class TestEpisodeEnrichment:
    async def test_series_is_enriched_to_episode(
        self,
        coordinator,
        mock_guesser,
        mock_features,
        mock_episode_detector,
        entry,
        recorded_events,
    ):
        _, events = recorded_events
        mock_guesser.guess_movie.side_effect = guesses({"Breaking.Bad.S01E02.720p.mkv": BREAKING_BAD})
        mock_features.get_features_by_id.return_value = BREAKING_BAD_FEATURES
        mock_episode_detector.detect_episode.return_value = EpisodeDetection(season=1, episode=2)
        video = entry("TV/Breaking.Bad.S01E02.720p.mkv")

        outcome = await coordinator.identify(video)
        assert outcome.identity.kind == IdentityKind.SERIES
        await coordinator.wait_idle()

        identity = coordinator.outcome(video.full_path).identity
        assert identity.kind == IdentityKind.EPISODE
        assert identity.imdb_id == "1054724"
        assert identity.series_imdb_id == "903747"
        assert identity.formatted_title == "Breaking Bad - S01E02 - Cat's in the Bag..."
        assert coordinator.features_for("903747") == BREAKING_BAD_FEATURES
        mock_episode_detector.detect_episode.assert_awaited_once_with("Breaking.Bad.S01E02.720p.mkv")
        assert events[-1][0] == "episode_enriched"

    async def test_series_without_episode_numbers_stays_series(
        self, coordinator, mock_guesser, mock_episode_detector, entry
    ):
        mock_guesser.guess_movie.side_effect = guesses({"Breaking Bad.mkv": BREAKING_BAD})
        mock_episode_detector.detect_episode.return_value = EpisodeDetection(season=1)
        video = entry("TV/Breaking Bad.mkv")

        await coordinator.identify(video)
        await coordinator.wait_idle()

        assert coordinator.outcome(video.full_path).identity.kind == IdentityKind.SERIES

    async def test_features_failure_is_not_memoized(self, coordinator, mock_features):
        mock_features.get_features_by_id.side_effect = [NetworkError("down"), BREAKING_BAD_FEATURES]

        assert await coordinator.fetch_features("903747") is None
        assert await coordinator.fetch_features("903747") == BREAKING_BAD_FEATURES
        assert await coordinator.fetch_features("903747") == BREAKING_BAD_FEATURES

        assert mock_features.get_features_by_id.await_count == 2

    async def test_features_are_cached_across_resets(
        self, coordinator, mock_features, request_coordinator
    ):
        mock_features.get_features_by_id.return_value = BREAKING_BAD_FEATURES

        await coordinator.fetch_features("903747")
        coordinator.reset()
        features = await coordinator.fetch_features("903747")

        assert features == BREAKING_BAD_FEATURES
        assert mock_features.get_features_by_id.await_count == 1
        assert request_coordinator.cache.is_valid(make_key(FEATURES, "903747"))


@pytest.mark.unit
class TestStaleResults:
    async def _start_blocked(self, coordinator, mock_guesser, video):
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_guess(query):
            started.set()
            await release.wait()
            return INCEPTION

        mock_guesser.guess_movie.side_effect = slow_guess
        task = asyncio.create_task(coordinator.identify(video))
        await started.wait()
        return task, release

    async def test_concurrent_identify_of_same_file_runs_once(self, coordinator, mock_guesser, entry):
        video = entry("Movies/Inception.mkv")
        task, release = await self._start_blocked(coordinator, mock_guesser, video)

        assert coordinator.processing_status(video.full_path)["is_processing"]
        assert await coordinator.identify(video) == Pending()

        release.set()
        assert isinstance(await task, Resolved)
        assert mock_guesser.guess_movie.await_count == 1

    async def test_cleared_file_discards_in_flight_result(self, coordinator, mock_guesser, entry):
        video = entry("Movies/Inception.mkv")
        task, release = await self._start_blocked(coordinator, mock_guesser, video)

        coordinator.clear_file(video.full_path)
        release.set()

        assert await task is None
        assert coordinator.outcome(video.full_path) is None
        assert not coordinator.processing_status(video.full_path)["is_processing"]

    async def test_reset_discards_in_flight_result(self, coordinator, mock_guesser, entry):
        video = entry("Movies/Inception.mkv")
        task, release = await self._start_blocked(coordinator, mock_guesser, video)

        coordinator.reset()
        release.set()

        assert await task is None
        assert coordinator.outcomes() == {}

    async def test_outcome_is_pending_while_guessing(self, coordinator, mock_guesser, entry):
        video = entry("Movies/Inception.mkv")
        task, release = await self._start_blocked(coordinator, mock_guesser, video)

        assert coordinator.outcome(video.full_path) == Pending()
        assert coordinator.record(video.full_path).state == IdentificationState.GUESSING
        assert not coordinator.processing_status(video.full_path)["is_complete"]

        release.set()
        assert isinstance(await task, Resolved)


@pytest.mark.unit
class TestBatchAndManual:
    async def test_identify_all(self, coordinator, mock_guesser, entry):
        mock_guesser.guess_movie.side_effect = guesses(
            {"Inception.mkv": INCEPTION, "Breaking Bad.srt": BREAKING_BAD}
        )
        video = entry("Movies/Inception.mkv")
        orphan = entry("TV/Breaking Bad.srt")
        pairing = PairingResult(groups=[PairedGroup(video=video)], orphans=[orphan])

        results = await coordinator.identify_all(pairing)
        await coordinator.wait_idle()

        assert set(results) == {video.full_path, orphan.full_path}
        assert results[video.full_path].identity.title == "Inception"
        assert results[orphan.full_path].identity.title == "Breaking Bad"

    async def test_set_identity(self, coordinator, mock_guesser, entry):
        identity = MovieIdentity(imdb_id="133093", title="The Matrix", year=1999, reason="user selection")

        await coordinator.set_identity("Movies/Matrix.cd1.avi", identity)
        reused = await coordinator.identify(entry("Movies/Matrix.cd2.avi"))

        assert coordinator.outcome("Movies/Matrix.cd1.avi") == Resolved(identity)
        assert reused.identity.imdb_id == "133093"
        mock_guesser.guess_movie.assert_not_awaited()


@pytest.mark.unit
class TestFailureIsolation:
    async def test_unexpected_error_marks_file_failed(self, coordinator, mock_guesser, entry, recorded_events):
        _, events = recorded_events
        mock_guesser.guess_movie.side_effect = ValueError("guesser crashed")
        video = entry("A/Broken.mkv")

        outcome = await coordinator.identify(video)

        assert isinstance(outcome, Failed)
        assert "guesser crashed" in outcome.reason
        assert coordinator.record(video.full_path).state == IdentificationState.ERROR
        assert coordinator.processing_status(video.full_path) == {
            "is_processing": False,
            "has_failed": True,
            "is_complete": False,
        }
        assert events[-1][0] == "identification_failed"

    async def test_failing_file_does_not_abort_siblings(self, coordinator, mock_guesser, entry):
        async def guess(query):
            if query == "Broken.mkv":
                raise ValueError("guesser crashed")
            return INCEPTION if query == "Inception.mkv" else None

        mock_guesser.guess_movie.side_effect = guess
        broken = entry("A/Broken.mkv")
        video = entry("B/Inception.mkv")
        pairing = PairingResult(groups=[PairedGroup(video=broken), PairedGroup(video=video)])

        results = await coordinator.identify_all(pairing)

        assert isinstance(results[broken.full_path], Failed)
        assert results[video.full_path].identity.title == "Inception"

    async def test_identify_all_turns_raised_errors_into_failures(self, coordinator, entry):
        video = entry("Movies/Inception.mkv")
        coordinator.identify = AsyncMock(side_effect=RuntimeError("boom"))

        results = await coordinator.identify_all(PairingResult(groups=[PairedGroup(video=video)]))

        assert results == {video.full_path: Failed(reason="boom")}

    async def test_malformed_features_keep_identity(
        self, coordinator, mock_guesser, mock_features, mock_episode_detector, entry
    ):
        mock_guesser.guess_movie.side_effect = guesses({"Breaking.Bad.S01E02.mkv": BREAKING_BAD})
        mock_features.get_features_by_id.side_effect = AttributeError("'str' object has no attribute 'get'")
        mock_episode_detector.detect_episode.return_value = EpisodeDetection(season=1, episode=2)
        video = entry("TV/Breaking.Bad.S01E02.mkv")

        await coordinator.identify(video)
        await coordinator.wait_idle()

        identity = coordinator.outcome(video.full_path).identity
        assert identity.kind == IdentityKind.EPISODE
        assert identity.imdb_id == "903747"
        assert coordinator.features_for("903747") is None

    async def test_enrichment_crash_is_contained(
        self, coordinator, mock_guesser, mock_episode_detector, entry, monkeypatch
    ):
        mock_guesser.guess_movie.side_effect = guesses({"Breaking.Bad.S01E02.mkv": BREAKING_BAD})
        mock_episode_detector.detect_episode.return_value = EpisodeDetection(season=1, episode=2)

        def explode(*args, **kwargs):
            raise KeyError("season_number")

        monkeypatch.setattr("subdrop.services.identification.build_episode_identity", explode)
        video = entry("TV/Breaking.Bad.S01E02.mkv")

        await coordinator.identify(video)
        tasks = list(coordinator._tasks)
        await coordinator.wait_idle()

        assert all(task.exception() is None for task in tasks)
        assert coordinator.outcome(video.full_path).identity.kind == IdentityKind.SERIES

    async def test_detector_error_keeps_series_identity(
        self, coordinator, mock_guesser, mock_episode_detector, entry
    ):
        mock_guesser.guess_movie.side_effect = guesses({"Breaking.Bad.S01E02.mkv": BREAKING_BAD})
        mock_episode_detector.detect_episode.side_effect = TypeError("bad filename")
        video = entry("TV/Breaking.Bad.S01E02.mkv")

        await coordinator.identify(video)
        await coordinator.wait_idle()

        assert coordinator.outcome(video.full_path).identity.kind == IdentityKind.SERIES


@pytest.mark.unit
class TestSharedMovieKey:
    async def test_parts_of_one_movie_share_the_first_guess(self, coordinator, mock_guesser, entry):
        mock_guesser.guess_movie.side_effect = guesses({"Matrix.cd1.avi": MATRIX, "Matrix.cd2.avi": MATRIX})
        cd1 = entry("Movies/Matrix.cd1.avi")
        cd2 = entry("Movies/Matrix.cd2.avi")
        pairing = PairingResult(groups=[PairedGroup(video=cd1), PairedGroup(video=cd2)])

        results = await coordinator.identify_all(pairing)

        assert mock_guesser.guess_movie.await_count == 1
        assert results[cd1.full_path].identity.title == "The Matrix"
        assert results[cd2.full_path].identity.reason == "reused from Matrix.cd1.avi"

    async def test_follower_guesses_itself_when_first_finds_nothing(
        self, coordinator, mock_guesser, entry
    ):
        cd1 = entry("Movies/Matrix.cd1.avi")
        cd2 = entry("Movies/Matrix.cd2.avi")
        pairing = PairingResult(groups=[PairedGroup(video=cd1), PairedGroup(video=cd2)])

        results = await coordinator.identify_all(pairing)

        assert isinstance(results[cd1.full_path], NoMatch)
        assert isinstance(results[cd2.full_path], NoMatch)
        queried = [call.args[0] for call in mock_guesser.guess_movie.await_args_list]
        assert "Matrix.cd2.avi" in queried

    async def test_unrelated_files_do_not_wait(self, coordinator, mock_guesser, entry):
        mock_guesser.guess_movie.side_effect = guesses({"Inception.mkv": INCEPTION, "Matrix.avi": MATRIX})
        pairing = PairingResult(
            groups=[PairedGroup(video=entry("Movies/Inception.mkv")), PairedGroup(video=entry("Movies/Matrix.avi"))]
        )

        results = await coordinator.identify_all(pairing)

        assert {o.identity.title for o in results.values()} == {"Inception", "The Matrix"}
        assert mock_guesser.guess_movie.await_count == 2
