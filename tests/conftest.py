"""Core pytest fixtures for subdrop tests."""

import logging
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest
from loguru import logger

from subdrop.cache.backends import MemoryKeyValueStore
from subdrop.cache.codec import CacheCodec
from subdrop.cache.coordinator import RequestCoordinator
from subdrop.cache.store import CacheStore
from subdrop.config import Settings
from subdrop.core.files import make_file_entry
from subdrop.core.logging import InterceptHandler
from subdrop.lookup.base import EpisodeDetector, FeatureProvider, MovieGuesser
from subdrop.services.event_broadcaster import EventBroadcaster


class FakeClock:
    """Manually advanced clock for TTL and rate-limit tests."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def no_sleep():
    """Sleep stand-in that records requested delays without waiting."""
    return AsyncMock(return_value=None)


@pytest.fixture
def test_settings(tmp_path):
    """Settings isolated from the environment, with rate limits disabled."""
    return Settings(
        _env_file=None,
        data_dir=tmp_path / "data",
        retry_base_delay=0.0,
        movie_guess_rate_limit=0.0,
        features_rate_limit=0.0,
        network_request_delay=0.0,
        hash_timeout=5.0,
    )


@pytest.fixture
def memory_backend():
    return MemoryKeyValueStore()


@pytest.fixture
def cache_store(memory_backend, clock):
    return CacheStore(memory_backend, codec=CacheCodec(compress=True), default_ttl=3600, clock=clock)


@pytest.fixture
def request_coordinator(cache_store, no_sleep):
    return RequestCoordinator(cache_store, base_delay=0.0, sleep=no_sleep)


@pytest.fixture
def mock_guesser():
    guesser = MagicMock(spec=MovieGuesser)
    guesser.guess_movie = AsyncMock(return_value=None)
    return guesser


@pytest.fixture
def mock_features():
    provider = MagicMock(spec=FeatureProvider)
    provider.get_features_by_id = AsyncMock(return_value=None)
    return provider


@pytest.fixture
def mock_episode_detector():
    detector = MagicMock(spec=EpisodeDetector)
    detector.detect_episode = AsyncMock(return_value=None)
    return detector


@pytest.fixture
def recorded_events():
    """Broadcaster with a listener that records (event, payload) pairs."""
    broadcaster = EventBroadcaster()
    events: list[tuple[str, dict]] = []

    async def listener(event, payload):
        events.append((event, payload))

    broadcaster.subscribe(listener)
    return broadcaster, events


@pytest.fixture
def entry():
    """Factory for FileEntry objects from a dropped path."""

    def _make(full_path: str, size_bytes: int = 1024, handle=None):
        return make_file_entry(full_path, size_bytes, handle)

    return _make


@pytest.fixture
def restore_logging():
    """Undo setup_logging: drop the Loguru sinks and the root intercept handler."""
    root_level = logging.root.level
    yield
    logger.remove()
    logger.add(sys.stderr)
    logging.root.handlers = [h for h in logging.root.handlers if not isinstance(h, InterceptHandler)]
    logging.root.setLevel(root_level)
