"""Interfaces of the remote lookup collaborators.

Implementations raise NetworkError for transport failures and
ProtocolError for malformed responses; "nothing found" is None.
"""

from abc import ABC, abstractmethod

from subdrop.lookup.models import EpisodeDetection, FeatureSet, MovieGuessResult


class MovieGuesser(ABC):
    """Resolves a filename or free-text query to a best-guess title."""

    name: str = "base"

    @abstractmethod
    async def guess_movie(self, query: str) -> MovieGuessResult | None:
        pass


class FeatureProvider(ABC):
    """Fetches feature metadata (seasons, episodes) by IMDb id."""

    name: str = "base"

    @abstractmethod
    async def get_features_by_id(self, imdb_id: str) -> FeatureSet | None:
        pass


class EpisodeDetector(ABC):
    """Extracts season/episode numbers from a filename."""

    @abstractmethod
    async def detect_episode(self, filename: str) -> EpisodeDetection | None:
        pass
