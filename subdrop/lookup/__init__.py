"""Remote lookup collaborators: movie guessing, features and episode detection."""

from subdrop.lookup.base import EpisodeDetector, FeatureProvider, MovieGuesser
from subdrop.lookup.models import EpisodeDetection, EpisodeFeature, FeatureSet, MovieGuessResult, SeasonInfo

__all__ = [
    "EpisodeDetection",
    "EpisodeDetector",
    "EpisodeFeature",
    "FeatureProvider",
    "FeatureSet",
    "MovieGuessResult",
    "MovieGuesser",
    "SeasonInfo",
]
