"""Season/episode detection from filenames using guessit."""

import asyncio

from guessit import guessit
from guessit.api import GuessitException
from loguru import logger

from subdrop.lookup.base import EpisodeDetector
from subdrop.lookup.models import EpisodeDetection


class GuessitEpisodeDetector(EpisodeDetector):
    """Runs guessit in a worker thread; rebulk parsing is CPU bound."""

    async def detect_episode(self, filename: str) -> EpisodeDetection | None:
        return await asyncio.to_thread(detect_episode_sync, filename)


def detect_episode_sync(filename: str) -> EpisodeDetection | None:
    """Parse ``filename`` with guessit.

    Returns:
        An EpisodeDetection, or None when guessit finds neither season nor episode
    """
    try:
        info = guessit(filename, {"type": "episode"})
    except GuessitException as e:
        logger.warning(f"guessit failed on {filename}: {e}")
        return None

    season = _first_int(info.get("season"))
    episode = _first_int(info.get("episode"))
    if season is None and episode is None:
        return None

    detection = EpisodeDetection(
        season=season,
        episode=episode,
        episode_title=info.get("episode_title"),
        title=info.get("title"),
    )
    logger.debug(f"guessit {filename}: S{season} E{episode}")
    return detection


def _first_int(value) -> int | None:
    # multi-episode files report a list, e.g. [1, 2]
    if isinstance(value, list):
        value = value[0] if value else None
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None
