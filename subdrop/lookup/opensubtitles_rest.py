"""OpenSubtitles REST ``/features`` lookups."""

import asyncio
import time

import requests
from loguru import logger

from subdrop.core.errors import NetworkError, ProtocolError, error_context
from subdrop.lookup.base import FeatureProvider
from subdrop.lookup.models import EpisodeFeature, FeatureSet, SeasonInfo


class OpenSubtitlesRestClient(FeatureProvider):
    """Feature provider backed by the OpenSubtitles REST API."""

    name = "opensubtitles-rest"

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        user_agent: str = "subdrop v0.1.0",
        request_delay: float = 0.1,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.request_delay = request_delay
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update(
            {
                "User-Agent": user_agent,
                "Accept": "application/json",
                "Api-Key": api_key,
            }
        )
        self._last_request_time = 0.0

    def _rate_limit(self):
        """Enforce the minimum delay between requests."""
        elapsed = time.time() - self._last_request_time
        if elapsed < self.request_delay:
            time.sleep(self.request_delay - elapsed)
        self._last_request_time = time.time()

    async def get_features_by_id(self, imdb_id: str) -> FeatureSet | None:
        return await asyncio.to_thread(self.get_features_by_id_sync, imdb_id)

    def get_features_by_id_sync(self, imdb_id: str) -> FeatureSet | None:
        """Blocking ``GET /features?imdb_id=...``.

        Args:
            imdb_id: IMDb id, with or without the ``tt`` prefix

        Returns:
            The first feature of the response, or None when there is none

        Raises:
            NetworkError: Transport failure or non-2xx HTTP status
            ProtocolError: Body is not the expected JSON document
        """
        numeric_id = imdb_id[2:] if imdb_id.lower().startswith("tt") else imdb_id
        url = f"{self.base_url}/features"

        self._rate_limit()
        logger.debug(f"GET {url} imdb_id={numeric_id}")
        try:
            response = self.session.get(url, params={"imdb_id": numeric_id}, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise NetworkError(f"Features API error for imdb_id {imdb_id}: {e}") from e

        try:
            document = response.json()
        except ValueError as e:
            raise ProtocolError(f"Features API returned invalid JSON: {e}") from e

        return parse_features_response(document, imdb_id)


def parse_features_response(document: dict, imdb_id: str) -> FeatureSet | None:
    """Map the first ``data[].attributes`` entry of a features response.

    Raises:
        ProtocolError: The document does not have the expected shape
    """
    if not isinstance(document, dict):
        raise ProtocolError("Features API returned a non-object document")

    items = document.get("data") or []
    if not items:
        logger.debug(f"No features for imdb_id {imdb_id}")
        return None

    with error_context(
        error_types=(AttributeError, KeyError, IndexError, TypeError, ValueError),
        default_message=f"Unexpected features document for imdb_id {imdb_id}",
        log_level="warning",
        wrap_as=ProtocolError,
    ):
        attributes = items[0].get("attributes") or {}
        seasons = [
            SeasonInfo(
                season_number=season["season_number"],
                episodes=[
                    EpisodeFeature(
                        episode_number=episode["episode_number"],
                        title=episode.get("title"),
                        imdb_id=_as_id(episode.get("feature_imdb_id")),
                    )
                    for episode in season.get("episodes") or []
                    if episode.get("episode_number") is not None
                ],
            )
            for season in attributes.get("seasons") or []
            if season.get("season_number") is not None
        ]

        return FeatureSet(
            imdb_id=_as_id(attributes.get("imdb_id")) or imdb_id,
            title=attributes.get("title"),
            year=_as_int(attributes.get("year")),
            feature_type=attributes.get("feature_type"),
            seasons=seasons,
        )


def _as_id(value) -> str | None:
    return str(value) if value not in (None, "") else None


def _as_int(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
