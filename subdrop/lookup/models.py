"""Data models returned by the remote lookup collaborators."""

from pydantic import BaseModel, Field


class MovieGuessResult(BaseModel):
    """Best guess for a filename or free-text query."""

    imdb_id: str | None = None
    title: str | None = None
    year: int | None = None
    kind: str = "movie"  # "movie", "tv series", "episode" as reported upstream
    reason: str | None = None

    @property
    def has_usable_title(self) -> bool:
        title = (self.title or "").strip()
        return bool(title) and title.lower() != "undefined"

    @property
    def is_series(self) -> bool:
        return self.kind.lower() in ("tv series", "tvshow", "series", "tv")


class EpisodeFeature(BaseModel):
    """One episode inside a series feature."""

    episode_number: int
    title: str | None = None
    imdb_id: str | None = None


class SeasonInfo(BaseModel):
    """One season inside a series feature."""

    season_number: int
    episodes: list[EpisodeFeature] = Field(default_factory=list)


class FeatureSet(BaseModel):
    """Feature metadata for an IMDb id (movie or series)."""

    imdb_id: str
    title: str | None = None
    year: int | None = None
    feature_type: str | None = None  # "Movie", "Tvshow", "Episode"
    seasons: list[SeasonInfo] = Field(default_factory=list)

    @property
    def is_tv_show(self) -> bool:
        return (self.feature_type or "").lower() == "tvshow"

    def find_episode(self, season: int, episode: int) -> EpisodeFeature | None:
        for season_info in self.seasons:
            if season_info.season_number != season:
                continue
            for candidate in season_info.episodes:
                if candidate.episode_number == episode:
                    return candidate
        return None


class EpisodeDetection(BaseModel):
    """Season/episode numbers parsed out of a filename."""

    season: int | None = None
    episode: int | None = None
    episode_title: str | None = None
    title: str | None = None

    @property
    def is_complete(self) -> bool:
        return self.season is not None and self.episode is not None
