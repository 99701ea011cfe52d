"""Identification results and per-file lifecycle states."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class IdentityKind(str, Enum):
    """What a resolved identity refers to."""

    MOVIE = "movie"
    SERIES = "series"
    EPISODE = "episode"


class IdentificationState(str, Enum):
    """States in the per-file identification lifecycle."""

    IDLE = "idle"
    GUESSING = "guessing"
    RESOLVED = "resolved"
    NO_MATCH = "no_match"
    ERROR = "error"


TERMINAL_STATES = frozenset(
    {IdentificationState.RESOLVED, IdentificationState.NO_MATCH, IdentificationState.ERROR}
)


class MovieIdentity(BaseModel):
    """A movie, series or episode resolved for a file.

    For episodes ``imdb_id`` is the episode id when one was found, otherwise
    the series id; ``series_imdb_id`` always points back to the series.
    """

    imdb_id: str | None = None
    title: str
    year: int | None = None
    kind: IdentityKind = IdentityKind.MOVIE
    reason: str = ""
    season: int | None = None
    episode: int | None = None
    episode_title: str | None = None
    series_imdb_id: str | None = None
    formatted_title: str | None = None

    @property
    def display_title(self) -> str:
        return self.formatted_title or self.title

    @property
    def is_series(self) -> bool:
        return self.kind == IdentityKind.SERIES

    @property
    def s_e_format(self) -> str | None:
        if self.season is None or self.episode is None:
            return None
        return f"S{self.season:02d}E{self.episode:02d}"


# Guess outcome sum type: exactly one of these is stored per file


@dataclass(frozen=True)
class Pending:
    """A guess is in flight."""

    state = IdentificationState.GUESSING


@dataclass(frozen=True)
class Resolved:
    """The file resolved to an identity."""

    identity: MovieIdentity
    state = IdentificationState.RESOLVED


@dataclass(frozen=True)
class NoMatch:
    """Every strategy ran and none produced a usable title."""

    query: str = ""
    state = IdentificationState.NO_MATCH


@dataclass(frozen=True)
class Failed:
    """Identification errored out; retried only after an explicit clear."""

    reason: str
    state = IdentificationState.ERROR


GuessOutcome = Pending | Resolved | NoMatch | Failed


@dataclass
class IdentificationRecord:
    """Identification bookkeeping for one dropped file."""

    path: str
    name: str
    state: IdentificationState = IdentificationState.IDLE
    outcome: GuessOutcome | None = None
    token: int = 0  # claim token; results carrying an older token are discarded
    error_message: str | None = None
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def identity(self) -> MovieIdentity | None:
        return self.outcome.identity if isinstance(self.outcome, Resolved) else None
