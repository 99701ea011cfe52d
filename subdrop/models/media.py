"""Dropped media files and pairing results."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class MediaKind(str, Enum):
    """Kind of a dropped file."""

    VIDEO = "video"
    SUBTITLE = "subtitle"


class FileEntry(BaseModel):
    """A single dropped file.

    ``full_path`` uses ``/`` separators and is unique within a drop session.
    ``content_handle`` is whatever the ContentReader needs to read the bytes
    (a local path for LocalContentReader).
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    full_path: str
    name: str
    size_bytes: int = 0
    kind: MediaKind
    content_handle: Any = None

    @property
    def directory(self) -> str:
        """Path of the containing directory ("" for top-level files)."""
        return self.full_path.rpartition("/")[0]

    @property
    def is_video(self) -> bool:
        return self.kind == MediaKind.VIDEO

    @property
    def is_subtitle(self) -> bool:
        return self.kind == MediaKind.SUBTITLE


class PairedGroup(BaseModel):
    """One video (or none) with the subtitles that belong to it."""

    video: FileEntry | None = None
    subtitles: list[FileEntry] = Field(default_factory=list)
    match_types: dict[str, str] = Field(default_factory=dict)  # subtitle path -> reason


class PairingResult(BaseModel):
    """Output of the pairing engine."""

    groups: list[PairedGroup] = Field(default_factory=list)
    orphans: list[FileEntry] = Field(default_factory=list)

    @property
    def videos(self) -> list[FileEntry]:
        return [g.video for g in self.groups if g.video is not None]
