"""Access to the raw bytes of dropped files."""

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import chardet
from loguru import logger

from subdrop.core.naming import classify_media_kind, looks_like_subtitle, needs_content_sniffing, split_path
from subdrop.models.media import FileEntry, MediaKind

# Bytes read from a .txt file when sniffing for subtitle structure
SNIFF_BYTES = 8192


class ContentReader(ABC):
    """Reads byte ranges of a dropped file.

    Implementations raise OSError when the bytes cannot be read.
    """

    @abstractmethod
    async def read_bytes(self, handle: Any, offset: int = 0, length: int | None = None) -> bytes:
        """Read ``length`` bytes at ``offset`` (to the end when length is None)."""
        pass


class LocalContentReader(ContentReader):
    """ContentReader for files on the local disk; ``handle`` is a path."""

    async def read_bytes(self, handle: Any, offset: int = 0, length: int | None = None) -> bytes:
        return await asyncio.to_thread(self._read, Path(handle), offset, length)

    @staticmethod
    def _read(path: Path, offset: int, length: int | None) -> bytes:
        with open(path, "rb") as f:
            f.seek(offset)
            return f.read() if length is None else f.read(length)


async def confirm_subtitle(entry: FileEntry, reader: ContentReader) -> bool:
    """Sniff an ambiguous subtitle (``.txt``) for real subtitle content.

    Other subtitle extensions are trusted without reading.
    """
    if entry.kind != MediaKind.SUBTITLE:
        return False
    if not needs_content_sniffing(entry.name):
        return True

    head = await reader.read_bytes(entry.content_handle, 0, SNIFF_BYTES)
    is_subtitle = looks_like_subtitle(decode_text(head))
    logger.debug(f"Sniffed {entry.full_path}: {'subtitle' if is_subtitle else 'plain text'}")
    return is_subtitle


def make_file_entry(full_path: str, size_bytes: int, handle: Any = None) -> FileEntry | None:
    """FileEntry for a dropped path, or None when the extension is not media.

    ``handle`` defaults to ``full_path`` for LocalContentReader.
    """
    _, name = split_path(full_path)
    kind = classify_media_kind(name)
    if kind is None:
        return None
    return FileEntry(
        full_path=full_path,
        name=name,
        size_bytes=size_bytes,
        kind=kind,
        content_handle=full_path if handle is None else handle,
    )


def decode_text(raw: bytes) -> str:
    """Decode subtitle bytes using the encoding chardet detects (utf-8 fallback)."""
    result = chardet.detect(raw)
    encoding = result["encoding"] or "utf-8"
    logger.trace(f"Detected encoding {encoding} ({result['confidence'] or 0:.0%})")
    try:
        return raw.decode(encoding, errors="replace")
    except LookupError:
        return raw.decode("utf-8", errors="replace")
