"""Content hashing for dropped files.

Videos get the OpenSubtitles 64-bit movie hash: the file size plus every
little-endian uint64 word of the first and last 64 KiB, modulo 2**64,
rendered as 16 lowercase hex digits. Subtitles get an MD5 over the exact
bytes on disk.
"""

import asyncio
import hashlib
import re
import struct

from loguru import logger

from subdrop.core.errors import HashFailedError, InsufficientSizeError
from subdrop.core.files import ContentReader
from subdrop.core.retry import retry_async
from subdrop.models.media import FileEntry

CHUNK_SIZE = 65536
MIN_VIDEO_SIZE = 2 * CHUNK_SIZE
_UINT64_MASK = 0xFFFFFFFFFFFFFFFF
_WORDS_PER_CHUNK = CHUNK_SIZE // 8

_MOVIE_HASH_RE = re.compile(r"^[0-9a-f]{16}$")


def _sum_words(chunk: bytes) -> int:
    return sum(struct.unpack(f"<{_WORDS_PER_CHUNK}Q", chunk))


def compute_video_hash(head: bytes, tail: bytes, total_size: int) -> str:
    """Movie hash from the first and last 64 KiB of a file.

    Args:
        head: First CHUNK_SIZE bytes of the file
        tail: Last CHUNK_SIZE bytes of the file
        total_size: File length in bytes

    Returns:
        16 lowercase hex digits

    Raises:
        InsufficientSizeError: If the file is smaller than two chunks
    """
    if total_size < MIN_VIDEO_SIZE:
        raise InsufficientSizeError(total_size, MIN_VIDEO_SIZE)
    if len(head) != CHUNK_SIZE or len(tail) != CHUNK_SIZE:
        raise ValueError(f"Expected two {CHUNK_SIZE} byte chunks, got {len(head)} and {len(tail)}")

    total = (total_size + _sum_words(head) + _sum_words(tail)) & _UINT64_MASK
    return f"{total:016x}"


def compute_subtitle_hash(data: bytes) -> str:
    """MD5 digest of the raw subtitle bytes as 32 lowercase hex digits."""
    return hashlib.md5(data).hexdigest()


def validate_movie_hash(value: str) -> bool:
    return bool(_MOVIE_HASH_RE.match(value or ""))


class ContentHasher:
    """Hashes dropped files through a ContentReader with timeout and retry."""

    def __init__(
        self,
        reader: ContentReader,
        timeout: float = 30.0,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        sleep=asyncio.sleep,
    ):
        self._reader = reader
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._sleep = sleep

    async def hash_video(self, entry: FileEntry) -> str:
        """Compute the movie hash of a video file.

        Raises:
            InsufficientSizeError: File too small, not retried
            HashFailedError: Every attempt failed or timed out
        """
        if entry.size_bytes < MIN_VIDEO_SIZE:
            raise InsufficientSizeError(entry.size_bytes, MIN_VIDEO_SIZE)

        async def attempt() -> str:
            head = await self._reader.read_bytes(entry.content_handle, 0, CHUNK_SIZE)
            tail = await self._reader.read_bytes(
                entry.content_handle, entry.size_bytes - CHUNK_SIZE, CHUNK_SIZE
            )
            value = compute_video_hash(head, tail, entry.size_bytes)
            if not validate_movie_hash(value):
                raise ValueError(f"Invalid movie hash format: {value}")
            return value

        movie_hash = await self._run(attempt, f"movie hash of {entry.name}")
        logger.debug(f"Movie hash {movie_hash} for {entry.full_path}")
        return movie_hash

    async def hash_subtitle(self, entry: FileEntry) -> str:
        """Compute the MD5 digest of a subtitle file.

        Raises:
            HashFailedError: Every attempt failed or timed out
        """

        async def attempt() -> str:
            data = await self._reader.read_bytes(entry.content_handle)
            return compute_subtitle_hash(data)

        return await self._run(attempt, f"subtitle hash of {entry.name}")

    async def _run(self, attempt, description: str) -> str:
        async def bounded():
            try:
                return await asyncio.wait_for(attempt(), timeout=self._timeout)
            except asyncio.TimeoutError as e:
                raise TimeoutError(f"timed out after {self._timeout}s") from e

        try:
            return await retry_async(
                bounded,
                max_attempts=self._max_attempts,
                base_delay=self._base_delay,
                retry_on=(OSError, ValueError),
                sleep=self._sleep,
                description=description,
            )
        except (OSError, ValueError) as e:
            raise HashFailedError(
                f"Failed to compute {description} after {self._max_attempts} attempts: {e}",
                last_error=e,
            ) from e
