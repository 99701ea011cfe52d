"""Cache value encoding.

Values are stored as JSON text. Compressed values are zlib-deflated JSON,
base64 encoded behind a ``ZLIB:`` marker, so every stored string says how to
read it back and unmarked (older, uncompressed) entries still decode.
"""

import base64
import binascii
import json
import zlib
from typing import Any

from loguru import logger

from subdrop.core.errors import CacheError

COMPRESSION_MARKER = "ZLIB:"


class CacheCodec:
    """Encodes cache values to strings and back."""

    def __init__(self, compress: bool = True):
        self.compress = compress

    def encode(self, value: Any) -> str:
        """Serialize a JSON-compatible value.

        Raises:
            CacheError: If the value is not JSON serializable
        """
        try:
            text = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            raise CacheError(f"Value is not JSON serializable: {e}") from e

        if not self.compress:
            return text

        raw = text.encode("utf-8")
        packed = COMPRESSION_MARKER + base64.b64encode(zlib.compress(raw)).decode("ascii")
        logger.trace(f"Cache compression: {len(raw)} -> {len(packed)} chars")
        # tiny payloads grow when deflated; keep them readable
        return packed if len(packed) < len(text) else text

    def decode(self, stored: str) -> Any:
        """Deserialize a stored string, compressed or not.

        Raises:
            CacheError: If the stored text is corrupt
        """
        try:
            if not is_compressed(stored):
                return json.loads(stored)
            packed = base64.b64decode(stored[len(COMPRESSION_MARKER) :], validate=True)
            return json.loads(zlib.decompress(packed).decode("utf-8"))
        except (ValueError, binascii.Error, zlib.error) as e:
            raise CacheError(f"Corrupt cache value: {e}") from e


def is_compressed(stored: str) -> bool:
    return stored.startswith(COMPRESSION_MARKER)
