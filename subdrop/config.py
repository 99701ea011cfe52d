"""Pipeline configuration from environment variables.

Every field has a default, so no .env file is required. Variables use the
``SUBDROP_`` prefix, e.g. ``SUBDROP_DEBUG=true`` or
``SUBDROP_FEATURES_RATE_LIMIT=5``.
"""

import sys
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# 72 hours, the lifetime of every remote lookup category
DEFAULT_CACHE_TTL = 72 * 60 * 60


def _default_data_dir() -> Path:
    """Return ~/.subdrop for frozen builds and ./.subdrop during development."""
    if getattr(sys, "frozen", False):
        return Path.home() / ".subdrop"
    return Path(".subdrop")


class Settings(BaseSettings):
    """Pipeline settings. Loaded from environment variables; optionally from .env."""

    model_config = SettingsConfigDict(
        env_prefix="SUBDROP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    debug: bool = False
    data_dir: Path = _default_data_dir()

    # Logging
    log_file: Path | None = None  # None -> data_dir/logs/subdrop.log
    log_rotation: str = "10 MB"
    log_retention: str = "1 week"

    # Cache
    cache_database_url: str | None = None  # None -> sqlite file under data_dir
    cache_compression: bool = True
    movie_guess_ttl: int = DEFAULT_CACHE_TTL
    features_ttl: int = DEFAULT_CACHE_TTL
    episode_ttl: int = DEFAULT_CACHE_TTL

    # Hashing
    hash_timeout: float = 30.0
    hash_max_attempts: int = 3

    # Retry / rate limiting (seconds)
    retry_base_delay: float = 1.0
    identification_max_attempts: int = 3
    movie_guess_rate_limit: float = 0.5
    features_rate_limit: float = 2.0
    network_request_delay: float = 0.1
    request_timeout: float = 30.0

    # OpenSubtitles
    xmlrpc_url: str = "https://api.opensubtitles.org/xml-rpc"
    rest_url: str = "https://api.opensubtitles.com/api/v1"
    api_key: str = ""
    xmlrpc_token: str = ""
    user_agent: str = "subdrop v0.1.0"

    def resolved_cache_url(self) -> str:
        """Return the SQLite URL of the persistent cache, creating data_dir on demand."""
        if self.cache_database_url:
            return self.cache_database_url
        self.data_dir.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{self.data_dir / 'cache.db'}"


settings = Settings()
