"""
Application settings helpers.

Process-level settings come from the environment (optionally seeded from a
.env file by app.py). The credential and bot configuration files named on the
command line are handled by shellgei_bot.bot_config.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

logger = logging.getLogger(__name__)

OVERFLOW_POLICIES = ("block", "drop_oldest", "reject")


def _parse_int(env_name: str, default: int, *, minimum: int = 1) -> int:
    """Read a positive integer from the environment, falling back to default."""
    raw = os.getenv(env_name, "")
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid %s=%r, using %d", env_name, raw, default)
        return default
    if value < minimum:
        logger.warning("%s must be >= %d, using %d", env_name, minimum, default)
        return default
    return value


def _parse_overflow(env_name: str, default: str) -> str:
    raw = os.getenv(env_name, default).strip().lower()
    if raw not in OVERFLOW_POLICIES:
        logger.warning("Invalid %s=%r, using %s", env_name, raw, default)
        return default
    return raw


@dataclass(frozen=True)
class Settings:
    """Centralized configuration values."""

    log_file: str
    log_level: str
    audit_db_path: str
    maintainer_handle: str | None
    dispatch_workers: int
    dispatch_queue_size: int
    dispatch_overflow: str
    twitter_api_base: str
    docker_binary: str


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings derived from the environment."""
    maintainer = os.getenv("MAINTAINER_HANDLE", "").strip().lstrip("@")
    return Settings(
        log_file=os.getenv("LOG_FILE", "shellgei_bot.log"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        audit_db_path=os.getenv("AUDIT_DB_PATH", "./database.db"),
        maintainer_handle=maintainer or None,
        dispatch_workers=_parse_int("DISPATCH_WORKERS", 8),
        dispatch_queue_size=_parse_int("DISPATCH_QUEUE_SIZE", 64),
        dispatch_overflow=_parse_overflow("DISPATCH_OVERFLOW", "drop_oldest"),
        twitter_api_base=os.getenv("TWITTER_API_BASE", "https://api.twitter.com"),
        docker_binary=os.getenv("DOCKER_BINARY", "docker"),
    )
