"""
Credential and bot configuration files.

Two JSON files are named on the command line:

- the Twitter credentials file (app bearer token for the filtered stream,
  user access token for posting and lookups);
- the bot configuration file (trigger tags, redaction policy, sandbox
  limits), which is re-read before every live dispatch decision.

Each reload produces a new frozen TriggerConfig. ConfigStore swaps the
current snapshot with a single assignment, so a task keeps whatever snapshot
it was handed even if the file changes underneath it.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when a configuration file is missing or invalid."""


class TwitterKey(BaseModel):
    """Credentials for the platform API."""

    model_config = ConfigDict(frozen=True)

    bearer_token: str = Field(min_length=1, description="App-only token for the filtered stream")
    access_token: str = Field(min_length=1, description="OAuth 2.0 user token for the bot account")


class TriggerConfig(BaseModel):
    """Immutable snapshot of the bot configuration file."""

    model_config = ConfigDict(frozen=True)

    tags: tuple[str, ...] = Field(min_length=1)
    untrue: bool = False
    docker_image: str = "theoldmoon0602/shellgeibot"
    timeout_seconds: float = Field(default=20.0, gt=0)
    memory: str = "100M"
    max_images: int = Field(default=4, ge=0)

    @field_validator("tags")
    @classmethod
    def _normalize_tags(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        tags: list[str] = []
        for raw in value:
            tag = raw.strip()
            if not tag:
                continue
            if not tag.startswith("#"):
                tag = f"#{tag}"
            if tag not in tags:
                tags.append(tag)
        if not tags:
            raise ValueError("at least one non-empty tag is required")
        return tuple(tags)


def _read_json(path: str | Path) -> dict:
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except OSError as exc:
        raise ConfigError(f"Cannot read {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a JSON object")
    return data


def parse_twitter_key(path: str | Path) -> TwitterKey:
    """Load and validate the credentials file."""
    try:
        return TwitterKey.model_validate(_read_json(path))
    except ValidationError as exc:
        raise ConfigError(f"Invalid credentials in {path}: {exc}") from exc


def parse_bot_config(path: str | Path) -> TriggerConfig:
    """Load and validate the bot configuration file."""
    try:
        return TriggerConfig.model_validate(_read_json(path))
    except ValidationError as exc:
        raise ConfigError(f"Invalid bot config in {path}: {exc}") from exc


class ConfigStore:
    """Holds the current TriggerConfig snapshot for a config file path."""

    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._snapshot: TriggerConfig | None = None
        self._reload_count = 0

    @property
    def path(self) -> Path:
        return self._path

    @property
    def snapshot(self) -> TriggerConfig | None:
        """The most recently loaded snapshot, or None before the first load."""
        return self._snapshot

    @property
    def reload_count(self) -> int:
        return self._reload_count

    async def reload(self) -> TriggerConfig:
        """
        Re-read the file and swap in a fresh snapshot.

        Raises:
            ConfigError: if the file cannot be read or validated. The previous
                snapshot stays in place.
        """
        config = await asyncio.to_thread(parse_bot_config, self._path)
        self._snapshot = config
        self._reload_count += 1
        logger.debug("Reloaded bot config from %s (tags=%s)", self._path, config.tags)
        return config


__all__ = [
    "ConfigError",
    "ConfigStore",
    "TriggerConfig",
    "TwitterKey",
    "parse_bot_config",
    "parse_twitter_key",
]
