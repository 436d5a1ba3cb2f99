"""Feed data models shared by the live and batch pipelines."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class BotIdentity:
    """The bot's own account, resolved once at startup."""

    user_id: str
    handle: str


@dataclass(frozen=True)
class FeedEvent:
    """A single post received from the stream."""

    event_id: str
    author_id: str
    author_handle: str
    text: str
    created_at: datetime
    media_urls: tuple[str, ...] = ()
    is_reshare: bool = False
    # Ids of posts this one quotes or replies to
    referenced_ids: tuple[str, ...] = field(default_factory=tuple)

    @property
    def timestamp(self) -> int:
        """Creation time as a unix timestamp."""
        return int(self.created_at.timestamp())


__all__ = ["BotIdentity", "FeedEvent"]
