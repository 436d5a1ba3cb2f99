"""
Eligibility checks for incoming feed events.

Policy:
- Reshares are ignored.
- The text must carry at least one configured trigger tag.
- The bot never triggers on its own posts.
- Only followers of the bot account may trigger execution.

The first three checks are pure (admit). The follower check needs the
platform client and runs only when the pure checks pass.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from typing import TYPE_CHECKING

from services.feed_models import BotIdentity, FeedEvent

if TYPE_CHECKING:
    from services.twitter_client import TwitterClient

logger = logging.getLogger(__name__)


def tag_pattern(tag: str) -> re.Pattern[str]:
    """Whole-tag, case-insensitive pattern for a trigger tag."""
    if not tag.startswith("#"):
        tag = f"#{tag}"
    return re.compile(rf"(?<![\w#]){re.escape(tag)}(?!\w)", re.IGNORECASE)


def has_trigger_tag(text: str, trigger_tags: Iterable[str]) -> bool:
    """Return True when text contains any of the trigger tags."""
    if not text:
        return False
    return any(tag_pattern(tag).search(text) for tag in trigger_tags)


def admit(
    event: FeedEvent,
    bot: BotIdentity,
    trigger_tags: Iterable[str],
) -> bool:
    """Pure admission predicate (everything except the follower check)."""
    if event.is_reshare:
        return False
    if not has_trigger_tag(event.text, trigger_tags):
        return False
    if event.author_id == bot.user_id:
        return False
    return True


async def is_known_follower(event: FeedEvent, client: TwitterClient) -> bool:
    """Delegate the follower lookup; lookup failures count as not following."""
    try:
        return await client.is_follower(event.author_id)
    except Exception as exc:
        logger.error(
            "Follower lookup failed for @%s (%s): %s",
            event.author_handle,
            event.author_id,
            exc,
        )
        return False


async def is_eligible(
    event: FeedEvent,
    bot: BotIdentity,
    trigger_tags: Iterable[str],
    client: TwitterClient,
) -> bool:
    """Full eligibility check for one event. Never cached across events."""
    if not admit(event, bot, trigger_tags):
        return False
    if not await is_known_follower(event, client):
        logger.debug(
            "Dropping event %s from non-follower @%s",
            event.event_id,
            event.author_handle,
        )
        return False
    return True


__all__ = [
    "admit",
    "has_trigger_tag",
    "is_eligible",
    "is_known_follower",
    "tag_pattern",
]
