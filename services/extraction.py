"""
Script extraction from feed posts.

The script is the post text with the trigger tags and the bot's own mention
removed and HTML entities unescaped. When nothing is left (e.g. "#run" sent
as a quote of someone else's one-liner), the quoted or replied-to post is used
instead. exclude_ids carries every post already visited so a chain of quotes
can never loop.
"""

from __future__ import annotations

import html
import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from services.eligibility import tag_pattern
from services.feed_models import BotIdentity, FeedEvent

if TYPE_CHECKING:
    from services.twitter_client import TwitterClient

logger = logging.getLogger(__name__)

# Leading "@user @user2 " block that the platform prepends to replies
_LEADING_MENTIONS = re.compile(r"^(?:\s*@\w+)+\s*")


class ExtractionFailed(Exception):
    """Raised when no runnable script can be extracted from an event."""


@dataclass(frozen=True)
class ExtractedScript:
    """Script text plus the media it should be able to read."""

    script: str
    media_urls: tuple[str, ...]
    source_event_id: str


def strip_script_text(text: str, bot: BotIdentity, trigger_tags: Iterable[str]) -> str:
    """Remove trigger tags and mentions of the bot, unescape entities."""
    body = _LEADING_MENTIONS.sub("", text)
    body = re.sub(rf"@{re.escape(bot.handle)}\b", "", body, flags=re.IGNORECASE)
    for tag in trigger_tags:
        body = tag_pattern(tag).sub("", body)
    return html.unescape(body).strip()


async def extract_script(
    event: FeedEvent,
    bot: BotIdentity,
    trigger_tags: Sequence[str],
    exclude_ids: Sequence[str],
    client: TwitterClient | None = None,
) -> ExtractedScript:
    """
    Extract the script to run for an event.

    Args:
        event: The triggering post
        bot: The bot's own identity (its mention is stripped)
        trigger_tags: Configured trigger tags (stripped from the text)
        exclude_ids: Post ids already visited in this extraction
        client: Platform client used to fetch a referenced post

    Returns:
        ExtractedScript with the script text and media URLs

    Raises:
        ExtractionFailed: if neither the event nor a referenced post yields
            a non-empty script
    """
    visited = [*exclude_ids, event.event_id]
    script = strip_script_text(event.text, bot, trigger_tags)
    if script:
        return ExtractedScript(
            script=script,
            media_urls=event.media_urls,
            source_event_id=event.event_id,
        )

    if client is None:
        raise ExtractionFailed(f"Event {event.event_id} has no script text")

    for ref_id in event.referenced_ids:
        if ref_id in visited:
            logger.debug("Skipping already visited post %s", ref_id)
            continue

        referenced = await client.get_event(ref_id)
        if referenced is None:
            logger.info("Referenced post %s could not be fetched", ref_id)
            continue

        try:
            extracted = await extract_script(
                referenced,
                bot,
                trigger_tags,
                visited,
                client,
            )
        except ExtractionFailed:
            visited.append(ref_id)
            continue

        # Media on the triggering post is still made available
        media = tuple(dict.fromkeys([*event.media_urls, *extracted.media_urls]))
        return ExtractedScript(
            script=extracted.script,
            media_urls=media,
            source_event_id=extracted.source_event_id,
        )

    raise ExtractionFailed(f"Event {event.event_id} has no script text")


__all__ = [
    "ExtractedScript",
    "ExtractionFailed",
    "extract_script",
    "strip_script_text",
]
