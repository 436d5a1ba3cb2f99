"""
Twitter API v2 client for the bot.

Uses httpx against the v2 endpoints:
- the filtered stream (app bearer token) for incoming posts;
- user-context calls (OAuth 2.0 user token) for posting, media upload,
  follower checks and post lookups.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import time
from collections.abc import AsyncIterator, Sequence
from contextlib import aclosing
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx

from services.feed_models import BotIdentity, FeedEvent
from services.stats import stats
from shellgei_bot.bot_config import TwitterKey

logger = logging.getLogger(__name__)

TWITTER_API_BASE = "https://api.twitter.com"
REQUEST_TIMEOUT = 30.0

# The stream sends a keep-alive newline every 20s; give it some slack
STREAM_READ_TIMEOUT = 90.0
STREAM_RECONNECT_SECONDS = 5.0
STREAM_RATE_LIMIT_BACKOFF_SECONDS = 60.0

STREAM_RULE_TAG = "shellgei-trigger"

TWEET_QUERY_PARAMS = {
    "tweet.fields": "created_at,author_id,referenced_tweets,attachments,note_tweet",
    "expansions": "author_id,attachments.media_keys",
    "user.fields": "username",
    "media.fields": "url,type,preview_image_url",
}


class TwitterAPIError(Exception):
    """Raised when the API returns an unusable response."""


@dataclass
class PostResult:
    """Result of a post operation."""

    success: bool
    post_id: str | None = None
    error: str | None = None


def _parse_created_at(value: str | None) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Unparseable created_at %r", value)
        return datetime.now(timezone.utc)


def parse_tweet_payload(payload: dict[str, Any]) -> FeedEvent | None:
    """
    Convert a v2 tweet payload ({"data": ..., "includes": ...}) to a FeedEvent.

    Returns None when the payload carries no tweet.
    """
    if not isinstance(payload, dict):
        return None
    data = payload.get("data")
    if not isinstance(data, dict) or "id" not in data:
        return None

    includes = payload.get("includes") or {}
    users = {u.get("id"): u for u in includes.get("users", [])}
    media = {m.get("media_key"): m for m in includes.get("media", [])}

    author_id = str(data.get("author_id", ""))
    author = users.get(author_id, {})

    text = data.get("text", "")
    note = data.get("note_tweet")
    if isinstance(note, dict) and note.get("text"):
        text = note["text"]

    referenced = data.get("referenced_tweets") or []
    is_reshare = any(r.get("type") == "retweeted" for r in referenced)
    referenced_ids = tuple(
        str(r["id"])
        for r in referenced
        if r.get("type") in ("quoted", "replied_to") and r.get("id")
    )

    media_urls: list[str] = []
    for key in (data.get("attachments") or {}).get("media_keys", []):
        item = media.get(key)
        if not item:
            continue
        url = item.get("url") or item.get("preview_image_url")
        if url:
            media_urls.append(url)

    return FeedEvent(
        event_id=str(data["id"]),
        author_id=author_id,
        author_handle=author.get("username", ""),
        text=text,
        created_at=_parse_created_at(data.get("created_at")),
        media_urls=tuple(media_urls),
        is_reshare=is_reshare,
        referenced_ids=referenced_ids,
    )


def build_stream_rule(tags: Sequence[str]) -> str:
    """One rule matching any trigger tag, excluding retweets."""
    return f"({' OR '.join(tags)}) -is:retweet"


class TwitterClient:
    """Platform client used by the live pipeline."""

    def __init__(
        self,
        key: TwitterKey,
        *,
        api_base: str = TWITTER_API_BASE,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._key = key
        self._api_base = api_base.rstrip("/")
        self._transport = transport
        self._self_identity: BotIdentity | None = None

    def _url(self, path: str) -> str:
        return f"{self._api_base}{path}"

    def _user_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._key.access_token}"}

    def _app_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._key.bearer_token}"}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        app_auth: bool = False,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """
        Perform one API call and return the decoded JSON body.

        Raises:
            TwitterAPIError: on transport errors, non-2xx status or a body
                that is not a JSON object
        """
        twitter_stats = stats.get_service_stats("twitter")
        headers = self._app_headers() if app_auth else self._user_headers()
        start = time.time()

        try:
            async with httpx.AsyncClient(
                timeout=REQUEST_TIMEOUT, transport=self._transport
            ) as client:
                response = await client.request(
                    method,
                    self._url(path),
                    headers=headers,
                    **kwargs,
                )
        except httpx.HTTPError as exc:
            elapsed_ms = (time.time() - start) * 1000
            error = f"{method} {path} failed: {exc}"
            twitter_stats.record_request(elapsed_ms, success=False, error=error)
            stats.record_error("twitter", error, {"path": path})
            raise TwitterAPIError(error) from exc

        elapsed_ms = (time.time() - start) * 1000
        if response.status_code >= 400:
            error = f"{method} {path} HTTP {response.status_code}: {response.text}"
            twitter_stats.record_request(elapsed_ms, success=False, error=error)
            stats.record_error("twitter", error, {"path": path})
            raise TwitterAPIError(error)

        try:
            body = response.json()
        except ValueError as exc:
            twitter_stats.record_request(elapsed_ms, success=False, error="invalid JSON")
            raise TwitterAPIError(f"{method} {path} returned invalid JSON") from exc

        if not isinstance(body, dict):
            twitter_stats.record_request(elapsed_ms, success=False, error="unexpected body")
            raise TwitterAPIError(f"{method} {path} returned {type(body).__name__}")

        twitter_stats.record_request(elapsed_ms, success=True)
        return body

    async def get_self(self) -> BotIdentity:
        """
        Resolve the bot's own account.

        Raises:
            TwitterAPIError: if the lookup fails
        """
        body = await self._request("GET", "/2/users/me")
        data = body.get("data") or {}
        if not data.get("id") or not data.get("username"):
            raise TwitterAPIError(f"Unexpected /2/users/me response: {body}")

        self._self_identity = BotIdentity(user_id=str(data["id"]), handle=data["username"])
        logger.info("Running as @%s (%s)", self._self_identity.handle, self._self_identity.user_id)
        return self._self_identity

    async def is_follower(self, user_id: str) -> bool:
        """Return True if user_id follows the bot account."""
        body = await self._request(
            "GET",
            f"/2/users/{user_id}",
            params={"user.fields": "connection_status"},
        )
        status = (body.get("data") or {}).get("connection_status") or []
        return "followed_by" in status

    async def get_event(self, event_id: str) -> FeedEvent | None:
        """Fetch a single post, or None if it cannot be retrieved."""
        try:
            body = await self._request(
                "GET",
                f"/2/tweets/{event_id}",
                params=TWEET_QUERY_PARAMS,
            )
        except TwitterAPIError as exc:
            logger.warning("Could not fetch post %s: %s", event_id, exc)
            return None
        return parse_tweet_payload(body)

    async def _upload_image(self, payload: str) -> str:
        body = await self._request(
            "POST",
            "/2/media/upload",
            files={"media": ("image", base64.b64decode(payload))},
            data={"media_category": "tweet_image"},
        )
        media_id = (body.get("data") or {}).get("id")
        if not media_id:
            raise TwitterAPIError(f"Media upload returned no id: {body}")
        return str(media_id)

    async def _create_post(self, json_body: dict[str, Any]) -> PostResult:
        try:
            body = await self._request("POST", "/2/tweets", json=json_body)
        except TwitterAPIError as exc:
            logger.error("Post failed: %s", exc)
            return PostResult(success=False, error=str(exc))

        post_id = (body.get("data") or {}).get("id")
        logger.info("Posted %s", post_id)
        return PostResult(success=True, post_id=post_id)

    async def post_reply(
        self,
        in_reply_to: str,
        text: str,
        images: Sequence[str] = (),
    ) -> PostResult:
        """
        Reply to a post with text and up to four base64 images.

        Returns:
            PostResult; failures are reported, never raised
        """
        media_ids: list[str] = []
        for payload in list(images)[:4]:
            try:
                media_ids.append(await self._upload_image(payload))
            except (TwitterAPIError, ValueError) as exc:
                # Not every file a script writes is a postable image
                logger.warning("Skipping image that failed to upload: %s", exc)

        json_body: dict[str, Any] = {"reply": {"in_reply_to_tweet_id": in_reply_to}}
        if text:
            json_body["text"] = text
        if media_ids:
            json_body["media"] = {"media_ids": media_ids}

        if "text" not in json_body and "media" not in json_body:
            return PostResult(success=False, error="nothing to post")

        return await self._create_post(json_body)

    async def post_mention(self, handle: str, text: str) -> PostResult:
        """Post a standalone message addressed to an account."""
        return await self._create_post({"text": f"@{handle.lstrip('@')} {text}"})

    async def sync_stream_rules(self, tags: Sequence[str]) -> None:
        """Replace the filtered-stream rules with a single trigger rule."""
        existing = await self._request(
            "GET",
            "/2/tweets/search/stream/rules",
            app_auth=True,
        )
        ids = [rule["id"] for rule in existing.get("data") or [] if rule.get("id")]
        if ids:
            await self._request(
                "POST",
                "/2/tweets/search/stream/rules",
                app_auth=True,
                json={"delete": {"ids": ids}},
            )

        rule = build_stream_rule(tags)
        await self._request(
            "POST",
            "/2/tweets/search/stream/rules",
            app_auth=True,
            json={"add": [{"value": rule, "tag": STREAM_RULE_TAG}]},
        )
        logger.info("Stream rule set: %s", rule)

    async def _read_stream(self) -> AsyncIterator[FeedEvent]:
        timeout = httpx.Timeout(REQUEST_TIMEOUT, read=STREAM_READ_TIMEOUT)
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            async with client.stream(
                "GET",
                self._url("/2/tweets/search/stream"),
                headers=self._app_headers(),
                params=TWEET_QUERY_PARAMS,
            ) as response:
                if response.status_code == 429:
                    raise TwitterAPIError("stream rate limited")
                if response.status_code >= 400:
                    await response.aread()
                    raise TwitterAPIError(
                        f"stream HTTP {response.status_code}: {response.text}"
                    )

                logger.info("Connected to filtered stream")
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue  # keep-alive
                    try:
                        payload = json.loads(line)
                    except json.JSONDecodeError:
                        logger.warning("Skipping malformed stream line: %.200s", line)
                        continue

                    if not isinstance(payload, dict):
                        logger.warning("Skipping non-object stream line: %.200s", line)
                        continue

                    if "errors" in payload and "data" not in payload:
                        logger.warning("Stream error payload: %s", payload["errors"])
                        continue

                    try:
                        event = parse_tweet_payload(payload)
                    except (AttributeError, KeyError, TypeError) as exc:
                        logger.warning("Skipping unparseable post payload: %s", exc)
                        continue
                    if event is not None:
                        yield event

    async def stream_events(self) -> AsyncIterator[FeedEvent]:
        """
        Yield posts from the filtered stream forever.

        Reconnects after disconnects, backing off longer when rate limited.
        """
        while True:
            try:
                async with aclosing(self._read_stream()) as stream:
                    async for event in stream:
                        yield event
                logger.warning("Stream closed by server; reconnecting")
                delay = STREAM_RECONNECT_SECONDS
            except TwitterAPIError as exc:
                logger.error("Stream error: %s", exc)
                delay = (
                    STREAM_RATE_LIMIT_BACKOFF_SECONDS
                    if "rate limited" in str(exc)
                    else STREAM_RECONNECT_SECONDS
                )
            except httpx.HTTPError as exc:
                logger.error("Stream connection error: %s", exc)
                delay = STREAM_RECONNECT_SECONDS

            await asyncio.sleep(delay)


__all__ = [
    "PostResult",
    "TwitterAPIError",
    "TwitterClient",
    "build_stream_rule",
    "parse_tweet_payload",
]
