"""
Pytest configuration and fixtures.
"""

from __future__ import annotations

import base64
import io
import os
import tempfile
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from PIL import Image

from services.feed_models import BotIdentity, FeedEvent
from services.stats import stats
from services.twitter_client import PostResult
from shellgei_bot.bot_config import TriggerConfig


@pytest.fixture(autouse=True)
def reset_stats():
    """Keep the global stats collector independent between tests."""
    stats.reset()
    yield
    stats.reset()


@pytest.fixture
def bot() -> BotIdentity:
    return BotIdentity(user_id="1000", handle="shellgei_bot")


@pytest.fixture
def trigger_config() -> TriggerConfig:
    return TriggerConfig(tags=["#run"], untrue=False)


@pytest.fixture
def make_event():
    """Factory for FeedEvents with sensible defaults."""

    def _make(
        text: str = "#run echo hi",
        *,
        event_id: str = "555",
        author_id: str = "42",
        author_handle: str = "alice",
        media_urls: tuple[str, ...] = (),
        is_reshare: bool = False,
        referenced_ids: tuple[str, ...] = (),
    ) -> FeedEvent:
        return FeedEvent(
            event_id=event_id,
            author_id=author_id,
            author_handle=author_handle,
            text=text,
            created_at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
            media_urls=media_urls,
            is_reshare=is_reshare,
            referenced_ids=referenced_ids,
        )

    return _make


@pytest.fixture
def mock_client():
    """A platform client where everyone follows the bot and posting works."""
    client = MagicMock()
    client.is_follower = AsyncMock(return_value=True)
    client.get_event = AsyncMock(return_value=None)
    client.post_reply = AsyncMock(return_value=PostResult(success=True, post_id="900"))
    client.post_mention = AsyncMock(return_value=PostResult(success=True, post_id="901"))
    return client


@pytest.fixture
def mock_audit():
    audit = MagicMock()
    audit.record_admission = AsyncMock(return_value=True)
    audit.record_result = AsyncMock(return_value=True)
    return audit


@pytest.fixture
def temp_db_path():
    """Create a temporary database file path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        yield f.name
    if os.path.exists(f.name):
        os.unlink(f.name)


@pytest.fixture
def png_payload() -> str:
    """A valid base64-encoded 4x4 PNG."""
    buf = io.BytesIO()
    Image.new("RGB", (4, 4), (255, 0, 0)).save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")
