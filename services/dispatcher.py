"""
Live dispatcher for incoming feed events.

Each stream item is paired with a fresh configuration snapshot and queued for
a fixed pool of worker tasks. Every event is processed independently:

    filter -> extract -> audit admission -> execute -> transform
           -> audit result -> reply | maintainer diagnostic | nothing

Events are not ordered with respect to each other; two events may execute,
post and audit in any interleaving.

The admission queue is bounded. When it is full the overflow policy decides:
- block: the stream reader waits for a free slot;
- drop_oldest: the oldest queued event is discarded to make room;
- reject: the incoming event is discarded.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from services.audit_store import AdmissionRecord, AuditStore, ResultRecord
from services.eligibility import is_eligible
from services.execution import ExecutionAdapter, ExecutionRequest
from services.extraction import ExtractionFailed, extract_script
from services.feed_models import BotIdentity, FeedEvent
from services.result_transform import make_tweetable
from services.stats import stats
from shellgei_bot.bot_config import ConfigError, ConfigStore, TriggerConfig

if TYPE_CHECKING:
    from services.twitter_client import TwitterClient

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 8
DEFAULT_QUEUE_SIZE = 64


class OverflowPolicy(str, Enum):
    BLOCK = "block"
    DROP_OLDEST = "drop_oldest"
    REJECT = "reject"


class EventOutcome(str, Enum):
    """Terminal state of one processed event."""

    REJECTED = "rejected"
    EXTRACTION_FAILED = "extraction_failed"
    INTERNAL_ERROR = "internal_error"
    POSTED = "posted"
    POST_FAILED = "post_failed"
    SUPPRESSED = "suppressed"
    CRASHED = "crashed"


@dataclass(frozen=True)
class DispatchContext:
    """Process-wide collaborators, built once at startup."""

    bot: BotIdentity
    client: TwitterClient
    audit: AuditStore
    executor: ExecutionAdapter
    maintainer_handle: str | None = None


async def notify_maintainer(context: DispatchContext, message: str) -> bool:
    """Send a diagnostic post to the maintainer account."""
    if not context.maintainer_handle:
        logger.error("No maintainer handle configured; dropping diagnostic: %s", message)
        return False

    result = await context.client.post_mention(context.maintainer_handle, message)
    if not result.success:
        logger.error("Maintainer diagnostic failed: %s", result.error)
    return result.success


async def process_event(
    event: FeedEvent,
    config: TriggerConfig,
    context: DispatchContext,
) -> EventOutcome:
    """
    Run one event through the pipeline.

    Args:
        event: The incoming post
        config: Configuration snapshot taken when the event was received
        context: Shared collaborators

    Returns:
        The event's terminal state
    """
    if not await is_eligible(event, context.bot, config.tags, context.client):
        return EventOutcome.REJECTED

    try:
        extracted = await extract_script(
            event,
            context.bot,
            config.tags,
            [],
            context.client,
        )
    except ExtractionFailed as exc:
        logger.info("Extraction failed for %s: %s", event.event_id, exc)
        return EventOutcome.EXTRACTION_FAILED

    logger.info(
        "Admitted %s from @%s: %.80s",
        event.event_id,
        event.author_handle,
        extracted.script,
    )
    await context.audit.record_admission(
        AdmissionRecord(
            author_id=event.author_id,
            author_handle=event.author_handle,
            event_id=event.event_id,
            script=extracted.script,
            event_timestamp=event.timestamp,
        )
    )

    result = await context.executor.execute(
        ExecutionRequest(script=extracted.script, media_urls=extracted.media_urls),
        config,
    )
    text = make_tweetable(result.text, config.untrue)

    await context.audit.record_result(
        ResultRecord(
            event_id=event.event_id,
            result=text,
            error=str(result.error) if result.error else None,
        )
    )

    if result.error is not None and result.error.is_internal:
        logger.error("Internal error while running %s: %s", event.event_id, result.error)
        await notify_maintainer(context, f"internal error: {event.event_id}")
        return EventOutcome.INTERNAL_ERROR

    if not text and not result.images:
        logger.info("Empty result for %s; nothing to post", event.event_id)
        return EventOutcome.SUPPRESSED

    post = await context.client.post_reply(event.event_id, text, result.images)
    if not post.success:
        logger.error("Reply to %s failed: %s", event.event_id, post.error)
        return EventOutcome.POST_FAILED

    logger.info("Replied to %s with %s", event.event_id, post.post_id)
    return EventOutcome.POSTED


class LiveDispatcher:
    """
    Bounded worker pool for live events.

    Workers and the queue are created by start(); run() feeds them from the
    stream until the stream ends or stop() is called.
    """

    def __init__(
        self,
        context: DispatchContext,
        *,
        workers: int = DEFAULT_WORKERS,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        overflow: OverflowPolicy | str = OverflowPolicy.DROP_OLDEST,
    ):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        if queue_size < 1:
            raise ValueError("queue_size must be >= 1")

        self._context = context
        self._worker_count = workers
        self._queue_size = queue_size
        self._overflow = OverflowPolicy(overflow)

        self._queue: asyncio.Queue[tuple[FeedEvent, TriggerConfig]] | None = None
        self._workers: list[asyncio.Task[None]] = []
        self._running = False
        self._received = 0
        self._dropped = 0
        self._processed = 0

    @property
    def is_running(self) -> bool:
        return self._running

    def get_status(self) -> dict[str, Any]:
        """Queue depth and counters for diagnostics."""
        return {
            "running": self._running,
            "workers": self._worker_count,
            "queue_size": self._queue_size,
            "queued": self._queue.qsize() if self._queue else 0,
            "overflow_policy": self._overflow.value,
            "received": self._received,
            "dropped": self._dropped,
            "processed": self._processed,
        }

    async def start(self) -> None:
        """Create the queue and worker tasks."""
        if self._running:
            logger.warning("Dispatcher already running")
            return

        self._queue = asyncio.Queue(maxsize=self._queue_size)
        self._workers = [
            asyncio.create_task(self._worker_loop(i), name=f"dispatch-worker-{i}")
            for i in range(self._worker_count)
        ]
        self._running = True
        logger.info(
            "Dispatcher started: %d workers, queue %d, overflow=%s",
            self._worker_count,
            self._queue_size,
            self._overflow.value,
        )

    async def stop(self, *, drain: bool = True) -> None:
        """
        Stop the workers.

        Args:
            drain: wait for queued events to be processed first
        """
        if not self._running:
            return
        self._running = False

        if drain and self._queue is not None:
            await self._queue.join()

        for task in self._workers:
            task.cancel()
        for task in self._workers:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._workers = []
        logger.info("Dispatcher stopped (%s)", self.get_status())

    async def submit(self, event: FeedEvent, config: TriggerConfig) -> bool:
        """
        Queue an event with its config snapshot.

        Returns:
            False if the event was discarded by the reject policy
        """
        if self._queue is None or not self._running:
            raise RuntimeError("Dispatcher is not running")

        self._received += 1
        item = (event, config)

        if self._overflow is OverflowPolicy.BLOCK:
            await self._queue.put(item)
            return True

        try:
            self._queue.put_nowait(item)
            return True
        except asyncio.QueueFull:
            pass

        self._dropped += 1
        if self._overflow is OverflowPolicy.REJECT:
            logger.warning("Queue full; rejecting event %s", event.event_id)
            return False

        dropped_event, _ = self._queue.get_nowait()
        self._queue.task_done()
        logger.warning(
            "Queue full; dropped oldest event %s for %s",
            dropped_event.event_id,
            event.event_id,
        )
        self._queue.put_nowait(item)
        return True

    async def run(
        self,
        stream: AsyncIterator[FeedEvent],
        config_store: ConfigStore,
    ) -> None:
        """
        Consume the stream, reloading the config snapshot for every item.

        Raises:
            ConfigError: the config file became unreadable; the maintainer is
                notified first
        """
        async for event in stream:
            try:
                config = await config_store.reload()
            except ConfigError as exc:
                logger.critical("Bot config reload failed: %s", exc)
                await notify_maintainer(self._context, "Internal error: bot config reload failed")
                raise

            await self.submit(event, config)

    async def _worker_loop(self, worker_id: int) -> None:
        assert self._queue is not None
        while True:
            event, config = await self._queue.get()
            try:
                outcome = await process_event(event, config, self._context)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Worker %d crashed processing %s", worker_id, event.event_id)
                outcome = EventOutcome.CRASHED
            finally:
                self._queue.task_done()

            self._processed += 1
            stats.record_outcome(outcome.value)
            if outcome is not EventOutcome.REJECTED:
                logger.debug("Event %s finished: %s", event.event_id, outcome.value)


__all__ = [
    "DispatchContext",
    "EventOutcome",
    "LiveDispatcher",
    "OverflowPolicy",
    "notify_maintainer",
    "process_event",
]
