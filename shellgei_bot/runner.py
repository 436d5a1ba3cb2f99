"""
Live and test mode wiring.

Everything process-wide (credentials, bot identity, audit store, sandbox,
platform client) is built once here and handed to the pipeline explicitly.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TextIO

from config import Settings
from services.audit_store import AuditStore
from services.batch_harness import render_report, run_batch
from services.dispatcher import DispatchContext, LiveDispatcher
from services.execution import ExecutionAdapter
from services.sandbox import DockerSandbox
from services.stats import stats
from services.twitter_client import TwitterAPIError, TwitterClient
from shellgei_bot.bot_config import (
    ConfigError,
    ConfigStore,
    parse_bot_config,
    parse_twitter_key,
)

logger = logging.getLogger(__name__)


class FatalStartupError(Exception):
    """The bot cannot start; the process should exit non-zero."""


async def run_live(
    twitter_config_file: str,
    bot_config_file: str,
    settings: Settings,
) -> None:
    """
    Run the bot against the live stream until the process is stopped.

    Raises:
        FatalStartupError: MAINTAINER_HANDLE is unset, or credentials, bot
            config, audit store or self lookup failed at startup
        ConfigError: the bot config became unreadable while running
    """
    if not settings.maintainer_handle:
        raise FatalStartupError("MAINTAINER_HANDLE must be set in live mode")

    try:
        key = parse_twitter_key(twitter_config_file)
    except ConfigError as exc:
        raise FatalStartupError(str(exc)) from exc

    audit = AuditStore(settings.audit_db_path)
    try:
        await audit.ensure_schema()
    except Exception as exc:
        raise FatalStartupError(f"Cannot open audit store {settings.audit_db_path}: {exc}") from exc

    client = TwitterClient(key, api_base=settings.twitter_api_base)
    try:
        bot = await client.get_self()
    except TwitterAPIError as exc:
        raise FatalStartupError(f"Cannot resolve bot identity: {exc}") from exc

    config_store = ConfigStore(bot_config_file)
    try:
        config = await config_store.reload()
    except ConfigError as exc:
        raise FatalStartupError(str(exc)) from exc

    try:
        await client.sync_stream_rules(config.tags)
    except TwitterAPIError as exc:
        raise FatalStartupError(f"Cannot set stream rules: {exc}") from exc

    context = DispatchContext(
        bot=bot,
        client=client,
        audit=audit,
        executor=ExecutionAdapter(DockerSandbox(settings.docker_binary)),
        maintainer_handle=settings.maintainer_handle,
    )
    dispatcher = LiveDispatcher(
        context,
        workers=settings.dispatch_workers,
        queue_size=settings.dispatch_queue_size,
        overflow=settings.dispatch_overflow,
    )

    await dispatcher.start()
    try:
        await dispatcher.run(client.stream_events(), config_store)
    finally:
        await dispatcher.stop(drain=False)
        logger.info("Final stats: %s", stats.get_all_stats())


async def run_test(
    bot_config_file: str,
    script_paths: Sequence[str],
    settings: Settings,
    out: TextIO | None = None,
) -> None:
    """
    Run scripts through the sandbox and print a report.

    Raises:
        FatalStartupError: the bot config is unreadable
    """
    try:
        config = parse_bot_config(bot_config_file)
    except ConfigError as exc:
        raise FatalStartupError(str(exc)) from exc

    adapter = ExecutionAdapter(DockerSandbox(settings.docker_binary))
    results = await run_batch(script_paths, adapter, config)
    render_report(results, out)


__all__ = ["FatalStartupError", "run_live", "run_test"]
