"""
Batch harness for test mode.

Runs every script file concurrently through the same execution and transform
steps the live pipeline uses, collects one result per script through a
fan-in queue, and renders a report.

Results carry the index of the script that produced them and the report is
in submission order, so "Result: 3" is always the third script given on the
command line. completion_rank records the order tasks actually finished in.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TextIO

from PIL import Image

from services.execution import ExecutionAdapter, ExecutionRequest
from services.result_transform import DecodedImage, decode_images, make_tweetable
from services.terminal_graphics import encode_sixel
from shellgei_bot.bot_config import TriggerConfig

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    """Outcome of one script in a batch."""

    index: int
    script_path: str
    stdout: str = ""
    images: list[DecodedImage] = field(default_factory=list)
    elapsed_seconds: float = 0.0
    error: str | None = None
    completion_rank: int = 0


def _read_script(path: str) -> str:
    return Path(path).read_text(encoding="utf-8")


async def _run_script(
    index: int,
    script_path: str,
    adapter: ExecutionAdapter,
    config: TriggerConfig,
    results: asyncio.Queue[BatchResult],
) -> None:
    """Produce exactly one BatchResult on the queue, whatever happens."""
    result = BatchResult(index=index, script_path=script_path)
    try:
        try:
            script = await asyncio.to_thread(_read_script, script_path)
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Cannot read %s: %s", script_path, exc)
            result.error = f"read failed: {exc}"
            return

        start = time.monotonic()
        execution = await adapter.execute(ExecutionRequest(script=script), config)
        result.elapsed_seconds = time.monotonic() - start
        result.stdout = make_tweetable(execution.text, config.untrue)

        if execution.error is not None:
            result.error = str(execution.error)
            return

        if not result.stdout and not execution.images:
            result.error = "empty result"
            return

        result.images = decode_images(execution.images)
    except Exception as exc:
        logger.exception("Batch task for %s failed", script_path)
        result.error = f"{type(exc).__name__}: {exc}"
    finally:
        results.put_nowait(result)


async def run_batch(
    script_paths: Sequence[str],
    adapter: ExecutionAdapter,
    config: TriggerConfig,
) -> list[BatchResult]:
    """
    Run all scripts concurrently and return one result per script.

    Args:
        script_paths: Script files, in the order given by the user
        adapter: Execution adapter shared by all tasks
        config: Configuration snapshot shared by all tasks

    Returns:
        len(script_paths) results sorted by submission index (1-based)
    """
    total = len(script_paths)
    # Sized for every result so no producer ever waits
    results: asyncio.Queue[BatchResult] = asyncio.Queue(maxsize=max(total, 1))

    tasks = [
        asyncio.create_task(
            _run_script(index, path, adapter, config, results),
            name=f"batch-{index}",
        )
        for index, path in enumerate(script_paths, start=1)
    ]
    await asyncio.gather(*tasks)

    collected: list[BatchResult] = []
    for rank in range(1, total + 1):
        result = results.get_nowait()
        result.completion_rank = rank
        collected.append(result)

    collected.sort(key=lambda r: r.index)
    logger.info(
        "Batch finished: %d scripts, %d errors",
        total,
        sum(1 for r in collected if r.error),
    )
    return collected


def render_report(
    results: Sequence[BatchResult],
    out: TextIO | None = None,
    *,
    encode_image: Callable[[Image.Image], str] = encode_sixel,
) -> None:
    """Write the per-script report."""
    out = out or sys.stdout
    for result in results:
        out.write(f"Result: {result.index} ({result.script_path})\n")
        out.write("=== Stdout ===\n")
        out.write(f"{result.stdout}\n")
        out.write("=== Images ===\n")
        for decoded in result.images:
            out.write(encode_image(decoded.image))
            out.write("\n")
        out.write("=== Error  ===\n")
        out.write(f"{result.error or 'none'}\n")
        out.write("===  Time  ===\n")
        out.write(f"{result.elapsed_seconds:.3f}s\n")
        out.write("\n")
    out.flush()


__all__ = ["BatchResult", "render_report", "run_batch"]
