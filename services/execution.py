"""
Execution adapter around the sandbox.

Makes exactly one sandbox call per request and classifies the outcome:

- internal: the sandbox itself failed; the maintainer is told, the
  requester is not.
- user: the script ran but timed out or exited non-zero; whatever it
  printed is still returned.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from services.sandbox import SandboxUnavailable
from shellgei_bot.bot_config import TriggerConfig

if TYPE_CHECKING:
    from services.sandbox import DockerSandbox

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """Classified execution failure."""

    USER = "user"
    INTERNAL = "internal"


@dataclass(frozen=True)
class ExecutionError:
    kind: ErrorKind
    message: str

    @property
    def is_internal(self) -> bool:
        return self.kind is ErrorKind.INTERNAL

    def __str__(self) -> str:
        return f"{self.kind.value} error: {self.message}"


@dataclass(frozen=True)
class ExecutionRequest:
    """Script text and the media it may read, built once per event."""

    script: str
    media_urls: tuple[str, ...] = ()


@dataclass
class ExecutionResult:
    """Normalized sandbox output."""

    text: str
    images: list[str] = field(default_factory=list)
    error: ExecutionError | None = None
    elapsed_seconds: float = 0.0

    @property
    def is_empty(self) -> bool:
        return not self.text and not self.images


class ExecutionAdapter:
    """Runs ExecutionRequests through a sandbox collaborator."""

    def __init__(self, sandbox: DockerSandbox):
        self._sandbox = sandbox

    async def execute(
        self,
        request: ExecutionRequest,
        config: TriggerConfig,
    ) -> ExecutionResult:
        """Run one request. Never raises; failures are classified on the result."""
        start = time.monotonic()
        try:
            output = await self._sandbox.run(request.script, request.media_urls, config)
        except SandboxUnavailable as exc:
            logger.error("Sandbox unavailable: %s", exc)
            return ExecutionResult(
                text="",
                error=ExecutionError(ErrorKind.INTERNAL, str(exc)),
                elapsed_seconds=time.monotonic() - start,
            )
        except Exception as exc:
            logger.exception("Unexpected sandbox failure")
            return ExecutionResult(
                text="",
                error=ExecutionError(ErrorKind.INTERNAL, f"{type(exc).__name__}: {exc}"),
                elapsed_seconds=time.monotonic() - start,
            )

        elapsed = time.monotonic() - start
        error: ExecutionError | None = None
        if output.timed_out:
            error = ExecutionError(
                ErrorKind.USER,
                f"timed out after {config.timeout_seconds:g}s",
            )
        elif output.exit_code:
            error = ExecutionError(ErrorKind.USER, f"exit status {output.exit_code}")

        if error is not None:
            logger.info("Script failed (%s)", error)

        return ExecutionResult(
            text=output.stdout,
            images=list(output.images),
            error=error,
            elapsed_seconds=elapsed,
        )


__all__ = [
    "ErrorKind",
    "ExecutionAdapter",
    "ExecutionError",
    "ExecutionRequest",
    "ExecutionResult",
]
