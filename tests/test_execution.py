"""Unit tests for the execution adapter's error classification."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from services.execution import ErrorKind, ExecutionAdapter, ExecutionRequest
from services.sandbox import SandboxOutput, SandboxUnavailable


def _adapter(**run_kwargs) -> tuple[ExecutionAdapter, MagicMock]:
    sandbox = MagicMock()
    sandbox.run = AsyncMock(**run_kwargs)
    return ExecutionAdapter(sandbox), sandbox


class TestExecutionAdapter:
    """Tests for ExecutionAdapter.execute."""

    async def test_success(self, trigger_config):
        adapter, sandbox = _adapter(
            return_value=SandboxOutput(stdout="hi\n", images=["aGk="], exit_code=0)
        )

        result = await adapter.execute(
            ExecutionRequest(script="echo hi", media_urls=("https://m/1.jpg",)),
            trigger_config,
        )

        assert result.text == "hi\n"
        assert result.images == ["aGk="]
        assert result.error is None
        sandbox.run.assert_awaited_once_with("echo hi", ("https://m/1.jpg",), trigger_config)

    async def test_nonzero_exit_is_user_error_with_output(self, trigger_config):
        adapter, _ = _adapter(
            return_value=SandboxOutput(stdout="partial", exit_code=1)
        )

        result = await adapter.execute(ExecutionRequest(script="false"), trigger_config)

        assert result.error is not None
        assert result.error.kind is ErrorKind.USER
        assert result.text == "partial"

    async def test_timeout_is_user_error(self, trigger_config):
        adapter, _ = _adapter(
            return_value=SandboxOutput(stdout="", exit_code=None, timed_out=True)
        )

        result = await adapter.execute(ExecutionRequest(script="sleep 100"), trigger_config)

        assert result.error.kind is ErrorKind.USER
        assert "timed out" in result.error.message
        assert result.is_empty

    async def test_sandbox_unavailable_is_internal_error(self, trigger_config):
        adapter, _ = _adapter(side_effect=SandboxUnavailable("docker daemon down"))

        result = await adapter.execute(ExecutionRequest(script="echo hi"), trigger_config)

        assert result.error.is_internal
        assert "docker daemon down" in result.error.message

    async def test_unexpected_exception_is_internal_error(self, trigger_config):
        adapter, _ = _adapter(side_effect=RuntimeError("boom"))

        result = await adapter.execute(ExecutionRequest(script="echo hi"), trigger_config)

        assert result.error.kind is ErrorKind.INTERNAL

    async def test_single_sandbox_call_on_failure(self, trigger_config):
        """No retries, whatever the outcome."""
        adapter, sandbox = _adapter(side_effect=SandboxUnavailable("down"))

        await adapter.execute(ExecutionRequest(script="echo hi"), trigger_config)

        assert sandbox.run.await_count == 1
