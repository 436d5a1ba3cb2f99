"""
Tests for the command-line entrypoint and mode wiring.
"""

import dataclasses
import io
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

import app
from config import Settings
from services.sandbox import SandboxOutput
from services.twitter_client import TwitterAPIError
from shellgei_bot.runner import FatalStartupError, run_live, run_test


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        log_file=str(tmp_path / "bot.log"),
        log_level="INFO",
        audit_db_path=str(tmp_path / "audit.db"),
        maintainer_handle="maintainer",
        dispatch_workers=2,
        dispatch_queue_size=4,
        dispatch_overflow="drop_oldest",
        twitter_api_base="https://api.example.test",
        docker_binary="docker",
    )


@pytest.fixture
def bot_config_file(tmp_path) -> str:
    path = tmp_path / "bot.json"
    path.write_text(json.dumps({"tags": ["#run"]}))
    return str(path)


@pytest.fixture
def twitter_config_file(tmp_path) -> str:
    path = tmp_path / "twitter.json"
    path.write_text(json.dumps({"bearer_token": "b", "access_token": "a"}))
    return str(path)


class TestParseArgs:
    """Tests for argument parsing."""

    def test_live_mode(self):
        args = app.parse_args(["twitter.json", "bot.json"])
        assert args.test_config is None
        assert args.paths == ["twitter.json", "bot.json"]

    def test_test_mode(self):
        args = app.parse_args(["-test", "bot.json", "a.sh", "b.sh"])
        assert args.test_config == "bot.json"
        assert args.paths == ["a.sh", "b.sh"]

    def test_test_mode_without_scripts(self):
        args = app.parse_args(["-test", "bot.json"])
        assert args.paths == []

    @pytest.mark.parametrize("argv", [[], ["only-one.json"], ["a", "b", "c"]])
    def test_live_mode_arity(self, argv):
        with pytest.raises(SystemExit) as exc_info:
            app.parse_args(argv)
        assert exc_info.value.code == 2


class TestMain:
    """Tests for main()."""

    @pytest.fixture(autouse=True)
    def quiet(self, settings):
        with patch("app.load_dotenv"), patch("app.configure_logging"), patch(
            "app.logging.shutdown"
        ), patch(
            "app.get_settings", return_value=settings
        ):
            yield

    def test_test_mode_runs_batch(self, settings):
        with patch("app.run_test", new_callable=AsyncMock) as mock_run:
            assert app.main(["-test", "bot.json", "a.sh"]) == 0
        mock_run.assert_awaited_once_with("bot.json", ["a.sh"], settings)

    def test_live_mode_runs_dispatcher(self, settings):
        with patch("app.run_live", new_callable=AsyncMock) as mock_run:
            assert app.main(["twitter.json", "bot.json"]) == 0
        mock_run.assert_awaited_once_with("twitter.json", "bot.json", settings)

    def test_fatal_startup_exits_nonzero(self):
        with patch("app.run_live", AsyncMock(side_effect=FatalStartupError("no audit store"))):
            assert app.main(["twitter.json", "bot.json"]) == 1

    def test_config_error_while_running_exits_nonzero(self):
        from shellgei_bot.bot_config import ConfigError

        with patch("app.run_live", AsyncMock(side_effect=ConfigError("bad json"))):
            assert app.main(["twitter.json", "bot.json"]) == 1


class TestRunTest:
    """Tests for test-mode wiring."""

    @pytest.mark.asyncio
    async def test_prints_report(self, settings, bot_config_file, tmp_path):
        script = tmp_path / "hello.sh"
        script.write_text("echo hello")
        sandbox = MagicMock()
        sandbox.run = AsyncMock(return_value=SandboxOutput(stdout="hello\n"))
        out = io.StringIO()

        with patch("shellgei_bot.runner.DockerSandbox", return_value=sandbox):
            await run_test(bot_config_file, [str(script)], settings, out)

        report = out.getvalue()
        assert f"Result: 1 ({script})" in report
        assert "hello\n=== Images ===" in report
        assert "=== Error  ===\nnone\n" in report

    @pytest.mark.asyncio
    async def test_bad_bot_config_is_fatal(self, settings, tmp_path):
        with pytest.raises(FatalStartupError):
            await run_test(str(tmp_path / "missing.json"), [], settings)


class TestRunLive:
    """Tests for live-mode startup failures."""

    @pytest.mark.asyncio
    async def test_bad_credentials_are_fatal(self, settings, bot_config_file, tmp_path):
        with pytest.raises(FatalStartupError):
            await run_live(str(tmp_path / "missing.json"), bot_config_file, settings)

    @pytest.mark.asyncio
    async def test_missing_maintainer_is_fatal(
        self, settings, twitter_config_file, bot_config_file
    ):
        unattended = dataclasses.replace(settings, maintainer_handle=None)
        client_cls = MagicMock()

        with patch("shellgei_bot.runner.TwitterClient", client_cls):
            with pytest.raises(FatalStartupError, match="MAINTAINER_HANDLE"):
                await run_live(twitter_config_file, bot_config_file, unattended)

        client_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_unusable_audit_store_is_fatal(
        self, settings, twitter_config_file, bot_config_file, tmp_path
    ):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        broken = dataclasses.replace(settings, audit_db_path=str(blocker / "audit.db"))

        with pytest.raises(FatalStartupError, match="audit store"):
            await run_live(twitter_config_file, bot_config_file, broken)

    @pytest.mark.asyncio
    async def test_self_lookup_failure_is_fatal(
        self, settings, twitter_config_file, bot_config_file
    ):
        client = MagicMock()
        client.get_self = AsyncMock(side_effect=TwitterAPIError("HTTP 401"))

        with patch("shellgei_bot.runner.TwitterClient", return_value=client):
            with pytest.raises(FatalStartupError, match="bot identity"):
                await run_live(twitter_config_file, bot_config_file, settings)

    @pytest.mark.asyncio
    async def test_runs_stream_through_dispatcher(
        self, settings, twitter_config_file, bot_config_file, make_event, bot
    ):
        async def stream():
            yield make_event("#run echo hi")

        client = MagicMock()
        client.get_self = AsyncMock(return_value=bot)
        client.sync_stream_rules = AsyncMock()
        client.stream_events = MagicMock(return_value=stream())
        client.is_follower = AsyncMock(return_value=True)
        client.get_event = AsyncMock(return_value=None)
        client.post_reply = AsyncMock()
        sandbox = MagicMock()
        sandbox.run = AsyncMock(return_value=SandboxOutput(stdout="hi\n"))

        with patch("shellgei_bot.runner.TwitterClient", return_value=client), patch(
            "shellgei_bot.runner.DockerSandbox", return_value=sandbox
        ):
            await run_live(twitter_config_file, bot_config_file, settings)

        client.sync_stream_rules.assert_awaited_once_with(("#run",))
