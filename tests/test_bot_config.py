"""Tests for credential and bot configuration loading."""

import json

import pytest

from shellgei_bot.bot_config import (
    ConfigError,
    ConfigStore,
    TriggerConfig,
    parse_bot_config,
    parse_twitter_key,
)


def _write(path, payload) -> str:
    path.write_text(payload if isinstance(payload, str) else json.dumps(payload))
    return str(path)


class TestTriggerConfig:
    """Tests for TriggerConfig validation."""

    def test_tags_normalized(self):
        config = TriggerConfig(tags=["run", "#run", " #shellgei "])
        assert config.tags == ("#run", "#shellgei")

    def test_defaults(self):
        config = TriggerConfig(tags=["#run"])
        assert config.untrue is False
        assert config.timeout_seconds == 20.0
        assert config.max_images == 4

    def test_requires_a_tag(self):
        with pytest.raises(ValueError):
            TriggerConfig(tags=[])

    def test_blank_tags_rejected(self):
        with pytest.raises(ValueError):
            TriggerConfig(tags=["  "])

    def test_frozen(self):
        config = TriggerConfig(tags=["#run"])
        with pytest.raises(ValueError):
            config.untrue = True


class TestParseFiles:
    """Tests for parse_bot_config and parse_twitter_key."""

    def test_parse_bot_config(self, tmp_path):
        path = _write(tmp_path / "bot.json", {"tags": ["#run"], "untrue": True})
        config = parse_bot_config(path)
        assert config.tags == ("#run",)
        assert config.untrue is True

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="Cannot read"):
            parse_bot_config(tmp_path / "nope.json")

    def test_invalid_json(self, tmp_path):
        path = _write(tmp_path / "bot.json", "{not json")
        with pytest.raises(ConfigError, match="Invalid JSON"):
            parse_bot_config(path)

    def test_not_an_object(self, tmp_path):
        path = _write(tmp_path / "bot.json", ["#run"])
        with pytest.raises(ConfigError):
            parse_bot_config(path)

    def test_missing_tags(self, tmp_path):
        path = _write(tmp_path / "bot.json", {"untrue": False})
        with pytest.raises(ConfigError, match="Invalid bot config"):
            parse_bot_config(path)

    def test_parse_twitter_key(self, tmp_path):
        path = _write(tmp_path / "key.json", {"bearer_token": "b", "access_token": "a"})
        key = parse_twitter_key(path)
        assert key.bearer_token == "b"
        assert key.access_token == "a"

    def test_twitter_key_requires_tokens(self, tmp_path):
        path = _write(tmp_path / "key.json", {"bearer_token": ""})
        with pytest.raises(ConfigError, match="Invalid credentials"):
            parse_twitter_key(path)


class TestConfigStore:
    """Tests for ConfigStore snapshot swapping."""

    async def test_reload_swaps_snapshot(self, tmp_path):
        path = tmp_path / "bot.json"
        _write(path, {"tags": ["#run"]})
        store = ConfigStore(path)
        assert store.snapshot is None

        first = await store.reload()
        _write(path, {"tags": ["#other"]})
        second = await store.reload()

        assert first.tags == ("#run",)
        assert second.tags == ("#other",)
        assert store.snapshot is second
        assert store.reload_count == 2

    async def test_failed_reload_keeps_previous_snapshot(self, tmp_path):
        path = tmp_path / "bot.json"
        _write(path, {"tags": ["#run"]})
        store = ConfigStore(path)
        first = await store.reload()

        _write(path, "{broken")
        with pytest.raises(ConfigError):
            await store.reload()

        assert store.snapshot is first
        assert store.reload_count == 1
