from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from oversessions.config import Config, is_valid_battle_tag, load_battle_tag_map, load_hero_emoji_map

_ENV_KEYS = (
    "DISCORD_BOT_TOKEN",
    "BATTLETAG_FILE",
    "DISCORD_GUILD_ID",
    "TARGET_GAME",
    "CHANNEL_PATTERN",
    "STATS_API_BASE_URL",
    "NOTIFY_NO_CHANGE",
    "PENDING_MESSAGES",
    "HERO_EMOJI_FILE",
    "LOG_DIR",
    "DEBUG",
    "ENABLE_HEALTH",
    "PORT",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


class TestConfigFromEnv:
    def test_missing_required_vars(self, tmp_path: Path, clean_env):
        env_file = tmp_path / ".env"
        env_file.write_text("")

        with pytest.raises(ValueError, match="Missing required"):
            Config.from_env(env_file)

    def test_missing_token_named(self, tmp_path: Path, clean_env):
        env_file = tmp_path / ".env"
        env_file.write_text("TARGET_GAME=Overwatch 2\n")

        with pytest.raises(ValueError, match="DISCORD_BOT_TOKEN"):
            Config.from_env(env_file)

    def test_minimal_config(self, tmp_path: Path, clean_env):
        env_file = tmp_path / ".env"
        env_file.write_text("DISCORD_BOT_TOKEN=tok\n")

        cfg = Config.from_env(env_file)
        assert cfg.discord_bot_token == "tok"
        assert cfg.battle_tag_file is None
        assert cfg.target_game == "Overwatch"
        assert cfg.notify_no_change is False
        assert cfg.pending_messages is False

    def test_full_config(self, tmp_path: Path, clean_env):
        env_file = tmp_path / ".env"
        env_file.write_text(
            "DISCORD_BOT_TOKEN=tok\n"
            "BATTLETAG_FILE=/etc/oversessions/battletags.txt\n"
            "DISCORD_GUILD_ID=42\n"
            "TARGET_GAME=Overwatch 2\n"
            "NOTIFY_NO_CHANGE=true\n"
            "PENDING_MESSAGES=yes\n"
            "LOG_DIR=logs\n"
            "DEBUG=1\n"
            "PORT=8080\n"
        )

        cfg = Config.from_env(env_file)
        assert cfg.battle_tag_file == Path("/etc/oversessions/battletags.txt")
        assert cfg.sync_guild_id_raw == "42"
        assert cfg.target_game == "Overwatch 2"
        assert cfg.notify_no_change is True
        assert cfg.pending_messages is True
        assert cfg.log_dir == Path("logs")
        assert cfg.debug is True
        assert cfg.health_port == 8080

    def test_defaults(self, mock_config: Config):
        assert mock_config.stats_api_base_url == "https://owapi.net/api/v3/"
        assert mock_config.max_stats_attempts == 10
        assert mock_config.retry_interval_seconds == 60.0
        assert mock_config.recent_window_seconds == 2.0
        assert mock_config.command_timeout_seconds == 10.0
        assert mock_config.inter_call_delay_seconds == 1.0

    def test_frozen(self, mock_config: Config):
        from dataclasses import FrozenInstanceError

        with pytest.raises(FrozenInstanceError):
            mock_config.debug = True  # type: ignore[misc]


class TestBattleTagFile:
    def test_missing_path_is_empty(self):
        assert load_battle_tag_map(None) == {}
        assert load_battle_tag_map("") == {}

    def test_unreadable_file_raises(self, tmp_path: Path):
        with pytest.raises(ValueError, match="Could not read"):
            load_battle_tag_map(tmp_path / "missing.txt")

    def test_parses_pairs_and_skips_bad_lines(self, tmp_path: Path, caplog):
        caplog.set_level(logging.WARNING)
        path = tmp_path / "battletags.txt"
        path.write_text(
            "111111111111111111 Alice#1234\n"
            "\n"
            "222222222222222222\n"
            "333333333333333333 Bob#5678 extra\n"
            "444444444444444444 x#1\n",
            encoding="utf-8",
        )

        battle_tags = load_battle_tag_map(path)

        assert battle_tags == {
            "111111111111111111": "Alice#1234",
            "444444444444444444": "x#1",
        }
        assert "Invalid BattleTag entry" in caplog.text
        assert "looks malformed" in caplog.text


@pytest.mark.parametrize(
    ("tag", "valid"),
    [
        ("Alice#1234", True),
        ("abc#1", True),
        ("ab#1", False),
        ("Alice-1234", False),
        ("Alice#", False),
        ("", False),
    ],
)
def test_is_valid_battle_tag(tag: str, valid: bool) -> None:
    assert is_valid_battle_tag(tag) is valid


class TestHeroEmojiMap:
    def test_load(self, tmp_path: Path):
        path = tmp_path / "emoji.json"
        path.write_text(json.dumps({"ana": "<:ana:1>", "mei": " "}), encoding="utf-8")
        assert load_hero_emoji_map(path) == {"ana": "<:ana:1>"}

    def test_missing_or_corrupted(self, tmp_path: Path):
        assert load_hero_emoji_map(None) == {}
        assert load_hero_emoji_map(tmp_path / "nope.json") == {}
        bad = tmp_path / "bad.json"
        bad.write_text("not valid json", encoding="utf-8")
        assert load_hero_emoji_map(bad) == {}
