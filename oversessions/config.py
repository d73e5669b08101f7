from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent.parent

logger = logging.getLogger(__name__)

# A BattleTag is 3-12 word characters, "#", then digits
_BATTLE_TAG_RE = re.compile(r"^\w{3,12}#\d+$")


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_path(name: str) -> Path | None:
    value = os.getenv(name, "").strip()
    return Path(value) if value else None


@dataclass(frozen=True)
class Config:
    discord_bot_token: str
    battle_tag_file: Path | None = None
    sync_guild_id_raw: str | None = None
    target_game: str = "Overwatch"
    channel_pattern: str = r"^over.*$"
    stats_api_base_url: str = "https://owapi.net/api/v3/"
    notify_no_change: bool = False
    pending_messages: bool = False
    hero_emoji_file: Path | None = None
    log_dir: Path | None = None
    debug: bool = False
    enable_health: bool = False
    health_port: int = 10000
    command_timeout_seconds: float = 10.0
    max_stats_attempts: int = 10
    retry_interval_seconds: float = 60.0
    recent_window_seconds: float = 2.0
    inter_call_delay_seconds: float = 1.0

    @classmethod
    def from_env(cls, env_path: Path | str | None = None) -> Config:
        load_dotenv(dotenv_path=env_path or PROJECT_ROOT / ".env")

        required = {
            "DISCORD_BOT_TOKEN": os.getenv("DISCORD_BOT_TOKEN"),
        }

        missing = [k for k, v in required.items() if not v]
        if missing:
            raise ValueError(f"Missing required environment variables: {', '.join(missing)}")

        return cls(
            discord_bot_token=required["DISCORD_BOT_TOKEN"],
            battle_tag_file=_env_path("BATTLETAG_FILE"),
            sync_guild_id_raw=os.getenv("DISCORD_GUILD_ID"),
            target_game=os.getenv("TARGET_GAME", "Overwatch"),
            channel_pattern=os.getenv("CHANNEL_PATTERN", r"^over.*$"),
            stats_api_base_url=os.getenv("STATS_API_BASE_URL", "https://owapi.net/api/v3/"),
            notify_no_change=_env_flag("NOTIFY_NO_CHANGE"),
            pending_messages=_env_flag("PENDING_MESSAGES"),
            hero_emoji_file=_env_path("HERO_EMOJI_FILE"),
            log_dir=_env_path("LOG_DIR"),
            debug=_env_flag("DEBUG"),
            enable_health=_env_flag("ENABLE_HEALTH"),
            health_port=int(os.getenv("PORT", "10000")),
        )


def is_valid_battle_tag(battle_tag: str) -> bool:
    return bool(_BATTLE_TAG_RE.match(battle_tag or ""))


def load_battle_tag_map(path: Path | str | None) -> dict[str, str]:
    """Read ``userId battleTag`` pairs, one per line.

    Blank lines are skipped; malformed lines are logged and skipped. A missing
    path yields an empty map, an unreadable file raises ``ValueError``.
    """
    if path is None or str(path) == "":
        return {}

    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ValueError(f"Could not read BattleTag file: {path}") from exc

    battle_tags: dict[str, str] = {}
    for line in text.splitlines():
        entry = line.strip()
        if not entry:
            continue
        pair = entry.split()
        if len(pair) != 2:
            logger.error("Invalid BattleTag entry: entry=%r", entry)
            continue
        user_id, battle_tag = pair
        if not is_valid_battle_tag(battle_tag):
            logger.warning("BattleTag looks malformed, keeping it anyway: user_id=%s battle_tag=%s", user_id, battle_tag)
        battle_tags[user_id] = battle_tag
    return battle_tags


def load_hero_emoji_map(path: Path | str | None) -> dict[str, str]:
    try:
        if path is None:
            return {}
        path = Path(path)
        if not path.exists():
            return {}
        raw = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            return {}
        return {str(k): str(v) for k, v in raw.items() if str(v).strip()}
    except (OSError, ValueError) as exc:
        logger.warning("Failed to load hero emoji map: path=%s error=%s", path, exc)
        return {}
