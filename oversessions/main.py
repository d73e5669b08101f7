from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path

from aiohttp import web

from oversessions.bot import Bot
from oversessions.config import Config, load_battle_tag_map, load_hero_emoji_map
from oversessions.health import start_health_server
from oversessions.session import SessionRegistry
from oversessions.stats_client import StatsClient
from oversessions.tracker import SessionTracker

logger = logging.getLogger(__name__)
LOG_FORMAT = "%(asctime)s [%(name)s] %(message)s"


def _parse_sync_guild_id(raw_value: str | None) -> int | None:
    if raw_value is None:
        return None
    text = raw_value.strip()
    if not text:
        return None
    try:
        guild_id = int(text)
    except ValueError:
        logger.warning("Invalid DISCORD_GUILD_ID value (not an integer): %r", raw_value)
        return None
    if guild_id <= 0:
        logger.warning("Invalid DISCORD_GUILD_ID value (must be > 0): %r", raw_value)
        return None
    return guild_id


def _log_file_name(now: time.struct_time | None = None) -> str:
    return time.strftime("oversessions.log.%Y-%m-%d-%H%M%S", now or time.localtime())


def configure_logging(config: Config) -> Path | None:
    level = logging.DEBUG if config.debug else logging.INFO
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    log_path: Path | None = None
    if config.log_dir is not None:
        config.log_dir.mkdir(parents=True, exist_ok=True)
        log_path = config.log_dir / _log_file_name()
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)
    # discord.py is chatty at DEBUG
    logging.getLogger("discord").setLevel(logging.INFO)
    return log_path


def build_tracker(config: Config, stats: StatsClient) -> SessionTracker:
    battle_tags = load_battle_tag_map(config.battle_tag_file)
    registry = SessionRegistry.from_battle_tags(battle_tags)
    logger.info("Loaded BattleTags: count=%d", len(battle_tags))
    return SessionTracker(
        registry,
        stats,
        target_game=config.target_game,
        command_timeout=config.command_timeout_seconds,
        max_attempts=config.max_stats_attempts,
        retry_interval=config.retry_interval_seconds,
        recent_window=config.recent_window_seconds,
        notify_no_change=config.notify_no_change,
        pending_messages=config.pending_messages,
        emoji_map=load_hero_emoji_map(config.hero_emoji_file),
    )


async def main() -> None:
    config = Config.from_env()
    log_path = configure_logging(config)
    if log_path is not None:
        logger.info("Logging to file: path=%s", log_path)

    stats = StatsClient(config.stats_api_base_url, inter_call_delay=config.inter_call_delay_seconds)
    tracker = build_tracker(config, stats)

    bot = Bot(tracker, channel_pattern=config.channel_pattern)
    bot.sync_guild_id = _parse_sync_guild_id(config.sync_guild_id_raw)
    if bot.sync_guild_id is not None:
        logger.info("Guild slash command sync enabled. guild_id=%s", bot.sync_guild_id)

    health_runner: web.AppRunner | None = None
    if config.enable_health:
        health_runner = await start_health_server(tracker.registry, config.health_port)

    logger.info("Bot starting, connecting...")
    try:
        await bot.start(config.discord_bot_token)
    finally:
        await tracker.shutdown()
        if not bot.is_closed():
            await bot.close()
        await stats.close()
        if health_runner is not None:
            await health_runner.cleanup()
        logger.info("Disconnected from Discord")


if __name__ == "__main__":
    asyncio.run(main())
