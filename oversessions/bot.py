from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

import discord
from discord import app_commands

from oversessions.config import is_valid_battle_tag
from oversessions.messages import build_rank_message

if TYPE_CHECKING:
    from oversessions.tracker import SessionTracker

logger = logging.getLogger(__name__)


def current_game(member: discord.Member) -> str | None:
    """Name of the game ``member`` is playing, if any."""
    for activity in member.activities or ():
        if isinstance(activity, discord.Game) or getattr(activity, "type", None) == discord.ActivityType.playing:
            name = getattr(activity, "name", None)
            if name:
                return name
    return None


def pick_announcement_channel(
    channels: list[discord.TextChannel],
    pattern: str,
) -> discord.TextChannel | None:
    """First text channel whose name matches ``pattern``, else the first one."""
    regex = re.compile(pattern)
    fallback: discord.TextChannel | None = None
    for channel in channels:
        if regex.match(channel.name):
            logger.debug("Found announcement channel: channel_id=%s name=%s", channel.id, channel.name)
            return channel
        if fallback is None:
            fallback = channel
    return fallback


class ChannelPublisher:
    def __init__(self) -> None:
        self.channel: discord.abc.Messageable | None = None

    async def send(self, content: str) -> discord.Message | None:
        if self.channel is None:
            logger.error("No text channel for message sending")
            return None
        return await self.channel.send(content)

    async def edit(self, handle: discord.Message, content: str) -> None:
        await handle.edit(content=content)


class Bot(discord.Client):
    def __init__(self, tracker: SessionTracker, *, channel_pattern: str = r"^over.*$") -> None:
        intents = discord.Intents.default()
        intents.presences = True
        intents.members = True
        super().__init__(intents=intents)
        self.tree = app_commands.CommandTree(self)
        self.tracker = tracker
        self.publisher = ChannelPublisher()
        self.channel_pattern = channel_pattern
        self.sync_guild_id: int | None = None
        self._seeded = False
        tracker.publisher = self.publisher

    async def _sync_application_commands(self) -> None:
        if self.sync_guild_id is not None:
            try:
                guild = discord.Object(id=self.sync_guild_id)
                self.tree.copy_global_to(guild=guild)
                guild_commands = await self.tree.sync(guild=guild)
                logger.info(
                    "Guild slash commands synced. guild_id=%s count=%d",
                    self.sync_guild_id,
                    len(guild_commands),
                )
            except Exception:
                logger.exception("Guild slash command sync failed. guild_id=%s", self.sync_guild_id)

        global_commands = await self.tree.sync()
        logger.info("Global slash commands synced. count=%d", len(global_commands))

    async def setup_hook(self) -> None:
        @self.tree.command(name="battletag", description="Link your BattleTag for session reports")
        @app_commands.describe(battle_tag="BattleTag, e.g. Player#1234")
        async def battletag_command(interaction: discord.Interaction, battle_tag: str) -> None:
            await self.handle_battletag(interaction, battle_tag)

        @self.tree.command(name="sr", description="Show the last known competitive rank")
        @app_commands.describe(member="Member to look up (default: you)")
        async def sr_command(interaction: discord.Interaction, member: discord.Member | None = None) -> None:
            await self.handle_sr(interaction, member)

        await self._sync_application_commands()

    async def handle_battletag(self, interaction: discord.Interaction, battle_tag: str) -> None:
        value = battle_tag.strip()
        if not is_valid_battle_tag(value):
            await interaction.response.send_message(
                "That does not look like a BattleTag (expected Name#1234).", ephemeral=True
            )
            return
        # Binding waits on the user lock, which a reconciliation may hold for minutes
        await interaction.response.defer(ephemeral=True, thinking=True)
        await self.tracker.registry.bind_battle_tag(str(interaction.user.id), value)
        await interaction.followup.send(f"BattleTag set to **{value}**.", ephemeral=True)

    async def handle_sr(self, interaction: discord.Interaction, member: discord.abc.User | None) -> None:
        target = member or interaction.user
        await interaction.response.defer(thinking=True)
        try:
            snapshot = await self.tracker.current_snapshot(str(target.id))
        except Exception as exc:
            logger.exception("Failed to look up rank: user_id=%s", target.id)
            await interaction.followup.send(f"Rank lookup failed: {exc}")
            return

        if snapshot is None:
            await interaction.followup.send(f"No competitive stats known for **{target.display_name}**.")
            return
        await interaction.followup.send(build_rank_message(target.display_name, snapshot.comp_rank))

    async def on_ready(self) -> None:
        logger.info("Bot ready: %s", self.user)
        if self._seeded:
            return
        self._seeded = True

        guild = self.guilds[0] if self.guilds else None
        if guild is None:
            logger.error("Bot is not a member of any guild")
            return
        logger.debug("Guild data: guild_id=%s name=%s", guild.id, guild.name)

        channel = pick_announcement_channel(list(guild.text_channels), self.channel_pattern)
        if channel is None:
            logger.error("No text channel found: guild_id=%s", guild.id)
        self.publisher.channel = channel

        for member in guild.members:
            await self.tracker.seed_presence(
                str(member.id),
                member.display_name,
                current_game(member),
                is_bot=member.bot,
            )
        await self.tracker.initialize_active_players()

    async def on_presence_update(self, before: discord.Member, after: discord.Member) -> None:
        logger.debug("Presence update: user_id=%s", after.id)
        if after.bot:
            return
        self.tracker.dispatch_presence(str(after.id), after.display_name, current_game(after))
