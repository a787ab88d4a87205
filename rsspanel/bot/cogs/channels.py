"""
rsspanel.bot.cogs.channels — Text channel mirroring
====================================================

Only text channels are mirrored; feeds can't be delivered anywhere else.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

if TYPE_CHECKING:
    from rsspanel.bot.core import PanelBot

logger = logging.getLogger(__name__)


class Channels(commands.Cog, name="Channels"):
    """Mirrors GUILD_CHANNEL_CREATE / UPDATE / DELETE for text channels."""

    def __init__(self, bot: PanelBot) -> None:
        self.bot = bot

    @commands.Cog.listener()
    async def on_guild_channel_create(self, channel: discord.abc.GuildChannel) -> None:
        if not isinstance(channel, discord.TextChannel):
            return
        try:
            await asyncio.to_thread(self.bot.mirror.recognize_channel, channel)
        except Exception:
            logger.exception("Error mirroring channel create for %s", channel.id)

    @commands.Cog.listener()
    async def on_guild_channel_update(
        self,
        before: discord.abc.GuildChannel,
        after: discord.abc.GuildChannel,
    ) -> None:
        if not isinstance(after, discord.TextChannel):
            return
        try:
            await asyncio.to_thread(self.bot.mirror.update_channel, before, after)
        except Exception:
            logger.exception("Error mirroring channel update for %s", after.id)

    @commands.Cog.listener()
    async def on_guild_channel_delete(self, channel: discord.abc.GuildChannel) -> None:
        if not isinstance(channel, discord.TextChannel):
            return
        try:
            await asyncio.to_thread(
                self.bot.mirror.forget_channel, channel.id, channel.guild.id
            )
        except Exception:
            logger.exception("Error forgetting channel %s", channel.id)


async def setup(bot: PanelBot) -> None:
    await bot.add_cog(Channels(bot))
