"""
rsspanel.bot.cogs.members — Member & user mirroring
====================================================

Requires the GUILD_MEMBERS privileged intent.  Members are stored only
while they hold ADMINISTRATOR or MANAGE_CHANNELS, so an update that strips
those permissions removes them from the mirror.
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


class Members(commands.Cog, name="Members"):
    """Mirrors member joins, leaves and permission changes, and user edits."""

    def __init__(self, bot: PanelBot) -> None:
        self.bot = bot

    @commands.Cog.listener()
    async def on_member_join(self, member: discord.Member) -> None:
        try:
            await asyncio.to_thread(self._recognize, member)
        except Exception:
            logger.exception("Error mirroring member join for %s", member.id)

    @commands.Cog.listener()
    async def on_member_remove(self, member: discord.Member) -> None:
        try:
            await asyncio.to_thread(
                self.bot.mirror.forget_member, member.id, member.guild.id
            )
        except Exception:
            logger.exception("Error forgetting member %s", member.id)

    @commands.Cog.listener()
    async def on_member_update(self, before: discord.Member, after: discord.Member) -> None:
        if before.roles == after.roles:
            return
        try:
            await asyncio.to_thread(self.bot.mirror.recognize_member, after)
        except Exception:
            logger.exception("Error mirroring member update for %s", after.id)

    @commands.Cog.listener()
    async def on_user_update(self, before: discord.User, after: discord.User) -> None:
        try:
            await asyncio.to_thread(self.bot.mirror.update_user, before, after)
        except Exception:
            logger.exception("Error mirroring user update for %s", after.id)

    def _recognize(self, member: discord.Member) -> None:
        self.bot.mirror.recognize_user(member)
        self.bot.mirror.recognize_member(member)


async def setup(bot: PanelBot) -> None:
    await bot.add_cog(Members(bot))
