"""
rsspanel.bot.cogs.guilds — Guild & role mirroring
==================================================

Keeps ``drss_guild_*`` and ``drss_role_*`` in step with GUILD_CREATE /
GUILD_DELETE / GUILD_UPDATE and the GUILD_ROLE_* gateway events.
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


class Guilds(commands.Cog, name="Guilds"):
    """Mirrors guild joins, leaves and edits, and role changes."""

    def __init__(self, bot: PanelBot) -> None:
        self.bot = bot

    @commands.Cog.listener()
    async def on_guild_join(self, guild: discord.Guild) -> None:
        try:
            await asyncio.to_thread(self.bot.mirror.recognize_guild, guild)
            logger.info("Joined guild %s (ID: %d)", guild.name, guild.id)
        except Exception:
            logger.exception("Error mirroring guild join for %s", guild.id)

    @commands.Cog.listener()
    async def on_guild_remove(self, guild: discord.Guild) -> None:
        try:
            await asyncio.to_thread(self.bot.mirror.forget_guild, guild.id)
            logger.info("Left guild %s (ID: %d)", guild.name, guild.id)
        except Exception:
            logger.exception("Error forgetting guild %s", guild.id)

    @commands.Cog.listener()
    async def on_guild_update(self, before: discord.Guild, after: discord.Guild) -> None:
        try:
            await asyncio.to_thread(self.bot.mirror.update_guild, before, after)
            if before.owner_id != after.owner_id:
                await asyncio.to_thread(
                    self.bot.mirror.refresh_members, after, before.owner_id, after.owner_id
                )
        except Exception:
            logger.exception("Error mirroring guild update for %s", after.id)

    # -----------------------------------------------------------------------
    # Roles
    # -----------------------------------------------------------------------
    @commands.Cog.listener()
    async def on_guild_role_create(self, role: discord.Role) -> None:
        try:
            await asyncio.to_thread(self.bot.mirror.recognize_role, role)
        except Exception:
            logger.exception("Error mirroring role create for %s", role.id)

    @commands.Cog.listener()
    async def on_guild_role_update(self, before: discord.Role, after: discord.Role) -> None:
        try:
            await asyncio.to_thread(self.bot.mirror.update_role, before, after)
            # Permission edits change who may manage the guild's feeds.
            if before.permissions != after.permissions:
                for member in after.members:
                    await asyncio.to_thread(self.bot.mirror.recognize_member, member)
        except Exception:
            logger.exception("Error mirroring role update for %s", after.id)

    @commands.Cog.listener()
    async def on_guild_role_delete(self, role: discord.Role) -> None:
        try:
            await asyncio.to_thread(self.bot.mirror.forget_role, role.id, role.guild.id)
            # No member update is dispatched for permissions lost with the role.
            await asyncio.to_thread(self.bot.mirror.refresh_members, role.guild)
        except Exception:
            logger.exception("Error forgetting role %s", role.id)


async def setup(bot: PanelBot) -> None:
    await bot.add_cog(Guilds(bot))
