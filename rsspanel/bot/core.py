"""
rsspanel.bot.core — Per-shard bot instance & cog loader
========================================================

One :class:`PanelBot` runs inside each shard process.  It owns nothing but
the gateway connection: every guild, channel, role, member and user it can
see is written to the Redis :class:`~rsspanel.cache.mirror.CacheMirror` so
the dashboard API can answer from Redis instead of Discord.

Lifecycle:

1. ``setup_hook`` loads the cogs in :data:`EXTENSIONS`.
2. ``on_ready`` drops whatever a previous run of this shard left in the
   mirror, recognizes every visible guild and the bot user, then reports
   ``complete`` to the shard manager over the pipe.
3. The cogs keep the mirror current from gateway events.
"""

from __future__ import annotations

import asyncio
import logging
from multiprocessing.connection import Connection

import discord
from discord.ext import commands

from rsspanel.cache.mirror import CacheMirror
from rsspanel.config import PanelConfig
from rsspanel.constants import MSG_COMPLETE

logger = logging.getLogger(__name__)

EXTENSIONS: list[str] = [
    "rsspanel.bot.cogs.guilds",
    "rsspanel.bot.cogs.channels",
    "rsspanel.bot.cogs.members",
]


class PanelBot(commands.Bot):
    """A ``commands.Bot`` bound to one shard, one mirror and one pipe.

    Parameters
    ----------
    cfg:
        The parsed :class:`PanelConfig`.
    mirror:
        The Redis cache mirror this shard writes to.
    shard_id, shard_count:
        This process's shard and the total the manager spawned.
    conn:
        The child end of the manager's pipe; ``None`` when run standalone.
    """

    def __init__(
        self,
        cfg: PanelConfig,
        mirror: CacheMirror,
        shard_id: int,
        shard_count: int,
        conn: Connection | None = None,
    ) -> None:
        # No message content: the panel never reads messages.
        intents = discord.Intents.none()
        intents.guilds = True
        intents.members = True  # Privileged: needed for manager permissions

        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            shard_id=shard_id,
            shard_count=shard_count,
            chunk_guilds_at_startup=True,
        )

        self.cfg = cfg
        self.mirror = mirror
        self.conn = conn
        self._completed = False

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

    async def on_ready(self) -> None:
        """Rebuild this shard's part of the mirror, then tell the manager."""
        assert self.user is not None  # guaranteed after on_ready
        if self._completed:
            # Reconnects fire on_ready again; the cogs kept the mirror current.
            logger.info("Shard %s resumed as %s", self.shard_id, self.user)
            return

        logger.info(
            "Shard %s logged in as %s (ID: %s) with %d guilds",
            self.shard_id, self.user, self.user.id, len(self.guilds),
        )
        await asyncio.to_thread(self.rebuild_mirror)
        self._completed = True
        self.report(MSG_COMPLETE)

    def rebuild_mirror(self) -> int:
        """Flush this shard's stale guilds and recognize the live ones."""
        self.mirror.flush_shard(self.shard_id)
        for guild in self.guilds:
            self.mirror.recognize_guild(guild)
        for user in self.users:
            self.mirror.recognize_user(user)
        assert self.user is not None
        self.mirror.recognize_user(self.user)
        self.mirror.set_bot_user_id(self.user.id)
        logger.info(
            "Shard %s mirrored %d guilds and %d users",
            self.shard_id, len(self.guilds), len(self.users),
        )
        return len(self.guilds)

    def report(self, message: str) -> None:
        """Send a handshake message to the shard manager, if attached."""
        if self.conn is None:
            return
        try:
            self.conn.send(message)
        except (BrokenPipeError, OSError) as exc:
            logger.error("Shard %s could not report %r: %s", self.shard_id, message, exc)
