"""
rsspanel.bot.shard — Entry point of a single shard process
===========================================================

The shard manager spawns :func:`run_shard` once per shard.  The child:

1. Connects to Redis and reports ``created``.
2. Blocks until the manager answers ``initialize`` (or ``exit``), so shards
   log in one at a time.
3. Logs in with its shard id/count; :class:`PanelBot` reports ``complete``
   from ``on_ready``.
4. Watches the pipe and closes the bot when the manager says ``exit``.

Any failure is reported as ``exit`` so the manager can tear everything
down.
"""

from __future__ import annotations

import asyncio
import logging
from multiprocessing.connection import Connection

from dotenv import load_dotenv

from rsspanel.bot.core import PanelBot
from rsspanel.cache.client import connect_redis
from rsspanel.cache.mirror import CacheMirror
from rsspanel.config import load_config
from rsspanel.constants import (
    LOG_DATEFMT,
    LOG_FORMAT,
    MSG_CREATED,
    MSG_EXIT,
    MSG_INITIALIZE,
)

logger = logging.getLogger(__name__)

PIPE_POLL_SECONDS = 1.0


async def watch_manager(bot: PanelBot, conn: Connection) -> None:
    """Close *bot* once the manager sends ``exit`` or the pipe breaks."""
    while not bot.is_closed():
        if not await asyncio.to_thread(conn.poll, PIPE_POLL_SECONDS):
            continue
        try:
            message = conn.recv()
        except EOFError:
            logger.warning("Manager pipe closed; shutting down shard %s", bot.shard_id)
            break
        if message == MSG_EXIT:
            logger.info("Manager requested exit for shard %s", bot.shard_id)
            break
        logger.debug("Ignoring manager message %r", message)
    await bot.close()


async def serve(bot: PanelBot, conn: Connection) -> None:
    """Run *bot* until it closes, alongside the pipe watcher."""
    async with bot:
        watcher = asyncio.create_task(watch_manager(bot, conn))
        try:
            await bot.start(bot.cfg.bot.token)
        finally:
            watcher.cancel()


def run_shard(
    shard_id: int,
    shard_count: int,
    conn: Connection,
    config_path: str = "config.yaml",
) -> None:
    """Target of the spawned shard process."""
    logging.basicConfig(
        level=logging.INFO,
        format=f"[shard {shard_id}] {LOG_FORMAT}",
        datefmt=LOG_DATEFMT,
    )
    load_dotenv()

    try:
        cfg = load_config(config_path)
        mirror = CacheMirror(connect_redis(cfg.redis.uri), cfg.redis.prefix)
    except Exception:
        logger.exception("Shard %d failed to start", shard_id)
        conn.send(MSG_EXIT)
        return

    conn.send(MSG_CREATED)
    try:
        message = conn.recv()
    except EOFError:
        logger.warning("Manager went away before shard %d was initialized", shard_id)
        return
    if message != MSG_INITIALIZE:
        logger.info("Shard %d received %r before initializing; exiting", shard_id, message)
        return

    bot = PanelBot(cfg, mirror, shard_id=shard_id, shard_count=shard_count, conn=conn)
    logger.info("Initializing shard %d/%d", shard_id + 1, shard_count)
    try:
        asyncio.run(serve(bot, conn))
    except Exception:
        logger.exception("Shard %d crashed", shard_id)
        bot.report(MSG_EXIT)
