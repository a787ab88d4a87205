"""
rsspanel.bot.manager — Shard manager & HTTP bootstrap
======================================================

The manager is the parent process.  It prepares the shared state (database
tables, a clean Redis mirror), works out how many shards to run, spawns one
child process per shard and then walks them through a handshake so that
only one shard logs in to the gateway at a time::

    shard → manager   created      shard is up and waiting
    manager → shard   initialize   log in now
    shard → manager   complete     logged in, guilds mirrored
    either direction  exit         tear everything down

Once the last shard reports ``complete`` the mirror is fully populated and
the dashboard API is started with uvicorn.  Every failure on the way is
fatal: it is logged, ``exit`` is broadcast to the shards and the process
exits with status 1.
"""

from __future__ import annotations

import asyncio
import logging
import multiprocessing
import sys
from collections import deque
from dataclasses import dataclass
from multiprocessing.connection import Connection, wait
from typing import NoReturn

import uvicorn
from sqlalchemy import Engine

from rsspanel.bot.shard import run_shard
from rsspanel.cache.client import connect_redis, flush_cache
from rsspanel.cache.mirror import CacheMirror
from rsspanel.config import PLACEHOLDER_TOKEN, PanelConfig
from rsspanel.constants import MSG_COMPLETE, MSG_CREATED, MSG_EXIT, MSG_INITIALIZE
from rsspanel.database.engine import create_db_engine, init_db, run_db
from rsspanel.services import discord_api

logger = logging.getLogger(__name__)

PIPE_WAIT_SECONDS = 1.0


@dataclass
class Shard:
    """The manager's handle on one child process."""

    id: int
    process: multiprocessing.process.BaseProcess | None
    conn: Connection

    def send(self, message: str) -> None:
        try:
            self.conn.send(message)
        except (BrokenPipeError, OSError) as exc:
            logger.warning("Could not send %r to shard %d: %s", message, self.id, exc)


class ShardManager:
    """Spawns the shards, runs the handshake and starts the HTTP layer.

    Parameters
    ----------
    config:
        The parsed :class:`PanelConfig`.
    config_path:
        Handed to every shard so it can load the same file.
    """

    def __init__(self, config: PanelConfig, config_path: str = "config.yaml") -> None:
        self.config = config
        self.config_path = config_path
        self.shards: dict[int, Shard] = {}
        self.shards_to_initialize: deque[Shard] = deque()
        self.shard_count = 0
        self.engine: Engine | None = None
        self.mirror: CacheMirror | None = None
        self.http_servers: list[uvicorn.Server] = []
        self.http_started = False
        self._tasks: set[asyncio.Task] = set()
        self._ctx = multiprocessing.get_context("spawn")

    @property
    def guild_count(self) -> int:
        return self.mirror.guild_count() if self.mirror is not None else 0

    # -----------------------------------------------------------------------
    # Startup
    # -----------------------------------------------------------------------
    async def start(self) -> None:
        """Boot everything, then pump shard messages until told to stop."""
        try:
            await self.prepare()
            self.spawn_shards()
        except Exception as exc:
            body = getattr(exc, "body", None)
            if body is not None:
                logger.critical("Failed to start: %s (%s)", exc, body)
            else:
                logger.critical("Failed to start: %s", exc, exc_info=exc)
            self.fatal("start failure")
        await self.pump()

    async def prepare(self) -> None:
        """Database tables, a clean mirror and the shard count."""
        token = self.config.bot.token
        if not token or token == PLACEHOLDER_TOKEN:
            raise RuntimeError("No bot token configured")

        self.engine = create_db_engine(self.config.database.uri)
        await run_db(init_db, self.engine)

        client = await asyncio.to_thread(connect_redis, self.config.redis.uri)
        flushed = await asyncio.to_thread(flush_cache, client, self.config.redis.prefix)
        logger.info("Flushed %d stale cache keys", flushed)
        self.mirror = CacheMirror(client, self.config.redis.prefix)

        self.shard_count = self.config.bot.shard_count
        if self.shard_count <= 0:
            self.shard_count = await discord_api.recommended_shard_count(token)
            logger.info("Using Discord's recommended shard count: %d", self.shard_count)

    def spawn_shards(self) -> None:
        for shard_id in range(self.shard_count):
            parent_conn, child_conn = self._ctx.Pipe()
            process = self._ctx.Process(
                target=run_shard,
                args=(shard_id, self.shard_count, child_conn, self.config_path),
                name=f"shard-{shard_id}",
                daemon=True,
            )
            process.start()
            # Only the child holds this end, so a dead shard shows up as EOF.
            child_conn.close()
            self.shards[shard_id] = Shard(shard_id, process, parent_conn)
            logger.info("Spawned shard %d/%d (pid %s)", shard_id + 1, self.shard_count, process.pid)

    # -----------------------------------------------------------------------
    # Handshake
    # -----------------------------------------------------------------------
    async def on_message(self, shard: Shard, message: str) -> None:
        if message == MSG_CREATED:
            self.shards_to_initialize.append(shard)
            if len(self.shards_to_initialize) == self.shard_count:
                self.initialize_next_shard()
        elif message == MSG_COMPLETE:
            logger.info("Shard %d completed initialization", shard.id)
            if self.shards_to_initialize:
                self.initialize_next_shard()
            else:
                logger.info("All %d shards initialized (%d guilds)", self.shard_count, self.guild_count)
                await self.start_http()
        elif message == MSG_EXIT:
            self.fatal(f"shard {shard.id} requested exit")
        else:
            logger.warning("Unknown message from shard %d: %r", shard.id, message)

    def initialize_next_shard(self) -> None:
        shard = self.shards_to_initialize.popleft()
        logger.info("Initializing shard %d", shard.id)
        shard.send(MSG_INITIALIZE)

    def broadcast(self, message: str) -> None:
        for shard in self.shards.values():
            shard.send(message)

    def fatal(self, reason: str) -> NoReturn:
        logger.critical("Shutting down: %s", reason)
        self.broadcast(MSG_EXIT)
        sys.exit(1)

    async def pump(self) -> None:
        """Dispatch pipe messages until every shard connection is gone."""
        while self.shards:
            by_conn = {shard.conn: shard for shard in self.shards.values()}
            ready = await asyncio.to_thread(wait, list(by_conn), PIPE_WAIT_SECONDS)
            for conn in ready:
                shard = by_conn[conn]
                try:
                    message = conn.recv()
                except EOFError:
                    self.fatal(f"shard {shard.id} disconnected")
                await self.on_message(shard, message)

    # -----------------------------------------------------------------------
    # HTTP
    # -----------------------------------------------------------------------
    def build_servers(self) -> list[uvicorn.Server]:
        from rsspanel.api.main import create_app

        app = create_app(self.config, self.engine, self.mirror)
        if self.config.http.trust_proxy:
            proxy = {"proxy_headers": True, "forwarded_allow_ips": "*"}
        else:
            proxy = {"proxy_headers": False}

        servers = [
            uvicorn.Server(uvicorn.Config(
                app, host="0.0.0.0", port=self.config.http.port, log_config=None, **proxy,
            ))
        ]
        https = self.config.https
        if https.enabled:
            servers.append(uvicorn.Server(uvicorn.Config(
                app,
                host="0.0.0.0",
                port=https.port,
                ssl_keyfile=https.private_key,
                ssl_certfile=https.certificate,
                ssl_ca_certs=https.chain,
                log_config=None,
                **proxy,
            )))
        return servers

    async def start_http(self) -> None:
        """Start uvicorn in the background; a failed bind is fatal."""
        if self.http_started:
            return
        self.http_started = True
        try:
            self.http_servers = self.build_servers()
        except Exception as exc:
            logger.critical("Failed to build the HTTP app: %s", exc, exc_info=exc)
            self.fatal("HTTP start failure")
        for server in self.http_servers:
            task = asyncio.create_task(self._serve(server))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _serve(self, server: uvicorn.Server) -> None:
        port = server.config.port
        logger.info("HTTP server listening on port %d", port)
        try:
            await server.serve()
        except (OSError, SystemExit) as exc:
            # uvicorn exits the process itself when the bind fails.
            logger.critical("HTTP server on port %d failed: %s", port, exc)
            self.fatal("HTTP start failure")
        if not server.started:
            self.fatal(f"HTTP server on port {port} never started")
