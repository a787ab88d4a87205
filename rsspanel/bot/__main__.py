"""
rsspanel.bot.__main__ — Entry point for ``python -m rsspanel.bot``
===================================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (soft settings).
3. Hand the config to the :class:`ShardManager`, which prepares the
   database and cache, spawns the shards and finally serves the panel.

Run with::

    rsspanel --config config.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv

from rsspanel.bot.manager import ShardManager
from rsspanel.config import ConfigError, load_config
from rsspanel.constants import LOG_DATEFMT, LOG_FORMAT, MSG_EXIT

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
logger = logging.getLogger("rsspanel")


def main(argv: list[str] | None = None) -> None:
    """Bootstrap and run the shard manager."""
    parser = argparse.ArgumentParser(prog="rsspanel")
    parser.add_argument("--config", default="config.yaml", help="path to config.yaml")
    args = parser.parse_args(argv)

    # 1. Environment variables (secrets).
    load_dotenv()

    # 2. Soft configuration.
    try:
        cfg = load_config(args.config)
    except (ConfigError, FileNotFoundError) as exc:
        logger.critical("Invalid configuration: %s", exc)
        sys.exit(1)
    logger.info("Config loaded — client %s, shards %s", cfg.bot.client_id, cfg.bot.shard_count or "auto")

    # 3. Shards + HTTP (blocks until Ctrl+C or a fatal error).
    manager = ShardManager(cfg, config_path=args.config)
    try:
        asyncio.run(manager.start())
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")
        manager.broadcast(MSG_EXIT)


if __name__ == "__main__":
    main()
