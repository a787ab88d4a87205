"""
rsspanel.database.engine — Database Connection & Async Helper
==============================================================

SQLAlchemy + psycopg2 is synchronous while both the API and the shards run
on an ``asyncio`` loop.  Every DB call made from async code goes through
:func:`run_db`, which ships the synchronous function to a worker thread via
``asyncio.to_thread()`` so the event loop is never blocked.

Usage::

    from rsspanel.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine(cfg.database.uri)
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    # Inside an async handler:
    feeds = await run_db(list_feeds, engine, guild_id)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session

from rsspanel.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(url: str) -> Engine:
    """Build a SQLAlchemy :class:`Engine` for *url*.

    The shard manager builds one engine and hands it to the API, whose
    worker threads share the pool.

    Raises
    ------
    RuntimeError
        If *url* is empty.
    """
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    engine = create_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,   # Reconnect stale connections automatically
        pool_timeout=10,
        pool_recycle=3600,
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`rsspanel.database.models`.

    .. note::

        In production the schema is managed by Alembic (``alembic upgrade
        head``).  ``create_all`` is retained for dev/test environments
        where Alembic may not have run.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """Yield a :class:`Session` that auto-commits on success and rolls back
    on exception.
    """
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** database function on a background thread.

    ::

        result = await run_db(my_sync_db_function, engine, guild_id)
    """
    return await asyncio.to_thread(func, *args, **kwargs)
