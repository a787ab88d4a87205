"""
rsspanel.cache.client — Redis connection & keyspace flush
==========================================================
"""

from __future__ import annotations

import logging

import redis

logger = logging.getLogger(__name__)


def connect_redis(uri: str) -> redis.Redis:
    """Open a Redis client for *uri* and verify it answers ``PING``.

    Raises
    ------
    redis.exceptions.ConnectionError
        If the server is unreachable.
    """
    client = redis.Redis.from_url(uri, decode_responses=True)
    client.ping()
    logger.info("Redis connected → %s", client.connection_pool.connection_kwargs.get("host"))
    return client


def flush_cache(client: redis.Redis, prefix: str) -> int:
    """Delete every key under *prefix* in a single pipeline.

    Returns the number of keys removed (0 when nothing matched).
    """
    keys = list(client.scan_iter(match=f"{prefix}*"))
    if not keys:
        return 0
    pipe = client.pipeline()
    for key in keys:
        pipe.delete(key)
    pipe.execute()
    logger.debug("Flushed %d cache keys under %r", len(keys), prefix)
    return len(keys)
