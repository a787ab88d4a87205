"""
rsspanel.api.rate_limit — Sliding-window throttle for expensive endpoints
==========================================================================

Sending a test article posts a real message into a guild channel, so the
endpoint is limited to one request per 10 seconds per user and feed.
State lives in the ``rate_limit_events`` table so it survives restarts
and is shared by every worker.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from fastapi import Depends, HTTPException, status
from sqlalchemy import Engine, delete, select
from sqlalchemy.orm import Session

from rsspanel.api.deps import get_engine, require_auth
from rsspanel.database.models import RateLimitEvent
from rsspanel.services.session_service import SessionData

logger = logging.getLogger(__name__)

SEND_MESSAGE_LIMIT = 1
SEND_MESSAGE_WINDOW_SECONDS = 10


class SlidingWindowLimiter:
    """Sliding-window rate limiter keyed by an arbitrary string."""

    def __init__(self, max_requests: int, window_seconds: int, *, engine: Engine) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.engine = engine

    def _normalize_dt(self, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    def check(self, key: str) -> tuple[bool, dict[str, Any]]:
        """Return ``(allowed, info)``; info carries remaining/reset/limit."""
        now = datetime.now(UTC)
        cutoff = now - timedelta(seconds=self.window_seconds)

        with Session(self.engine) as session:
            session.execute(
                delete(RateLimitEvent).where(
                    RateLimitEvent.key == key,
                    RateLimitEvent.timestamp < cutoff,
                )
            )
            timestamps = session.scalars(
                select(RateLimitEvent.timestamp)
                .where(RateLimitEvent.key == key)
                .order_by(RateLimitEvent.timestamp.asc())
            ).all()
            session.commit()

        count = len(timestamps)
        if count >= self.max_requests:
            oldest = self._normalize_dt(timestamps[0])
            reset = (oldest + timedelta(seconds=self.window_seconds) - now).total_seconds()
            return False, {
                "remaining": 0,
                "reset": max(1, int(reset) + 1),
                "limit": self.max_requests,
            }
        return True, {
            "remaining": self.max_requests - count,
            "reset": self.window_seconds,
            "limit": self.max_requests,
        }

    def record(self, key: str) -> None:
        with Session(self.engine) as session:
            session.add(RateLimitEvent(key=key, timestamp=datetime.now(UTC)))
            session.commit()

    def reset(self, key: str | None = None) -> None:
        """Clear state for *key*, or for every key when ``None``."""
        with Session(self.engine) as session:
            stmt = delete(RateLimitEvent)
            if key is not None:
                stmt = stmt.where(RateLimitEvent.key == key)
            session.execute(stmt)
            session.commit()


async def send_message_rate_limit(
    feed_id: int,
    session: SessionData = Depends(require_auth),
    engine: Engine = Depends(get_engine),
) -> None:
    """Allow one test send per user and feed every 10 seconds."""
    limiter = SlidingWindowLimiter(
        SEND_MESSAGE_LIMIT, SEND_MESSAGE_WINDOW_SECONDS, engine=engine
    )
    key = f"send_message:{session.user_id}:{feed_id}"
    allowed, info = await asyncio.to_thread(limiter.check, key)
    if not allowed:
        logger.warning("Send-message rate limit hit for %s", key)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Wait 10 seconds after sending a message to try again",
            headers={"Retry-After": str(info["reset"])},
        )
    await asyncio.to_thread(limiter.record, key)
