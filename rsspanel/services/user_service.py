"""
rsspanel.services.user_service — Logged-in user identity and guild list
========================================================================

``/users/@me`` and ``/users/@me/guilds`` are rate limited per OAuth token,
so both are kept in the ``web_cache`` table for a few minutes per user.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import Engine

from rsspanel.cache.mirror import CacheMirror
from rsspanel.constants import (
    GUILDS_CACHE_SECONDS,
    USER_CACHE_SECONDS,
    has_manage_permission,
)
from rsspanel.database.engine import get_session, run_db
from rsspanel.database.models import WebCache
from rsspanel.services import discord_api

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# WebCache helpers
# ---------------------------------------------------------------------------
def get_web_cache(engine: Engine, user_id: str, type_: str) -> dict | list | None:
    """Return cached data, or ``None`` when absent or expired."""
    with get_session(engine) as session:
        row = session.get(WebCache, (str(user_id), type_))
        if row is None:
            return None
        expires_at = row.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        if expires_at < datetime.now(UTC):
            session.delete(row)
            return None
        return row.data


def store_web_cache(engine: Engine, user_id: str, type_: str, data, ttl_seconds: int) -> None:
    expires_at = datetime.now(UTC) + timedelta(seconds=ttl_seconds)
    with get_session(engine) as session:
        row = session.get(WebCache, (str(user_id), type_))
        if row is None:
            session.add(WebCache(id=str(user_id), type=type_, data=data, expires_at=expires_at))
        else:
            row.data = data
            row.expires_at = expires_at


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
async def get_user(engine: Engine, user_id: str, access_token: str) -> dict:
    cached = await run_db(get_web_cache, engine, user_id, "user")
    if cached is not None:
        return cached
    user = await discord_api.get_json("/users/@me", bearer=access_token, action="Fetch user")
    await run_db(store_web_cache, engine, user_id, "user", user, USER_CACHE_SECONDS)
    return user


async def get_user_guilds(engine: Engine, user_id: str, access_token: str) -> list[dict]:
    cached = await run_db(get_web_cache, engine, user_id, "guilds")
    if cached is not None:
        return cached
    guilds = await discord_api.get_json(
        "/users/@me/guilds", bearer=access_token, action="Fetch user guilds"
    )
    await run_db(store_web_cache, engine, user_id, "guilds", guilds, GUILDS_CACHE_SECONDS)
    return guilds


def can_manage_guild(guild: dict) -> bool:
    """True if a partial guild from ``/users/@me/guilds`` grants feed editing."""
    return has_manage_permission(int(guild.get("permissions", 0)), bool(guild.get("owner")))


def manageable_guilds(guilds: list[dict], mirror: CacheMirror) -> list[dict]:
    """Guilds the user can manage *and* the bot is a member of."""
    bot_guilds = mirror.guild_ids()
    return [g for g in guilds if can_manage_guild(g) and str(g["id"]) in bot_guilds]


def get_bot_user(mirror: CacheMirror) -> dict | None:
    user = mirror.fetch_bot_user()
    return user.to_dict() if user else None
