"""
rsspanel.api.deps — FastAPI dependency injection
=================================================

Config, engine and cache mirror live on ``app.state`` (set by
:func:`rsspanel.api.main.create_app`), so the same process-wide objects
the shard manager built are shared with every request.
"""

from __future__ import annotations

import logging
import os
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import Engine

from rsspanel.cache.mirror import CacheMirror
from rsspanel.config import PanelConfig
from rsspanel.constants import SESSION_COOKIE
from rsspanel.database.engine import run_db
from rsspanel.services import auth_service, session_service, user_service
from rsspanel.services.discord_api import DiscordResponseError
from rsspanel.services.session_service import SessionData

logger = logging.getLogger(__name__)

_WEAK_SECRETS = frozenset({
    "drssweb-secret-change-me",
    "change-me",
    "secret",
    "keyboard cat",
    "",
})

_MIN_SECRET_LENGTH = 32


def _load_session_secret() -> str:
    """Load and validate SESSION_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("SESSION_SECRET", "")
    if not secret:
        raise RuntimeError(
            "SESSION_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"SESSION_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"SESSION_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


SESSION_SECRET: str = _load_session_secret()


def get_config(request: Request) -> PanelConfig:
    return request.app.state.config


def get_engine(request: Request) -> Engine:
    return request.app.state.engine


def get_mirror(request: Request) -> CacheMirror:
    return request.app.state.mirror


async def get_web_session(
    request: Request,
    engine: Annotated[Engine, Depends(get_engine)],
) -> SessionData | None:
    """Resolve the session cookie to its server-side row, if any."""
    cookie = request.cookies.get(SESSION_COOKIE)
    if not cookie:
        return None
    sid = session_service.decode_session_cookie(cookie, SESSION_SECRET)
    if sid is None:
        return None
    session = await run_db(session_service.load_session, engine, sid)
    if session is not None and session.identity:
        # Read back by the access-log middleware
        request.state.identity = session.identity
    return session


async def require_auth(
    session: Annotated[SessionData | None, Depends(get_web_session)],
    engine: Annotated[Engine, Depends(get_engine)],
    cfg: Annotated[PanelConfig, Depends(get_config)],
) -> SessionData:
    """Require a logged-in session and make sure its OAuth token is fresh."""
    if not auth_service.is_authenticated(session):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Unauthorized")
    token = await auth_service.get_auth_token(session.token, cfg)
    if token is not session.token:
        await run_db(session_service.save_session_token, engine, session.sid, token)
        session.token = token
    return session


async def require_guild_access(
    guild_id: int,
    session: Annotated[SessionData, Depends(require_auth)],
    engine: Annotated[Engine, Depends(get_engine)],
    mirror: Annotated[CacheMirror, Depends(get_mirror)],
) -> dict:
    """Require the bot to be in *guild_id* and the user to be able to manage it.

    Returns the cached guild snapshot.
    """
    cached = mirror.fetch_guild(guild_id)
    if cached is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Unknown guild")

    member = mirror.fetch_member(guild_id, session.user_id)
    if member is not None and member.can_manage:
        return cached.to_dict()

    try:
        guilds = await user_service.get_user_guilds(
            engine, session.user_id, session.token["access_token"]
        )
    except DiscordResponseError:
        logger.warning("Could not verify guild %d access for %s", guild_id, session.user_id)
        raise
    for guild in guilds:
        if str(guild.get("id")) == str(guild_id) and user_service.can_manage_guild(guild):
            return cached.to_dict()
    raise HTTPException(status.HTTP_403_FORBIDDEN, "Missing MANAGE_CHANNELS permission")
