"""
rsspanel.services.auth_service — Discord OAuth2 code exchange & token lifecycle
================================================================================

Token objects are Discord's token response plus an ``expires_at`` epoch
(seconds), added by :func:`format_access_token`::

    {"access_token": "...", "refresh_token": "...", "expires_in": 604800,
     "token_type": "Bearer", "scope": "identify guilds", "expires_at": 1700000000}
"""

from __future__ import annotations

import asyncio
import logging
import time
from urllib.parse import urlencode

from sqlalchemy import Engine, delete

from rsspanel.config import PanelConfig
from rsspanel.constants import (
    OAUTH_AUTHORIZE_PATH,
    OAUTH_REVOKE_PATH,
    OAUTH_SCOPES,
    OAUTH_TOKEN_HOST,
    OAUTH_TOKEN_PATH,
)
from rsspanel.database.engine import get_session, run_db
from rsspanel.database.models import WebCache
from rsspanel.services import discord_api
from rsspanel.services.session_service import SessionData, destroy_session

logger = logging.getLogger(__name__)


def delete_cached_user_data(engine: Engine, user_id: str) -> None:
    """Drop the cached ``user`` and ``guilds`` responses for *user_id*."""
    with get_session(engine) as session:
        session.execute(
            delete(WebCache).where(
                WebCache.id == str(user_id),
                WebCache.type.in_(("user", "guilds")),
            )
        )
    logger.debug("Deleted cached user data for %s", user_id)


def is_authenticated(session: SessionData | None) -> bool:
    return bool(session and session.identity and session.token)


def get_authorization_url(config: PanelConfig, state: str) -> str:
    query = urlencode({
        "response_type": "code",
        "client_id": config.bot.client_id,
        "scope": OAUTH_SCOPES,
        "redirect_uri": config.bot.redirect_uri,
        "prompt": "consent",
        "state": state,
    })
    return f"{OAUTH_TOKEN_HOST}{OAUTH_AUTHORIZE_PATH}?{query}"


def token_is_expired(token: dict, now: float | None = None) -> bool:
    now = time.time() if now is None else now
    return now > token.get("expires_at", 0)


def format_access_token(token: dict, now: float | None = None) -> dict:
    """Stamp *token* with ``expires_at`` in epoch seconds to match ``expires_in``."""
    now = time.time() if now is None else now
    return {**token, "expires_at": round(now) + int(token.get("expires_in", 0))}


async def _token_request(data: dict, action: str) -> dict:
    async with discord_api.http_client() as client:
        resp = await client.post(
            f"{OAUTH_TOKEN_HOST}{OAUTH_TOKEN_PATH}",
            data=data,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
    discord_api.raise_for_response(resp, action)
    return format_access_token(resp.json())


async def create_auth_token(code: str, config: PanelConfig) -> dict:
    """Exchange an authorization *code* for a token object."""
    return await _token_request(
        {
            "client_id": config.bot.client_id,
            "client_secret": config.bot.client_secret,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": config.bot.redirect_uri,
            "scope": OAUTH_SCOPES,
        },
        "Create auth token",
    )


async def refresh_token(token: dict, config: PanelConfig) -> dict:
    return await _token_request(
        {
            "client_id": config.bot.client_id,
            "client_secret": config.bot.client_secret,
            "grant_type": "refresh_token",
            "refresh_token": token.get("refresh_token", ""),
            "redirect_uri": config.bot.redirect_uri,
            "scope": OAUTH_SCOPES,
        },
        "Refresh auth token",
    )


async def get_auth_token(token: dict, config: PanelConfig) -> dict:
    """Return *token* if still valid, otherwise refresh and return a new one."""
    if not token_is_expired(token):
        return token
    return await refresh_token(token, config)


async def revoke_auth_token(token: dict, config: PanelConfig) -> None:
    """Revoke both the access and the refresh token.

    Raises
    ------
    DiscordResponseError
        If either revocation is rejected.
    """
    url = f"{OAUTH_TOKEN_HOST}{OAUTH_REVOKE_PATH}"
    credentials = {
        "client_id": config.bot.client_id,
        "client_secret": config.bot.client_secret,
    }
    async with discord_api.http_client() as client:
        access_resp, refresh_resp = await asyncio.gather(
            client.post(url, data={
                **credentials,
                "token": token.get("access_token", ""),
                "token_type_hint": "access_token",
            }),
            client.post(url, data={
                **credentials,
                "token": token.get("refresh_token", ""),
                "token_type_hint": "refresh_token",
            }),
        )
    discord_api.raise_for_response(access_resp, "Revoke access token")
    discord_api.raise_for_response(refresh_resp, "Revoke refresh token")


async def logout(engine: Engine, session: SessionData, config: PanelConfig) -> None:
    """Revoke the session's token, forget cached user data, destroy the session."""
    if session.token:
        await revoke_auth_token(session.token, config)
    if session.identity:
        await run_db(delete_cached_user_data, engine, session.identity["id"])
    await run_db(destroy_session, engine, session.sid)
