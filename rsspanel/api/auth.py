"""
rsspanel.api.auth — Discord OAuth2 login, callback & logout
============================================================
"""

from __future__ import annotations

import logging
import secrets
from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse
from sqlalchemy import Engine, delete

from rsspanel.api.deps import (
    SESSION_SECRET,
    get_config,
    get_engine,
    get_web_session,
)
from rsspanel.config import PanelConfig
from rsspanel.constants import SESSION_COOKIE, SESSION_MAX_AGE_SECONDS, USER_CACHE_SECONDS
from rsspanel.database.engine import get_session, run_db
from rsspanel.database.models import OAuthState
from rsspanel.services import auth_service, discord_api, session_service, user_service
from rsspanel.services.session_service import SessionData

logger = logging.getLogger(__name__)
router = APIRouter(tags=["auth"])

OAUTH_STATE_TTL_SECONDS = 600


def _store_oauth_state(engine: Engine, state: str) -> None:
    """Persist an OAuth state token and prune stale entries."""
    cutoff = datetime.now(UTC) - timedelta(seconds=OAUTH_STATE_TTL_SECONDS)
    with get_session(engine) as session:
        session.execute(delete(OAuthState).where(OAuthState.created_at < cutoff))
        session.add(OAuthState(state=state, created_at=datetime.now(UTC)))


def _consume_oauth_state(engine: Engine, state: str) -> bool:
    """Consume a one-time OAuth state token if valid and unexpired."""
    cutoff = datetime.now(UTC) - timedelta(seconds=OAUTH_STATE_TTL_SECONDS)
    with get_session(engine) as session:
        session.execute(delete(OAuthState).where(OAuthState.created_at < cutoff))
        row = session.get(OAuthState, state)
        if row is None:
            return False
        session.delete(row)
        return True


@router.get("/login")
async def login(
    cfg: PanelConfig = Depends(get_config),
    engine: Engine = Depends(get_engine),
):
    """Redirect to the Discord OAuth2 consent screen."""
    state = secrets.token_urlsafe(32)
    await run_db(_store_oauth_state, engine, state)
    return RedirectResponse(auth_service.get_authorization_url(cfg, state))


@router.get("/authorize")
async def authorize(
    code: str,
    state: str,
    cfg: PanelConfig = Depends(get_config),
    engine: Engine = Depends(get_engine),
):
    """Exchange the OAuth code, open a session and send the user to the panel."""
    if not await run_db(_consume_oauth_state, engine, state):
        raise HTTPException(400, "Invalid or expired OAuth state")

    token = await auth_service.create_auth_token(code, cfg)
    identity = await discord_api.get_json(
        "/users/@me", bearer=token["access_token"], action="Fetch user"
    )
    await run_db(
        user_service.store_web_cache, engine, identity["id"], "user", identity, USER_CACHE_SECONDS
    )
    session = await run_db(session_service.create_session, engine, identity, token)
    logger.info("User %s (%s) logged in", identity.get("username"), identity["id"])

    response = RedirectResponse("/cp")
    response.set_cookie(
        SESSION_COOKIE,
        session_service.encode_session_cookie(session.sid, SESSION_SECRET),
        max_age=SESSION_MAX_AGE_SECONDS,
        httponly=True,
        secure=cfg.https.enabled,
        samesite="lax",
    )
    return response


@router.get("/logout")
async def logout(
    session: SessionData | None = Depends(get_web_session),
    cfg: PanelConfig = Depends(get_config),
    engine: Engine = Depends(get_engine),
):
    """Revoke the OAuth token, drop cached user data and the session."""
    if session is not None:
        await auth_service.logout(engine, session, cfg)
    response = RedirectResponse("/")
    response.delete_cookie(SESSION_COOKIE)
    return response
