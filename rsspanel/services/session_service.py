"""
rsspanel.services.session_service — Server-side dashboard sessions
===================================================================

The browser only ever holds a signed JWT whose ``sid`` claim points at a
``web_sessions`` row.  The OAuth token and Discord identity stay in the
database, so destroying a session is a single ``DELETE``.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import jwt
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine, delete

from rsspanel.constants import SESSION_MAX_AGE_SECONDS
from rsspanel.database.engine import get_session
from rsspanel.database.models import WebSession

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"


@dataclass
class SessionData:
    """Plain copy of a :class:`WebSession` row, safe to use after commit."""
    sid: str
    identity: dict | None = None
    token: dict | None = None

    @property
    def user_id(self) -> str | None:
        return self.identity.get("id") if self.identity else None


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back out
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


# ---------------------------------------------------------------------------
# Cookie encoding
# ---------------------------------------------------------------------------
def encode_session_cookie(sid: str, secret: str) -> str:
    payload = {
        "sid": sid,
        "exp": datetime.now(UTC) + timedelta(seconds=SESSION_MAX_AGE_SECONDS),
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def decode_session_cookie(value: str, secret: str) -> str | None:
    """Return the session id in *value*, or ``None`` if it is forged or expired."""
    try:
        payload = jwt.decode(value, secret, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        return None
    sid = payload.get("sid")
    return sid if isinstance(sid, str) else None


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------
def create_session(engine: Engine, identity: dict | None = None, token: dict | None = None) -> SessionData:
    """Insert a new session row and prune expired ones."""
    now = datetime.now(UTC)
    sid = secrets.token_urlsafe(32)
    with get_session(engine) as session:
        session.execute(delete(WebSession).where(WebSession.expires_at < now))
        session.add(WebSession(
            sid=sid,
            identity=identity,
            token=token,
            expires_at=now + timedelta(seconds=SESSION_MAX_AGE_SECONDS),
        ))
    return SessionData(sid=sid, identity=identity, token=token)


def load_session(engine: Engine, sid: str) -> SessionData | None:
    with get_session(engine) as session:
        row = session.get(WebSession, sid)
        if row is None:
            return None
        if _aware(row.expires_at) < datetime.now(UTC):
            session.delete(row)
            return None
        return SessionData(sid=row.sid, identity=row.identity, token=row.token)


def save_session_token(engine: Engine, sid: str, token: dict) -> bool:
    """Persist a refreshed OAuth token.  Returns False if the session is gone."""
    with get_session(engine) as session:
        row = session.get(WebSession, sid)
        if row is None:
            return False
        row.token = token
        return True


def destroy_session(engine: Engine, sid: str) -> None:
    with get_session(engine) as session:
        session.execute(delete(WebSession).where(WebSession.sid == sid))
    logger.debug("Destroyed session %s...", sid[:8])
