"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os
from types import SimpleNamespace

# ---------------------------------------------------------------------------
# Ensure a valid SESSION_SECRET is always set for test runs.
# This must happen before any import of rsspanel.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_SESSION_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("SESSION_SECRET", _TEST_SESSION_SECRET)

import fakeredis  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively; render it as TEXT and let the JSON
# type's bind/result processors do the (de)serialization.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from rsspanel.cache.mirror import CacheMirror  # noqa: E402
from rsspanel.config import (  # noqa: E402
    BotConfig,
    DatabaseConfig,
    FeedsConfig,
    HttpConfig,
    HttpsConfig,
    PanelConfig,
    RedisConfig,
)
from rsspanel.database.models import Base  # noqa: E402

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent).

    Also maps BigInteger → INTEGER so autoincrement works on SQLite.
    """
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()

GUILD_ID = 1000
TEXT_CHANNEL_ID = 1100
OTHER_CHANNEL_ID = 1101
FOREIGN_CHANNEL_ID = 2100
MANAGER_ID = "500"
VISITOR_ID = "600"


# ---------------------------------------------------------------------------
# Database / cache
# ---------------------------------------------------------------------------
@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all rsspanel tables.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used throughout the API).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def mirror(redis_client) -> CacheMirror:
    return CacheMirror(redis_client, "drss")


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------
def make_config(**feeds) -> PanelConfig:
    return PanelConfig(
        bot=BotConfig(
            token="bot-token",
            client_id="4242",
            client_secret="client-secret",
            redirect_uri="http://localhost:8081/authorize",
            shard_count=1,
        ),
        database=DatabaseConfig(uri="sqlite://"),
        redis=RedisConfig(uri="redis://localhost:6379/0"),
        http=HttpConfig(port=8081),
        https=HttpsConfig(),
        feeds=FeedsConfig(**{"max_feeds": 2, "refresh_rate_minutes": 10.0, **feeds}),
    )


@pytest.fixture
def panel_config() -> PanelConfig:
    return make_config()


# ---------------------------------------------------------------------------
# Fake discord.py objects
# ---------------------------------------------------------------------------
def fake_user(user_id, name="someone", bot=False):
    return SimpleNamespace(id=int(user_id), name=name, discriminator="0", avatar=None, bot=bot)


def fake_guild(guild_id=GUILD_ID, name="Test Guild", shard_id=0, owner_id=1):
    guild = SimpleNamespace(
        id=guild_id, name=name, icon=None, owner_id=owner_id, shard_id=shard_id,
        text_channels=[], roles=[], members=[],
    )
    guild.get_member = lambda uid: next((m for m in guild.members if m.id == int(uid)), None)
    return guild


def fake_channel(channel_id, guild, name="general", position=0):
    return SimpleNamespace(id=channel_id, name=name, guild=guild, type="text", position=position)


def fake_role(role_id, guild, name="role", position=0, permissions=0):
    return SimpleNamespace(
        id=role_id, name=name, guild=guild,
        color=SimpleNamespace(value=0), position=position,
        permissions=SimpleNamespace(value=permissions),
        hoist=False, mentionable=True, members=[],
    )


def fake_member(user_id, guild, administrator=False, manage_channels=False, name="member"):
    return SimpleNamespace(
        id=int(user_id), name=name, discriminator="0", avatar=None, bot=False,
        guild=guild,
        roles=[],
        guild_permissions=SimpleNamespace(
            administrator=administrator, manage_channels=manage_channels
        ),
    )


def populated_guild(guild_id=GUILD_ID, shard_id=0):
    """A guild with two text channels, two roles and one manager."""
    guild = fake_guild(guild_id, shard_id=shard_id)
    guild.text_channels = [
        fake_channel(TEXT_CHANNEL_ID, guild, "news", position=1),
        fake_channel(OTHER_CHANNEL_ID, guild, "alerts", position=0),
    ]
    guild.roles = [
        fake_role(1200, guild, "everyone", position=0),
        fake_role(1201, guild, "mods", position=3, permissions=1 << 4),
    ]
    guild.members = [
        fake_member(MANAGER_ID, guild, manage_channels=True, name="manager"),
        fake_member(VISITOR_ID, guild, name="visitor"),
    ]
    return guild


@pytest.fixture
def seeded_mirror(mirror) -> CacheMirror:
    """Mirror holding GUILD_ID plus a second guild that owns FOREIGN_CHANNEL_ID."""
    mirror.recognize_guild(populated_guild())
    other = fake_guild(2000, name="Other Guild")
    other.text_channels = [fake_channel(FOREIGN_CHANNEL_ID, other, "elsewhere")]
    mirror.recognize_guild(other)
    return mirror


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------
def make_token(expires_in: int = 604800) -> dict:
    from rsspanel.services.auth_service import format_access_token

    return format_access_token({
        "access_token": "access-abc",
        "refresh_token": "refresh-abc",
        "token_type": "Bearer",
        "scope": "identify guilds",
        "expires_in": expires_in,
    })


def login(client, engine, user_id: str = MANAGER_ID, username: str = "manager", token=None):
    """Create a session row and put its cookie on *client*."""
    from rsspanel.api.deps import SESSION_SECRET
    from rsspanel.constants import SESSION_COOKIE
    from rsspanel.services.session_service import create_session, encode_session_cookie

    session = create_session(
        engine, {"id": user_id, "username": username}, token or make_token()
    )
    client.cookies.set(SESSION_COOKIE, encode_session_cookie(session.sid, SESSION_SECRET))
    return session


@pytest.fixture
def app(panel_config, db_engine, seeded_mirror):
    from rsspanel.api.main import create_app

    return create_app(panel_config, db_engine, seeded_mirror)


@pytest.fixture
def client(app):
    """Create a FastAPI TestClient with raise_server_exceptions=False."""
    from fastapi.testclient import TestClient

    return TestClient(app, raise_server_exceptions=False)
