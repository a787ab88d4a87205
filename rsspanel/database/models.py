"""
rsspanel.database.models — SQLAlchemy 2.0 Data Models
======================================================

Tables:
- profiles           — Per-guild bot profile (prefix, locale, feed limit override)
- feeds              — RSS feeds attached to a guild channel
- feed_subscribers   — Roles/users mentioned when a feed delivers an article
- general_stats      — Named global counters (articles delivered)
- web_cache          — Cached Discord REST responses per logged-in user
- web_sessions       — Server-side dashboard sessions (OAuth token + identity)
- oauth_states       — One-time CSRF tokens for the OAuth callback
- rate_limit_events  — Sliding-window journal for throttled endpoints
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all rsspanel ORM models."""


# ---------------------------------------------------------------------------
# Profiles — one row per guild that has customised the bot
# ---------------------------------------------------------------------------
class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)  # guild snowflake
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    prefix: Mapped[str | None] = mapped_column(String(10), default=None)
    locale: Mapped[str | None] = mapped_column(String(10), default=None)
    timezone: Mapped[str | None] = mapped_column(String(64), default=None)
    date_format: Mapped[str | None] = mapped_column(String(64), default=None)
    max_feeds: Mapped[int | None] = mapped_column(Integer, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<Profile id={self.id} name={self.name!r}>"


# ---------------------------------------------------------------------------
# Feeds
# ---------------------------------------------------------------------------
class Feed(Base):
    """An RSS source delivered into one channel of one guild."""
    __tablename__ = "feeds"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    channel_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    text: Mapped[str | None] = mapped_column(Text, default=None)
    check_titles: Mapped[bool] = mapped_column(Boolean, default=False)
    check_dates: Mapped[bool] = mapped_column(Boolean, default=True)
    img_previews: Mapped[bool] = mapped_column(Boolean, default=True)
    img_links_existence: Mapped[bool] = mapped_column(Boolean, default=True)
    format_tables: Mapped[bool] = mapped_column(Boolean, default=False)
    toggle_role_mentions: Mapped[bool] = mapped_column(Boolean, default=False)
    split_message: Mapped[bool] = mapped_column(Boolean, default=False)
    disabled: Mapped[str | None] = mapped_column(String(200), default=None)  # reason
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    subscribers: Mapped[list[FeedSubscriber]] = relationship(
        back_populates="feed", cascade="all, delete-orphan",
        order_by="FeedSubscriber.id",
    )

    __table_args__ = (
        Index("ix_feeds_guild_id", "guild_id"),
        Index("ix_feeds_url", "url"),
    )

    def __repr__(self) -> str:
        return f"<Feed id={self.id} guild={self.guild_id} url={self.url!r}>"


class FeedSubscriber(Base):
    __tablename__ = "feed_subscribers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    feed_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("feeds.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(10), nullable=False)  # role, user
    subscriber_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    feed: Mapped[Feed] = relationship(back_populates="subscribers")

    __table_args__ = (
        UniqueConstraint(
            "feed_id", "type", "subscriber_id", name="uq_feed_subscribers_target"
        ),
    )

    def __repr__(self) -> str:
        return f"<FeedSubscriber feed={self.feed_id} {self.type}={self.subscriber_id}>"


# ---------------------------------------------------------------------------
# GeneralStat — global counters shown on the landing page
# ---------------------------------------------------------------------------
class GeneralStat(Base):
    __tablename__ = "general_stats"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)  # e.g. "articles_sent"
    value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    added_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<GeneralStat {self.id}={self.value}>"


# ---------------------------------------------------------------------------
# WebCache — short-lived copies of Discord REST responses per user
# ---------------------------------------------------------------------------
class WebCache(Base):
    __tablename__ = "web_cache"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)  # user snowflake
    type: Mapped[str] = mapped_column(String(16), primary_key=True)  # user, guilds
    data: Mapped[dict | list] = mapped_column(JSONB, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<WebCache id={self.id} type={self.type!r}>"


# ---------------------------------------------------------------------------
# WebSession — server-side state behind the session cookie
# ---------------------------------------------------------------------------
class WebSession(Base):
    __tablename__ = "web_sessions"

    sid: Mapped[str] = mapped_column(String(64), primary_key=True)
    identity: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    token: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_web_sessions_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<WebSession sid={self.sid[:8]!r}...>"


# ---------------------------------------------------------------------------
# OAuthState — one-time CSRF tokens for OAuth callback validation
# ---------------------------------------------------------------------------
class OAuthState(Base):
    __tablename__ = "oauth_states"

    state: Mapped[str] = mapped_column(String(128), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_oauth_states_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<OAuthState state={self.state[:8]!r}...>"


# ---------------------------------------------------------------------------
# RateLimitEvent — durable events for endpoint throttling
# ---------------------------------------------------------------------------
class RateLimitEvent(Base):
    __tablename__ = "rate_limit_events"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(128), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_rate_limit_key_ts", "key", timestamp.desc()),
    )

    def __repr__(self) -> str:
        return f"<RateLimitEvent key={self.key!r} ts={self.timestamp}>"
