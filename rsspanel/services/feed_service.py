"""
rsspanel.services.feed_service — Feed & subscriber CRUD, previews, test sends
==============================================================================

All DB functions are synchronous and meant to be called through
:func:`rsspanel.database.engine.run_db` from async routes.  They return
plain dicts (or ``None``/``False`` when the target row does not exist) so
nothing leaks a detached ORM instance.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

import feedparser
import httpx
from sqlalchemy import Engine, func, select

from rsspanel.config import PanelConfig
from rsspanel.database.engine import get_session
from rsspanel.database.models import Feed, FeedSubscriber
from rsspanel.services import discord_api

logger = logging.getLogger(__name__)

FEED_FIELDS = (
    "title",
    "url",
    "channel_id",
    "text",
    "check_titles",
    "check_dates",
    "img_previews",
    "img_links_existence",
    "format_tables",
    "toggle_role_mentions",
    "split_message",
    "disabled",
)

# Fields a PATCH may explicitly reset to null
NULLABLE_FIELDS = ("text", "disabled")

SUBSCRIBER_TYPES = ("role", "user")

# Discord rejects message content longer than this
MAX_MESSAGE_LENGTH = 2000

# Serializes count-then-insert; the API runs in the manager process only
_create_lock = threading.Lock()


class FeedLimitReached(Exception):
    def __init__(self, limit: int) -> None:
        super().__init__(f"Feed limit reached ({limit})")
        self.limit = limit


class DuplicateSubscriber(Exception):
    """The feed already has a subscriber with that type and id."""


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------
def subscriber_to_dict(sub: FeedSubscriber) -> dict:
    return {
        "id": sub.id,
        "feed_id": sub.feed_id,
        "type": sub.type,
        "subscriber_id": str(sub.subscriber_id),
    }


def feed_to_dict(feed: Feed, with_subscribers: bool = False) -> dict:
    data: dict[str, Any] = {
        "id": feed.id,
        "guild_id": str(feed.guild_id),
        "channel_id": str(feed.channel_id),
        "title": feed.title,
        "url": feed.url,
        "text": feed.text,
        "check_titles": feed.check_titles,
        "check_dates": feed.check_dates,
        "img_previews": feed.img_previews,
        "img_links_existence": feed.img_links_existence,
        "format_tables": feed.format_tables,
        "toggle_role_mentions": feed.toggle_role_mentions,
        "split_message": feed.split_message,
        "disabled": feed.disabled,
        "created_at": feed.created_at.isoformat() if feed.created_at else None,
    }
    if with_subscribers:
        data["subscribers"] = [subscriber_to_dict(s) for s in feed.subscribers]
    return data


# ---------------------------------------------------------------------------
# Feeds
# ---------------------------------------------------------------------------
def list_feeds(engine: Engine, guild_id: int) -> list[dict]:
    with get_session(engine) as session:
        rows = session.scalars(
            select(Feed).where(Feed.guild_id == guild_id).order_by(Feed.id)
        ).all()
        return [feed_to_dict(f) for f in rows]


def count_feeds(engine: Engine, guild_id: int) -> int:
    with get_session(engine) as session:
        return session.scalar(
            select(func.count()).select_from(Feed).where(Feed.guild_id == guild_id)
        ) or 0


def get_feed(engine: Engine, guild_id: int, feed_id: int) -> dict | None:
    """Return the feed only if it belongs to *guild_id*."""
    with get_session(engine) as session:
        feed = session.get(Feed, feed_id)
        if feed is None or feed.guild_id != guild_id:
            return None
        return feed_to_dict(feed)


def create_feed(engine: Engine, guild_id: int, data: dict, limit: int | None = None) -> dict:
    """Insert a feed, raising :class:`FeedLimitReached` if *limit* is already met."""
    values = {k: v for k, v in data.items() if k in FEED_FIELDS and v is not None}
    with _create_lock, get_session(engine) as session:
        if limit is not None:
            count = session.scalar(
                select(func.count()).select_from(Feed).where(Feed.guild_id == guild_id)
            ) or 0
            if count >= limit:
                raise FeedLimitReached(limit)
        feed = Feed(guild_id=guild_id, **values)
        session.add(feed)
        session.flush()
        session.refresh(feed)
        logger.info("Created feed %d (%s) in guild %d", feed.id, feed.url, guild_id)
        return feed_to_dict(feed)


def edit_feed(engine: Engine, feed_id: int, data: dict) -> dict | None:
    """Apply only the keys present in *data*; ``None`` means the feed is gone."""
    with get_session(engine) as session:
        feed = session.get(Feed, feed_id)
        if feed is None:
            return None
        for key, value in data.items():
            if key not in FEED_FIELDS:
                continue
            if value is None and key not in NULLABLE_FIELDS:
                continue
            setattr(feed, key, value)
        session.flush()
        session.refresh(feed)
        return feed_to_dict(feed)


def delete_feed(engine: Engine, feed_id: int) -> bool:
    with get_session(engine) as session:
        feed = session.get(Feed, feed_id)
        if feed is None:
            return False
        session.delete(feed)
    logger.info("Deleted feed %d", feed_id)
    return True


def get_schedule(config: PanelConfig, feed: dict) -> dict:
    """The refresh schedule a feed is processed on.

    Every feed shares the default schedule; per-feed schedules belong to
    the delivery service, not the panel.
    """
    return {
        "feed_id": feed["id"],
        "name": "default",
        "refresh_rate_minutes": config.feeds.refresh_rate_minutes,
    }


# ---------------------------------------------------------------------------
# Subscribers
# ---------------------------------------------------------------------------
def list_subscribers(engine: Engine, feed_id: int) -> list[dict]:
    with get_session(engine) as session:
        rows = session.scalars(
            select(FeedSubscriber)
            .where(FeedSubscriber.feed_id == feed_id)
            .order_by(FeedSubscriber.id)
        ).all()
        return [subscriber_to_dict(s) for s in rows]


def add_subscriber(engine: Engine, feed_id: int, type_: str, subscriber_id: int) -> dict | None:
    """Insert a subscriber; ``None`` if the same target is already subscribed."""
    with get_session(engine) as session:
        existing = session.scalar(
            select(FeedSubscriber).where(
                FeedSubscriber.feed_id == feed_id,
                FeedSubscriber.type == type_,
                FeedSubscriber.subscriber_id == subscriber_id,
            )
        )
        if existing is not None:
            return None
        sub = FeedSubscriber(feed_id=feed_id, type=type_, subscriber_id=subscriber_id)
        session.add(sub)
        session.flush()
        return subscriber_to_dict(sub)


def edit_subscriber(engine: Engine, feed_id: int, sub_id: int, data: dict) -> dict | None:
    """Retarget a subscriber; raises :class:`DuplicateSubscriber` on a clash."""
    with get_session(engine) as session:
        sub = session.get(FeedSubscriber, sub_id)
        if sub is None or sub.feed_id != feed_id:
            return None
        type_ = data.get("type") or sub.type
        target = sub.subscriber_id
        if data.get("subscriber_id") is not None:
            target = int(data["subscriber_id"])
        clash = session.scalar(
            select(FeedSubscriber.id).where(
                FeedSubscriber.feed_id == feed_id,
                FeedSubscriber.type == type_,
                FeedSubscriber.subscriber_id == target,
                FeedSubscriber.id != sub_id,
            )
        )
        if clash is not None:
            raise DuplicateSubscriber()
        sub.type = type_
        sub.subscriber_id = target
        session.flush()
        return subscriber_to_dict(sub)


def delete_subscriber(engine: Engine, feed_id: int, sub_id: int) -> bool:
    with get_session(engine) as session:
        sub = session.get(FeedSubscriber, sub_id)
        if sub is None or sub.feed_id != feed_id:
            return False
        session.delete(sub)
        return True


# ---------------------------------------------------------------------------
# Article previews
# ---------------------------------------------------------------------------
def _entry_image(entry: dict) -> str | None:
    for media in entry.get("media_content", []) or entry.get("media_thumbnail", []):
        if media.get("url"):
            return media["url"]
    for link in entry.get("links", []):
        if link.get("rel") == "enclosure" and str(link.get("type", "")).startswith("image/"):
            return link.get("href")
    return None


def parse_articles(content: bytes | str) -> list[dict]:
    """Turn a raw RSS/Atom document into placeholder dicts."""
    parsed = feedparser.parse(content)
    if parsed.bozo and not parsed.entries:
        raise ValueError(f"Not a valid feed: {parsed.bozo_exception}")
    articles = []
    for entry in parsed.entries:
        articles.append({
            "title": entry.get("title", ""),
            "description": entry.get("description", ""),
            "summary": entry.get("summary", ""),
            "link": entry.get("link", ""),
            "author": entry.get("author", ""),
            "date": entry.get("published") or entry.get("updated") or "",
            "image": _entry_image(entry) or "",
        })
    return articles


async def fetch_articles(url: str) -> list[dict]:
    """Download *url* and parse it into article placeholders.

    Raises
    ------
    httpx.HTTPError
        If the request fails or returns a non-2xx status.
    ValueError
        If the document is not a feed.
    """
    async with httpx.AsyncClient(timeout=discord_api.REQUEST_TIMEOUT, follow_redirects=True) as client:
        resp = await client.get(url)
        resp.raise_for_status()
    return parse_articles(resp.content)


# ---------------------------------------------------------------------------
# Test sends
# ---------------------------------------------------------------------------
def render_article(feed: dict, article: dict) -> str:
    """Substitute ``{placeholder}`` tokens of the feed's text with the article."""
    template = feed.get("text") or "**{title}**\n{link}"
    rendered = template
    for key, value in article.items():
        rendered = rendered.replace("{" + key + "}", str(value))
    return rendered[:MAX_MESSAGE_LENGTH]


async def send_article(config: PanelConfig, channel_id: int, feed: dict, article: dict) -> dict:
    """Post *article* into *channel_id* with the bot's credentials."""
    return await discord_api.post_json(
        f"/channels/{channel_id}/messages",
        {"content": render_article(feed, article)},
        bot_token=config.bot.token,
        action="Send article",
    )
