"""
rsspanel.api.routes.feeds — Guild feed & subscriber CRUD
=========================================================
"""

from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, HttpUrl
from sqlalchemy import Engine

from rsspanel.api.deps import get_config, get_engine, get_mirror, require_guild_access
from rsspanel.api.rate_limit import send_message_rate_limit
from rsspanel.cache.mirror import CacheMirror
from rsspanel.config import PanelConfig
from rsspanel.constants import ARTICLE_PLACEHOLDERS
from rsspanel.database.engine import run_db
from rsspanel.services import feed_service, guild_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/guilds/{guild_id}/feeds", tags=["feeds"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class FeedBase(BaseModel):
    text: str | None = Field(default=None, max_length=2000)
    check_titles: bool | None = None
    check_dates: bool | None = None
    img_previews: bool | None = None
    img_links_existence: bool | None = None
    format_tables: bool | None = None
    toggle_role_mentions: bool | None = None
    split_message: bool | None = None


class FeedCreate(FeedBase):
    title: str = Field(min_length=1, max_length=256)
    url: HttpUrl
    channel: str = Field(pattern=r"^\d+$")


class FeedEdit(FeedBase):
    title: str | None = Field(default=None, min_length=1, max_length=256)
    channel: str | None = Field(default=None, pattern=r"^\d+$")
    disabled: str | None = Field(default=None, max_length=200)


class SendArticle(BaseModel):
    article: dict
    channel: str | None = Field(default=None, pattern=r"^\d+$")


class SubscriberCreate(BaseModel):
    type: str = Field(pattern=r"^(role|user)$")
    id: str = Field(pattern=r"^\d+$")


class SubscriberEdit(BaseModel):
    type: str | None = Field(default=None, pattern=r"^(role|user)$")
    id: str | None = Field(default=None, pattern=r"^\d+$")


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
def _check_channel(mirror: CacheMirror, guild_id: int, channel_id: int) -> None:
    if not guild_service.guild_has_channel(mirror, guild_id, channel_id):
        raise HTTPException(403, "Channel does not belong to this guild")


async def get_guild_feed(
    guild_id: int,
    feed_id: int,
    guild: dict = Depends(require_guild_access),
    engine: Engine = Depends(get_engine),
) -> dict:
    """Resolve ``feed_id`` within ``guild_id`` or answer 404."""
    feed = await run_db(feed_service.get_feed, engine, guild_id, feed_id)
    if feed is None:
        raise HTTPException(404, "Unknown feed")
    return feed


# ---------------------------------------------------------------------------
# Feeds
# ---------------------------------------------------------------------------
@router.get("")
def get_feeds(
    guild_id: int,
    guild: dict = Depends(require_guild_access),
    engine: Engine = Depends(get_engine),
):
    return feed_service.list_feeds(engine, guild_id)


@router.post("", status_code=201)
def create_feed(
    guild_id: int,
    body: FeedCreate,
    guild: dict = Depends(require_guild_access),
    engine: Engine = Depends(get_engine),
    mirror: CacheMirror = Depends(get_mirror),
    cfg: PanelConfig = Depends(get_config),
):
    channel_id = int(body.channel)
    _check_channel(mirror, guild_id, channel_id)

    limit = guild_service.get_feed_limit(engine, cfg, guild_id)
    data = body.model_dump(exclude={"channel", "url"})
    data["url"] = str(body.url)
    data["channel_id"] = channel_id
    try:
        return feed_service.create_feed(engine, guild_id, data, limit=limit)
    except feed_service.FeedLimitReached as exc:
        raise HTTPException(403, str(exc)) from exc


@router.patch("/{feed_id}")
def edit_feed(
    guild_id: int,
    body: FeedEdit,
    feed: dict = Depends(get_guild_feed),
    engine: Engine = Depends(get_engine),
    mirror: CacheMirror = Depends(get_mirror),
):
    data = body.model_dump(exclude_unset=True, exclude={"channel"})
    if body.channel is not None:
        channel_id = int(body.channel)
        _check_channel(mirror, guild_id, channel_id)
        data["channel_id"] = channel_id
    updated = feed_service.edit_feed(engine, feed["id"], data)
    if updated is None:
        raise HTTPException(404, "Unknown feed")
    return updated


@router.delete("/{feed_id}", status_code=204)
def delete_feed(
    feed: dict = Depends(get_guild_feed),
    engine: Engine = Depends(get_engine),
):
    if not feed_service.delete_feed(engine, feed["id"]):
        raise HTTPException(404, "Unknown feed")
    return None


@router.get("/{feed_id}/schedule")
def get_schedule(
    feed: dict = Depends(get_guild_feed),
    cfg: PanelConfig = Depends(get_config),
):
    return feed_service.get_schedule(cfg, feed)


@router.get("/{feed_id}/articles")
async def get_feed_articles(feed: dict = Depends(get_guild_feed)):
    """Fetch the feed now and return its articles' placeholders."""
    try:
        articles = await feed_service.fetch_articles(feed["url"])
    except httpx.HTTPError as exc:
        logger.warning("Fetching feed %s failed: %s", feed["url"], exc)
        raise HTTPException(502, f"Failed to fetch feed: {exc}") from exc
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc
    return {"placeholders": list(ARTICLE_PLACEHOLDERS), "articles": articles}


@router.post("/{feed_id}/message", dependencies=[Depends(send_message_rate_limit)])
async def send_message(
    guild_id: int,
    body: SendArticle,
    feed: dict = Depends(get_guild_feed),
    mirror: CacheMirror = Depends(get_mirror),
    cfg: PanelConfig = Depends(get_config),
):
    """Post *article* to the feed's channel, or to another channel of the guild."""
    channel_id = int(body.channel) if body.channel else int(feed["channel_id"])
    if body.channel:
        await run_db(_check_channel, mirror, guild_id, channel_id)
    message = await feed_service.send_article(cfg, channel_id, feed, body.article)
    return {"id": message.get("id"), "channel_id": str(channel_id)}


# ---------------------------------------------------------------------------
# Subscribers
# ---------------------------------------------------------------------------
@router.get("/{feed_id}/subscribers")
def get_subscribers(
    feed: dict = Depends(get_guild_feed),
    engine: Engine = Depends(get_engine),
):
    return feed_service.list_subscribers(engine, feed["id"])


@router.post("/{feed_id}/subscribers", status_code=201)
def create_subscriber(
    body: SubscriberCreate,
    feed: dict = Depends(get_guild_feed),
    engine: Engine = Depends(get_engine),
):
    sub = feed_service.add_subscriber(engine, feed["id"], body.type, int(body.id))
    if sub is None:
        raise HTTPException(409, "Already subscribed")
    return sub


@router.patch("/{feed_id}/subscribers/{subscriber_id}")
def edit_subscriber(
    subscriber_id: int,
    body: SubscriberEdit,
    feed: dict = Depends(get_guild_feed),
    engine: Engine = Depends(get_engine),
):
    data = {"type": body.type, "subscriber_id": body.id}
    try:
        sub = feed_service.edit_subscriber(engine, feed["id"], subscriber_id, data)
    except feed_service.DuplicateSubscriber as exc:
        raise HTTPException(409, "Already subscribed") from exc
    if sub is None:
        raise HTTPException(404, "Unknown subscriber")
    return sub


@router.delete("/{feed_id}/subscribers/{subscriber_id}", status_code=204)
def delete_subscriber(
    subscriber_id: int,
    feed: dict = Depends(get_guild_feed),
    engine: Engine = Depends(get_engine),
):
    if not feed_service.delete_subscriber(engine, feed["id"], subscriber_id):
        raise HTTPException(404, "Unknown subscriber")
    return None
