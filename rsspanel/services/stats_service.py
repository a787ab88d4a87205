"""
rsspanel.services.stats_service — Landing-page numbers
=======================================================
"""

from __future__ import annotations

from sqlalchemy import Engine, distinct, func, select

from rsspanel.cache.mirror import CacheMirror
from rsspanel.database.engine import get_session
from rsspanel.database.models import Feed, GeneralStat

ARTICLES_SENT = "articles_sent"


def get_total_guilds(mirror: CacheMirror) -> int:
    return mirror.guild_count()


def get_feed_count(engine: Engine) -> int:
    """Number of distinct feed URLs across every guild."""
    with get_session(engine) as session:
        return session.scalar(select(func.count(distinct(Feed.url)))) or 0


def get_article_delivery_count(engine: Engine) -> dict | None:
    with get_session(engine) as session:
        row = session.get(GeneralStat, ARTICLES_SENT)
        if row is None:
            return None
        return {
            "data": row.value,
            "added_at": row.added_at.isoformat() if row.added_at else None,
        }


def get_stats(engine: Engine, mirror: CacheMirror) -> dict:
    delivered = get_article_delivery_count(engine)
    return {
        "total_guilds": get_total_guilds(mirror),
        "feed_count": get_feed_count(engine),
        "articles_delivered": delivered or {"data": 0, "added_at": None},
    }
