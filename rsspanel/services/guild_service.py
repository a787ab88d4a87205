"""
rsspanel.services.guild_service — Guild profile, feed limit & cache lookups
============================================================================
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, select

from rsspanel.cache.mirror import CacheMirror
from rsspanel.config import PanelConfig
from rsspanel.database.engine import get_session
from rsspanel.database.models import Feed, Profile
from rsspanel.services.feed_service import feed_to_dict

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("prefix", "locale", "timezone", "date_format")


def profile_to_dict(profile: Profile) -> dict:
    return {
        "id": str(profile.id),
        "name": profile.name,
        "prefix": profile.prefix,
        "locale": profile.locale,
        "timezone": profile.timezone,
        "date_format": profile.date_format,
        "max_feeds": profile.max_feeds,
    }


def get_profile(engine: Engine, guild_id: int) -> dict | None:
    with get_session(engine) as session:
        profile = session.get(Profile, guild_id)
        return profile_to_dict(profile) if profile else None


def get_app_data(engine: Engine, guild_id: int) -> dict | None:
    """Everything the bot stores for a guild: profile plus feeds and subscribers.

    Returns ``None`` when the guild has neither a profile nor feeds.
    """
    with get_session(engine) as session:
        profile = session.get(Profile, guild_id)
        feeds = session.scalars(
            select(Feed).where(Feed.guild_id == guild_id).order_by(Feed.id)
        ).all()
        if profile is None and not feeds:
            return None
        return {
            "profile": profile_to_dict(profile) if profile else None,
            "feeds": [feed_to_dict(f, with_subscribers=True) for f in feeds],
        }


def get_cached_guild(mirror: CacheMirror, guild_id: int) -> dict | None:
    guild = mirror.fetch_guild(guild_id)
    return guild.to_dict() if guild else None


def get_feed_limit(engine: Engine, config: PanelConfig, guild_id: int) -> int:
    """Per-guild override from the profile, else the configured default."""
    with get_session(engine) as session:
        override = session.scalar(select(Profile.max_feeds).where(Profile.id == guild_id))
    return override if override is not None else config.feeds.max_feeds


def get_guild(engine: Engine, mirror: CacheMirror, config: PanelConfig, guild_id: int) -> dict:
    """Cached guild snapshot merged with its profile and feed limit."""
    cached = get_cached_guild(mirror, guild_id) or {}
    return {
        **cached,
        "profile": get_profile(engine, guild_id),
        "limit": get_feed_limit(engine, config, guild_id),
    }


def update_profile(engine: Engine, guild_id: int, guild_name: str, data: dict) -> dict:
    """Apply *data* to the guild's profile, creating the profile if needed."""
    updates = {k: v for k, v in data.items() if k in PROFILE_FIELDS}
    with get_session(engine) as session:
        profile = session.get(Profile, guild_id)
        if profile is None:
            profile = Profile(id=guild_id, name=guild_name, **updates)
            session.add(profile)
            logger.info("Created profile for guild %d", guild_id)
        else:
            for key, value in updates.items():
                setattr(profile, key, value)
            profile.name = guild_name or profile.name
        session.flush()
        return profile_to_dict(profile)


def guild_has_channel(mirror: CacheMirror, guild_id: int, channel_id: int) -> bool:
    channel = mirror.fetch_channel(channel_id)
    if channel is None:
        return False
    return channel.guild_id == str(guild_id)


def get_guild_roles(mirror: CacheMirror, guild_id: int) -> list[dict]:
    roles = mirror.guild_roles(guild_id)
    return [r.to_dict() for r in sorted(roles, key=lambda r: r.position, reverse=True)]
