"""
rsspanel.services.channel_service — Guild channel lookups from the mirror
==========================================================================
"""

from __future__ import annotations

from rsspanel.cache.mirror import CacheMirror


def get_guild_channels(mirror: CacheMirror, guild_id: int) -> list[dict]:
    return [ch.to_dict() for ch in mirror.guild_channels(guild_id)]


def get_cached_channel(mirror: CacheMirror, channel_id: int) -> dict | None:
    channel = mirror.fetch_channel(channel_id)
    return channel.to_dict() if channel else None
