"""
rsspanel.cache.mirror — Redis mirror of Discord guild/channel/user state
=========================================================================

The shards write snapshots here as gateway events arrive; the API reads
them to answer "which channels does this guild have?" without talking to
Discord.  Keys are namespaced by a configurable prefix (``drss`` by
default) so the whole mirror can be flushed with one pattern::

    drss_guilds                       set   all guild ids
    drss_shard_guilds_{shard}         set   guild ids recognized by a shard
    drss_guild_{id}                   hash  CachedGuild
    drss_guild_channels_{id}          set   channel ids
    drss_guild_roles_{id}             set   role ids
    drss_guild_members_{id}           set   member ids (managers only)
    drss_channel_{id}                 hash  CachedChannel
    drss_role_{id}                    hash  CachedRole
    drss_member_{guild}_{user}        hash  CachedMember
    drss_user_{id}                    hash  CachedUser

There is no eviction: stale keys disappear only through ``forget_*`` calls
or a flush.
"""

from __future__ import annotations

import logging

import discord
import redis

from rsspanel.cache.structs import (
    CachedChannel,
    CachedGuild,
    CachedMember,
    CachedRole,
    CachedUser,
)

logger = logging.getLogger(__name__)


class CacheMirror:
    """Read/write access to the mirror for one Redis client and prefix."""

    def __init__(self, client: redis.Redis, prefix: str = "drss") -> None:
        self.client = client
        self.prefix = prefix

    # -----------------------------------------------------------------------
    # Key helpers
    # -----------------------------------------------------------------------
    def key(self, *parts: object) -> str:
        return "_".join([self.prefix, *(str(p) for p in parts)])

    # -----------------------------------------------------------------------
    # Guilds
    # -----------------------------------------------------------------------
    def recognize_guild(self, guild: discord.Guild) -> CachedGuild:
        """Store *guild* with its text channels, roles and managing members."""
        cached = CachedGuild.from_discord(guild)
        pipe = self.client.pipeline()
        pipe.sadd(self.key("guilds"), cached.id)
        pipe.sadd(self.key("shard_guilds", cached.shard_id), cached.id)
        pipe.hset(self.key("guild", cached.id), mapping=cached.to_hash())
        pipe.execute()

        for channel in guild.text_channels:
            self.recognize_channel(channel)
        for role in guild.roles:
            self.recognize_role(role)
        for member in guild.members:
            self.recognize_member(member)
        return cached

    def update_guild(self, before: discord.Guild, after: discord.Guild) -> bool:
        """Rewrite the guild hash if any mirrored field changed."""
        old = CachedGuild.from_discord(before)
        new = CachedGuild.from_discord(after)
        if old == new:
            return False
        self.client.hset(self.key("guild", new.id), mapping=new.to_hash())
        return True

    def forget_guild(self, guild_id: int | str) -> None:
        """Drop a guild and every channel, role and member hanging off it."""
        gid = str(guild_id)
        cached = self.fetch_guild(gid)
        channel_ids = self.client.smembers(self.key("guild_channels", gid))
        role_ids = self.client.smembers(self.key("guild_roles", gid))
        member_ids = self.client.smembers(self.key("guild_members", gid))

        pipe = self.client.pipeline()
        for cid in channel_ids:
            pipe.delete(self.key("channel", cid))
        for rid in role_ids:
            pipe.delete(self.key("role", rid))
        for uid in member_ids:
            pipe.delete(self.key("member", gid, uid))
        pipe.delete(
            self.key("guild", gid),
            self.key("guild_channels", gid),
            self.key("guild_roles", gid),
            self.key("guild_members", gid),
        )
        pipe.srem(self.key("guilds"), gid)
        if cached is not None:
            pipe.srem(self.key("shard_guilds", cached.shard_id), gid)
        pipe.execute()

    def fetch_guild(self, guild_id: int | str) -> CachedGuild | None:
        data = self.client.hgetall(self.key("guild", guild_id))
        return CachedGuild.from_hash(data) if data else None

    def guild_ids(self) -> set[str]:
        return set(self.client.smembers(self.key("guilds")))

    def guild_count(self) -> int:
        return int(self.client.scard(self.key("guilds")))

    # -----------------------------------------------------------------------
    # Channels
    # -----------------------------------------------------------------------
    def recognize_channel(self, channel: discord.abc.GuildChannel) -> CachedChannel:
        cached = CachedChannel.from_discord(channel)
        pipe = self.client.pipeline()
        pipe.hset(self.key("channel", cached.id), mapping=cached.to_hash())
        pipe.sadd(self.key("guild_channels", cached.guild_id), cached.id)
        pipe.execute()
        return cached

    def update_channel(self, before, after) -> bool:
        old = CachedChannel.from_discord(before)
        new = CachedChannel.from_discord(after)
        if old == new:
            return False
        self.client.hset(self.key("channel", new.id), mapping=new.to_hash())
        return True

    def forget_channel(self, channel_id: int | str, guild_id: int | str) -> None:
        pipe = self.client.pipeline()
        pipe.delete(self.key("channel", channel_id))
        pipe.srem(self.key("guild_channels", guild_id), str(channel_id))
        pipe.execute()

    def fetch_channel(self, channel_id: int | str) -> CachedChannel | None:
        data = self.client.hgetall(self.key("channel", channel_id))
        return CachedChannel.from_hash(data) if data else None

    def guild_channels(self, guild_id: int | str) -> list[CachedChannel]:
        ids = self.client.smembers(self.key("guild_channels", guild_id))
        channels = [self.fetch_channel(cid) for cid in ids]
        return [ch for ch in channels if ch is not None]

    # -----------------------------------------------------------------------
    # Roles
    # -----------------------------------------------------------------------
    def recognize_role(self, role: discord.Role) -> CachedRole:
        cached = CachedRole.from_discord(role)
        pipe = self.client.pipeline()
        pipe.hset(self.key("role", cached.id), mapping=cached.to_hash())
        pipe.sadd(self.key("guild_roles", cached.guild_id), cached.id)
        pipe.execute()
        return cached

    def update_role(self, before: discord.Role, after: discord.Role) -> bool:
        old = CachedRole.from_discord(before)
        new = CachedRole.from_discord(after)
        if old == new:
            return False
        self.client.hset(self.key("role", new.id), mapping=new.to_hash())
        return True

    def forget_role(self, role_id: int | str, guild_id: int | str) -> None:
        pipe = self.client.pipeline()
        pipe.delete(self.key("role", role_id))
        pipe.srem(self.key("guild_roles", guild_id), str(role_id))
        pipe.execute()

    def fetch_role(self, role_id: int | str) -> CachedRole | None:
        data = self.client.hgetall(self.key("role", role_id))
        return CachedRole.from_hash(data) if data else None

    def guild_roles(self, guild_id: int | str) -> list[CachedRole]:
        ids = self.client.smembers(self.key("guild_roles", guild_id))
        roles = [self.fetch_role(rid) for rid in ids]
        return [r for r in roles if r is not None]

    # -----------------------------------------------------------------------
    # Members
    # -----------------------------------------------------------------------
    def recognize_member(self, member: discord.Member) -> CachedMember | None:
        """Store *member* if they can manage feeds, otherwise forget them."""
        cached = CachedMember.from_discord(member)
        if not cached.can_manage:
            self.forget_member(cached.id, cached.guild_id)
            return None
        pipe = self.client.pipeline()
        pipe.hset(self.key("member", cached.guild_id, cached.id), mapping=cached.to_hash())
        pipe.sadd(self.key("guild_members", cached.guild_id), cached.id)
        pipe.execute()
        return cached

    def forget_member(self, user_id: int | str, guild_id: int | str) -> None:
        pipe = self.client.pipeline()
        pipe.delete(self.key("member", guild_id, user_id))
        pipe.srem(self.key("guild_members", guild_id), str(user_id))
        pipe.execute()

    def refresh_members(self, guild: discord.Guild, *user_ids: int | str) -> None:
        """Re-evaluate mirrored managers of *guild* (plus *user_ids*) against
        their live permissions, dropping anyone who no longer qualifies."""
        gid = str(guild.id)
        ids = set(self.client.smembers(self.key("guild_members", gid)))
        ids.update(str(uid) for uid in user_ids if uid is not None)
        for uid in ids:
            member = guild.get_member(int(uid))
            if member is None:
                self.forget_member(uid, gid)
            else:
                self.recognize_member(member)

    def fetch_member(self, guild_id: int | str, user_id: int | str) -> CachedMember | None:
        data = self.client.hgetall(self.key("member", guild_id, user_id))
        return CachedMember.from_hash(data) if data else None

    # -----------------------------------------------------------------------
    # Users
    # -----------------------------------------------------------------------
    def recognize_user(self, user: discord.abc.User) -> CachedUser:
        cached = CachedUser.from_discord(user)
        self.client.hset(self.key("user", cached.id), mapping=cached.to_hash())
        return cached

    def update_user(self, before: discord.abc.User, after: discord.abc.User) -> bool:
        old = CachedUser.from_discord(before)
        new = CachedUser.from_discord(after)
        if old == new:
            return False
        self.client.hset(self.key("user", new.id), mapping=new.to_hash())
        return True

    def fetch_user(self, user_id: int | str) -> CachedUser | None:
        data = self.client.hgetall(self.key("user", user_id))
        return CachedUser.from_hash(data) if data else None

    # -----------------------------------------------------------------------
    # Bulk maintenance
    # -----------------------------------------------------------------------
    def set_bot_user_id(self, user_id: int | str) -> None:
        self.client.set(self.key("bot_user"), str(user_id))

    def fetch_bot_user(self) -> CachedUser | None:
        user_id = self.client.get(self.key("bot_user"))
        return self.fetch_user(user_id) if user_id else None

    def flush_shard(self, shard_id: int) -> int:
        """Forget every guild a previous run of *shard_id* recognized."""
        stale = self.client.smembers(self.key("shard_guilds", shard_id))
        for gid in stale:
            self.forget_guild(gid)
        self.client.delete(self.key("shard_guilds", shard_id))
        if stale:
            logger.info("Flushed %d stale guilds for shard %d", len(stale), shard_id)
        return len(stale)
