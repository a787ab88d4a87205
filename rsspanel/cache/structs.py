"""
rsspanel.cache.structs — Snapshots of Discord entities stored in Redis
=======================================================================

Each struct is a flat dataclass that knows how to build itself from a
discord.py object and how to round-trip through a Redis hash (all values
are strings on the wire; booleans are ``"1"``/``"0"`` and ``None`` is
``""``).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, ClassVar

import discord


def _encode(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


class _HashStruct:
    """Mixin shared by every cached struct."""

    # Fields decoded back as bool / int when read from Redis
    BOOL_FIELDS: ClassVar[frozenset[str]] = frozenset()
    INT_FIELDS: ClassVar[frozenset[str]] = frozenset()

    def to_hash(self) -> dict[str, str]:
        return {f.name: _encode(getattr(self, f.name)) for f in fields(self)}

    @classmethod
    def from_hash(cls, data: dict[str, str]):
        kwargs: dict[str, Any] = {}
        for f in fields(cls):
            raw = data.get(f.name, "")
            if f.name in cls.BOOL_FIELDS:
                kwargs[f.name] = raw == "1"
            elif f.name in cls.INT_FIELDS:
                kwargs[f.name] = int(raw) if raw else 0
            else:
                kwargs[f.name] = raw or None
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CachedGuild(_HashStruct):
    id: str
    name: str
    icon: str | None = None
    owner_id: str | None = None
    shard_id: int = 0

    INT_FIELDS = frozenset({"shard_id"})

    @classmethod
    def from_discord(cls, guild: discord.Guild) -> CachedGuild:
        return cls(
            id=str(guild.id),
            name=guild.name,
            icon=guild.icon.key if guild.icon else None,
            owner_id=str(guild.owner_id) if guild.owner_id else None,
            shard_id=guild.shard_id or 0,
        )


@dataclass
class CachedChannel(_HashStruct):
    id: str
    name: str
    guild_id: str
    type: str = "text"
    position: int = 0

    INT_FIELDS = frozenset({"position"})

    @classmethod
    def from_discord(cls, channel: discord.abc.GuildChannel) -> CachedChannel:
        return cls(
            id=str(channel.id),
            name=channel.name,
            guild_id=str(channel.guild.id),
            type=str(channel.type),
            position=channel.position,
        )


@dataclass
class CachedRole(_HashStruct):
    id: str
    name: str
    guild_id: str
    color: int = 0
    position: int = 0
    permissions: int = 0
    hoist: bool = False
    mentionable: bool = False

    INT_FIELDS = frozenset({"color", "position", "permissions"})
    BOOL_FIELDS = frozenset({"hoist", "mentionable"})

    @classmethod
    def from_discord(cls, role: discord.Role) -> CachedRole:
        return cls(
            id=str(role.id),
            name=role.name,
            guild_id=str(role.guild.id),
            color=role.color.value,
            position=role.position,
            permissions=role.permissions.value,
            hoist=role.hoist,
            mentionable=role.mentionable,
        )


@dataclass
class CachedMember(_HashStruct):
    """A guild member who may edit the guild's feeds.

    Only members holding ADMINISTRATOR or MANAGE_CHANNELS are mirrored; the
    rest are irrelevant to the dashboard.
    """
    id: str
    guild_id: str
    is_admin: bool = False
    manage_channels: bool = False

    BOOL_FIELDS = frozenset({"is_admin", "manage_channels"})

    @classmethod
    def from_discord(cls, member: discord.Member) -> CachedMember:
        perms = member.guild_permissions
        return cls(
            id=str(member.id),
            guild_id=str(member.guild.id),
            is_admin=perms.administrator,
            manage_channels=perms.manage_channels,
        )

    @property
    def can_manage(self) -> bool:
        return self.is_admin or self.manage_channels


@dataclass
class CachedUser(_HashStruct):
    id: str
    username: str
    discriminator: str | None = None
    avatar: str | None = None
    bot: bool = False

    BOOL_FIELDS = frozenset({"bot"})

    @classmethod
    def from_discord(cls, user: discord.abc.User) -> CachedUser:
        return cls(
            id=str(user.id),
            username=user.name,
            discriminator=user.discriminator,
            avatar=user.avatar.key if user.avatar else None,
            bot=user.bot,
        )
