"""
tests/test_bot.py — Shard bot, cogs and the shard process entry point
======================================================================
discord.py objects are SimpleNamespace / MagicMock stand-ins; nothing
connects to the gateway.
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import MagicMock, PropertyMock, patch

import discord
import pytest
from conftest import (
    GUILD_ID,
    MANAGER_ID,
    TEXT_CHANNEL_ID,
    VISITOR_ID,
    fake_guild,
    fake_member,
    fake_role,
    fake_user,
    make_config,
    populated_guild,
)

from rsspanel.bot import shard as shard_mod
from rsspanel.bot.cogs.channels import Channels
from rsspanel.bot.cogs.guilds import Guilds
from rsspanel.bot.cogs.members import Members
from rsspanel.bot.core import EXTENSIONS, PanelBot
from rsspanel.constants import MSG_COMPLETE, MSG_CREATED, MSG_EXIT


def _run(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


def _text_channel(channel_id, guild, name="chan"):
    channel = MagicMock(spec=discord.TextChannel)
    channel.id = channel_id
    channel.name = name
    channel.guild = guild
    channel.type = "text"
    channel.position = 0
    return channel


# ===========================================================================
# PanelBot
# ===========================================================================
class TestPanelBot:
    @pytest.fixture
    def bot(self, mirror):
        conn = MagicMock()
        return PanelBot(make_config(), mirror, shard_id=0, shard_count=1, conn=conn)

    def test_intents(self, bot):
        assert bot.intents.guilds
        assert bot.intents.members
        assert not bot.intents.message_content

    def test_extensions_cover_every_cog(self):
        assert set(EXTENSIONS) == {
            "rsspanel.bot.cogs.guilds",
            "rsspanel.bot.cogs.channels",
            "rsspanel.bot.cogs.members",
        }

    def test_on_ready_rebuilds_mirror_and_reports(self, bot, mirror):
        # A guild left behind by a previous run of this shard
        mirror.recognize_guild(fake_guild(4040, name="Gone"))
        me = fake_user(77, "rssbot", bot=True)
        live = populated_guild()

        with patch.object(PanelBot, "guilds", new_callable=PropertyMock, return_value=[live]), \
             patch.object(PanelBot, "users", new_callable=PropertyMock, return_value=[me]), \
             patch.object(PanelBot, "user", new_callable=PropertyMock, return_value=me):
            _run(bot.on_ready())
            _run(bot.on_ready())  # reconnect

        assert mirror.fetch_guild(4040) is None
        assert mirror.guild_ids() == {str(GUILD_ID)}
        assert mirror.fetch_member(GUILD_ID, MANAGER_ID) is not None
        assert mirror.fetch_bot_user().username == "rssbot"
        bot.conn.send.assert_called_once_with(MSG_COMPLETE)

    def test_report_without_pipe(self, mirror):
        bot = PanelBot(make_config(), mirror, shard_id=0, shard_count=1)
        bot.report(MSG_COMPLETE)  # no-op

    def test_report_on_broken_pipe(self, bot):
        bot.conn.send.side_effect = BrokenPipeError()
        bot.report(MSG_COMPLETE)


# ===========================================================================
# Cogs
# ===========================================================================
class TestGuildsCog:
    def test_join_and_remove(self, mirror):
        cog = Guilds(SimpleNamespace(mirror=mirror))
        guild = populated_guild()
        _run(cog.on_guild_join(guild))
        assert mirror.fetch_channel(TEXT_CHANNEL_ID) is not None

        _run(cog.on_guild_remove(guild))
        assert mirror.fetch_guild(GUILD_ID) is None

    def test_update(self, mirror):
        cog = Guilds(SimpleNamespace(mirror=mirror))
        before = fake_guild()
        mirror.recognize_guild(before)
        _run(cog.on_guild_update(before, fake_guild(name="New name")))
        assert mirror.fetch_guild(GUILD_ID).name == "New name"

    def test_role_events(self, mirror):
        cog = Guilds(SimpleNamespace(mirror=mirror))
        guild = fake_guild()
        role = fake_role(9, guild, "helpers")
        _run(cog.on_guild_role_create(role))
        assert mirror.fetch_role(9).name == "helpers"

        promoted = fake_role(9, guild, "helpers", permissions=1 << 4)
        promoted.members = [fake_member(55, guild, manage_channels=True)]
        _run(cog.on_guild_role_update(role, promoted))
        assert mirror.fetch_role(9).permissions == 1 << 4
        assert mirror.fetch_member(GUILD_ID, 55) is not None

        _run(cog.on_guild_role_delete(promoted))
        assert mirror.fetch_role(9) is None

    def test_role_delete_drops_members_who_lose_permission(self, mirror):
        cog = Guilds(SimpleNamespace(mirror=mirror))
        guild = populated_guild()
        mirror.recognize_guild(guild)
        assert mirror.fetch_member(GUILD_ID, MANAGER_ID).can_manage

        # discord.py recomputes permissions once the role is gone
        guild.members[0].guild_permissions.manage_channels = False
        mods = guild.roles[1]
        guild.roles = guild.roles[:1]
        _run(cog.on_guild_role_delete(mods))

        assert mirror.fetch_member(GUILD_ID, MANAGER_ID) is None
        assert mirror.fetch_role(mods.id) is None

    def test_role_delete_keeps_members_still_qualified(self, mirror):
        cog = Guilds(SimpleNamespace(mirror=mirror))
        guild = populated_guild()
        mirror.recognize_guild(guild)
        _run(cog.on_guild_role_delete(guild.roles[1]))
        assert mirror.fetch_member(GUILD_ID, MANAGER_ID).manage_channels

    def test_ownership_transfer_rewrites_both_owners(self, mirror):
        cog = Guilds(SimpleNamespace(mirror=mirror))
        before = fake_guild(owner_id=int(MANAGER_ID))
        before.members = [fake_member(MANAGER_ID, before, administrator=True)]
        mirror.recognize_guild(before)

        after = fake_guild(owner_id=int(VISITOR_ID))
        after.members = [
            fake_member(MANAGER_ID, after),
            fake_member(VISITOR_ID, after, administrator=True),
        ]
        _run(cog.on_guild_update(before, after))

        assert mirror.fetch_member(GUILD_ID, MANAGER_ID) is None
        assert mirror.fetch_member(GUILD_ID, VISITOR_ID).is_admin

    def test_errors_are_logged_not_raised(self, mirror, caplog):
        broken = MagicMock()
        broken.recognize_guild.side_effect = RuntimeError("redis down")
        cog = Guilds(SimpleNamespace(mirror=broken))
        _run(cog.on_guild_join(fake_guild()))
        assert "Error mirroring guild join" in caplog.text


class TestChannelsCog:
    def test_text_channel_lifecycle(self, mirror):
        cog = Channels(SimpleNamespace(mirror=mirror))
        guild = fake_guild()
        channel = _text_channel(5, guild, "news")
        _run(cog.on_guild_channel_create(channel))
        assert mirror.fetch_channel(5).name == "news"

        _run(cog.on_guild_channel_update(channel, _text_channel(5, guild, "renamed")))
        assert mirror.fetch_channel(5).name == "renamed"

        _run(cog.on_guild_channel_delete(channel))
        assert mirror.fetch_channel(5) is None

    def test_non_text_channels_ignored(self, mirror):
        cog = Channels(SimpleNamespace(mirror=mirror))
        voice = MagicMock(spec=discord.VoiceChannel)
        voice.id = 6
        _run(cog.on_guild_channel_create(voice))
        assert mirror.fetch_channel(6) is None


class TestMembersCog:
    def test_join_update_remove(self, mirror):
        cog = Members(SimpleNamespace(mirror=mirror))
        guild = fake_guild()
        member = fake_member(70, guild, administrator=True, name="admin")
        _run(cog.on_member_join(member))
        assert mirror.fetch_member(GUILD_ID, 70).is_admin
        assert mirror.fetch_user(70).username == "admin"

        demoted = fake_member(70, guild, name="admin")
        demoted.roles = ["changed"]
        _run(cog.on_member_update(member, demoted))
        assert mirror.fetch_member(GUILD_ID, 70) is None

        _run(cog.on_member_join(member))
        _run(cog.on_member_remove(member))
        assert mirror.fetch_member(GUILD_ID, 70) is None

    def test_update_without_role_change_is_skipped(self, mirror):
        cog = Members(SimpleNamespace(mirror=mirror))
        guild = fake_guild()
        member = fake_member(70, guild, administrator=True)
        _run(cog.on_member_update(member, member))
        assert mirror.fetch_member(GUILD_ID, 70) is None

    def test_user_update(self, mirror):
        cog = Members(SimpleNamespace(mirror=mirror))
        mirror.recognize_user(fake_user(71, "old"))
        _run(cog.on_user_update(fake_user(71, "old"), fake_user(71, "new")))
        assert mirror.fetch_user(71).username == "new"


# ===========================================================================
# Shard process entry point
# ===========================================================================
class TestRunShard:
    def test_exit_before_initialize(self, redis_client):
        conn = MagicMock()
        conn.recv.return_value = MSG_EXIT
        with patch.object(shard_mod, "load_config", return_value=make_config()), \
             patch.object(shard_mod, "connect_redis", return_value=redis_client), \
             patch.object(shard_mod, "PanelBot") as bot_cls:
            shard_mod.run_shard(0, 1, conn)

        conn.send.assert_called_once_with(MSG_CREATED)
        bot_cls.assert_not_called()

    def test_startup_failure_reports_exit(self):
        conn = MagicMock()
        with patch.object(shard_mod, "load_config", side_effect=FileNotFoundError("nope")):
            shard_mod.run_shard(0, 1, conn)
        conn.send.assert_called_once_with(MSG_EXIT)

    def test_manager_gone_before_initialize(self, redis_client):
        conn = MagicMock()
        conn.recv.side_effect = EOFError
        with patch.object(shard_mod, "load_config", return_value=make_config()), \
             patch.object(shard_mod, "connect_redis", return_value=redis_client), \
             patch.object(shard_mod, "PanelBot") as bot_cls:
            shard_mod.run_shard(0, 1, conn)
        bot_cls.assert_not_called()

    def test_watcher_closes_bot_on_exit(self):
        conn = MagicMock()
        conn.poll.return_value = True
        conn.recv.return_value = MSG_EXIT
        closed = []

        class _Bot:
            shard_id = 0

            def is_closed(self):
                return bool(closed)

            async def close(self):
                closed.append(True)

        _run(shard_mod.watch_manager(_Bot(), conn))
        assert closed == [True]
