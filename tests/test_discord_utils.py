"""Tests for discord_utils module."""

from unittest.mock import MagicMock

import discord
import pytest

from modguard.datatypes.identifiers import GuildID
from modguard.util.discord_utils import (
    executor_for,
    has_elevated_permissions,
    has_permissions,
    is_ignored_author,
    is_invoking_guild,
)


def make_member(bot=False, **perms):
    member = MagicMock(spec=discord.Member)
    member.bot = bot
    member.id = 7
    member.guild_permissions = MagicMock(
        administrator=perms.get("administrator", False),
        manage_guild=perms.get("manage_guild", False),
        moderate_members=perms.get("moderate_members", False),
        ban_members=perms.get("ban_members", False),
    )
    return member


class TestIsIgnoredAuthor:
    """Test the is_ignored_author function."""

    def test_member_is_not_ignored(self):
        assert is_ignored_author(make_member()) is False

    def test_bot_is_ignored(self):
        assert is_ignored_author(make_member(bot=True)) is True

    def test_plain_user_is_ignored(self):
        user = MagicMock(spec=discord.User)
        user.bot = False
        assert is_ignored_author(user) is True


class TestHasElevatedPermissions:
    """Test the has_elevated_permissions function."""

    @pytest.mark.parametrize("perm", ["administrator", "manage_guild", "moderate_members"])
    def test_protected_roles(self, perm):
        assert has_elevated_permissions(make_member(**{perm: True})) is True

    def test_regular_member(self):
        assert has_elevated_permissions(make_member(ban_members=True)) is False

    def test_non_member(self):
        assert has_elevated_permissions(MagicMock(spec=discord.User)) is False


class TestHasPermissions:
    """Test the has_permissions function."""

    def test_all_required(self):
        ctx = MagicMock()
        ctx.author = make_member(ban_members=True, manage_guild=True)
        assert has_permissions(ctx, ban_members=True, manage_guild=True) is True

    def test_missing_one(self):
        ctx = MagicMock()
        ctx.author = make_member(ban_members=True)
        assert has_permissions(ctx, ban_members=True, manage_guild=True) is False

    def test_outside_guild(self):
        ctx = MagicMock()
        ctx.author = MagicMock(spec=discord.User)
        assert has_permissions(ctx, ban_members=True) is False


def test_executor_for():
    assert executor_for(make_member()) == "user:7"


class TestIsInvokingGuild:
    """Test the is_invoking_guild function."""

    def test_same_guild(self):
        ctx = MagicMock()
        ctx.guild.id = 111
        assert is_invoking_guild(ctx, GuildID(111)) is True

    def test_other_guild(self):
        ctx = MagicMock()
        ctx.guild.id = 111
        assert is_invoking_guild(ctx, GuildID(222)) is False

    def test_direct_message(self):
        ctx = MagicMock()
        ctx.guild = None
        assert is_invoking_guild(ctx, GuildID(111)) is False
