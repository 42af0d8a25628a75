"""Tests for the message listener cog helpers."""

from types import SimpleNamespace
from unittest.mock import MagicMock

from modguard.bot.cogs import message_listener
from modguard.bot.cogs.message_listener import MessageListenerCog, extract_urls
from modguard.datatypes.identifiers import ChannelID, GuildID, MessageID, UserID
from modguard.repositories.decision_repo import DecisionRepo


def test_extract_urls():
    text = "claim at https://free-nitro.example/claim and http://x.io/a?b=1 now"
    assert extract_urls(text) == ("https://free-nitro.example/claim", "http://x.io/a?b=1")
    assert extract_urls("no links here") == ()


async def test_edit_versions_strictly_increase(connections):
    cog = MessageListenerCog(MagicMock(), SimpleNamespace(connections=connections))
    message_id = MessageID(555)

    assert await cog.next_edit_version(message_id) == 1
    assert await cog.next_edit_version(message_id) == 2
    assert await cog.next_edit_version(MessageID(556)) == 1


async def test_edit_version_follows_stored_decisions(connections, monkeypatch):
    async def stored_version(conn, message_id):
        return 7

    monkeypatch.setattr(DecisionRepo, "latest_edit_version", staticmethod(stored_version))
    cog = MessageListenerCog(MagicMock(), SimpleNamespace(connections=connections))

    assert await cog.next_edit_version(MessageID(555)) == 8


def test_tracked_edits_are_bounded(monkeypatch):
    monkeypatch.setattr(message_listener, "MAX_TRACKED_EDITS", 3)
    cog = MessageListenerCog(MagicMock(), SimpleNamespace(connections=None))

    for value in range(5):
        cog._remember(MessageID(value), 1)

    assert list(cog._edit_versions) == [2, 3, 4]


def test_build_context_strips_text_and_collects_urls():
    cog = MessageListenerCog(MagicMock(), SimpleNamespace(connections=None))
    message = MagicMock()
    message.content = "  see https://spam.example  "
    message.author.id = 1
    message.guild.id = 2
    message.channel.id = 3
    message.id = 4

    context = cog.build_context(message, edit_version=2)

    assert context.text == "see https://spam.example"
    assert context.urls == ("https://spam.example",)
    assert context.user_id == UserID(1)
    assert context.guild_id == GuildID(2)
    assert context.channel_id == ChannelID(3)
    assert context.message_id == MessageID(4)
    assert context.edit_version == 2
