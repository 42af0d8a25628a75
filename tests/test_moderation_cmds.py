"""Tests for the moderation command replies and helpers."""

from datetime import datetime, timezone

import pytest

from modguard.bot.cogs.moderation_cmds import format_outcome_response
from modguard.datatypes.action_datatypes import ActionOutcome, ActionType, FailureKind, NotificationChannel
from modguard.util.discord_utils import parse_message_link

TARGET = "<@42>"


def test_full_success():
    outcome = ActionOutcome(
        success=True, action=ActionType.BAN, chats_affected=3, chats_targeted=3,
        notification=NotificationChannel.PRIVATE_MESSAGE,
    )
    assert format_outcome_response(outcome, TARGET) == (
        "✅ Banned <@42> in 3 of 3 communities.\nNotified by private message."
    )


def test_partial_success_reports_error_and_expiry():
    expires = datetime(2024, 6, 1, 12, 30, tzinfo=timezone.utc)
    outcome = ActionOutcome(
        success=True, action=ActionType.MUTE, chats_affected=2, chats_targeted=3,
        error="Forbidden: Missing Permissions", expires_at=expires,
    )

    lines = format_outcome_response(outcome, TARGET).splitlines()

    assert lines[0] == "✅ Muted <@42> in 2 of 3 communities."
    assert lines[1] == f"Expires: 2024-06-01 12:30 UTC (<t:{int(expires.timestamp())}:R>)"
    assert "Could not notify the account." in lines
    assert lines[-1] == "⚠️ Partial failure: Forbidden: Missing Permissions"


def test_trust_revocation_is_reported():
    outcome = ActionOutcome(
        success=True, action=ActionType.BAN, chats_affected=1, chats_targeted=1, trust_revoked=True,
        notification=NotificationChannel.COMMUNITY_MENTION,
    )
    text = format_outcome_response(outcome, TARGET)
    assert "Trust was revoked." in text
    assert "Notified by mention in the community." in text


def test_trust_has_no_counts_or_notification():
    outcome = ActionOutcome(success=True, action=ActionType.TRUST, chats_affected=2, chats_targeted=2)
    assert format_outcome_response(outcome, TARGET) == "✅ Trusted <@42>."


@pytest.mark.parametrize("action, text", [
    (ActionType.TRUST, "ℹ️ <@42> is already trusted; nothing to do."),
    (ActionType.UNBAN, "ℹ️ <@42> is not banned; nothing to do."),
])
def test_no_op(action, text):
    assert format_outcome_response(ActionOutcome(success=True, action=action, no_op=True), TARGET) == text


def test_failures():
    rejected = ActionOutcome.rejected(ActionType.BAN, "account holds an administrator role")
    assert format_outcome_response(rejected, TARGET) == "❌ Rejected: account holds an administrator role"

    cancelled = ActionOutcome.aborted(ActionType.BAN, chats_affected=1)
    assert format_outcome_response(cancelled, TARGET) == "❌ Cancelled after 1 communities: operation cancelled"

    everywhere = ActionOutcome(
        success=False, action=ActionType.BAN, chats_targeted=4, error="boom", failure=FailureKind.ENFORCEMENT,
    )
    assert format_outcome_response(everywhere, TARGET) == "❌ ban failed in all 4 communities (0 affected): boom"


def test_parse_message_link():
    link = parse_message_link("https://discord.com/channels/111/222/333")
    assert (link.guild_id, link.channel_id, link.message_id) == (111, 222, 333)

    canary = parse_message_link("https://canary.discordapp.com/channels/1/2/3/")
    assert canary.message_id == 3


@pytest.mark.parametrize("bad", [
    "https://discord.com/channels/@me/222/333",
    "https://example.com/channels/1/2/3",
    "not a link",
])
def test_parse_message_link_rejects(bad):
    with pytest.raises(ValueError):
        parse_message_link(bad)
