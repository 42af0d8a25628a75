"""
Small Discord helpers shared by the cogs.
"""

from __future__ import annotations

import re
from typing import NamedTuple, Union

import discord

from modguard.datatypes.identifiers import ChannelID, GuildID, MessageID

MESSAGE_LINK_RE = re.compile(
    r"https?://(?:(?:ptb|canary)\.)?discord(?:app)?\.com/channels/(\d+)/(\d+)/(\d+)/?$"
)


class MessageLink(NamedTuple):
    guild_id: GuildID
    channel_id: ChannelID
    message_id: MessageID


def parse_message_link(link: str) -> MessageLink:
    """
    Split a "Copy Message Link" URL into its identifiers.

    Args:
        link (str): URL of the form ``https://discord.com/channels/<guild>/<channel>/<message>``.

    Returns:
        MessageLink: The three identifiers.

    Raises:
        ValueError: If the link is not a guild message link.
    """
    match = MESSAGE_LINK_RE.match(link.strip())
    if not match:
        raise ValueError(f"not a message link: {link!r}")
    guild, channel, message = (int(part) for part in match.groups())
    return MessageLink(GuildID(guild), ChannelID(channel), MessageID(message))


def executor_for(user: Union[discord.User, discord.Member]) -> str:
    """Executor string recorded for actions issued by ``user``."""
    return f"user:{user.id}"


def is_ignored_author(author: Union[discord.User, discord.Member]) -> bool:
    """
    Check if an author should be ignored by moderation handlers (bots or non-members).

    Args:
        author (discord.User | discord.Member): The user or member to check.

    Returns:
        bool: True if the author is a bot or not a member, False otherwise.
    """
    return author.bot or not isinstance(author, discord.Member)


def has_elevated_permissions(member: Union[discord.User, discord.Member]) -> bool:
    """
    Check if a member holds a protected role (administrator, manage guild, or moderate members).

    Args:
        member (discord.User | discord.Member): The member to evaluate.

    Returns:
        bool: True if the member has elevated permissions, False otherwise.
    """
    if not isinstance(member, discord.Member):
        return False

    perms = member.guild_permissions
    return any(
        getattr(perms, attr, False)
        for attr in ("administrator", "manage_guild", "moderate_members")
    )


def has_permissions(application_context: discord.ApplicationContext, **required_permissions) -> bool:
    """
    Check if the command issuer has all specified permissions in the guild.

    Args:
        application_context (discord.ApplicationContext): The command context.
        **required_permissions: Permission flags to check.

    Returns:
        bool: True if all permissions are present, False otherwise.
    """
    if not isinstance(application_context.author, discord.Member):
        return False
    return all(
        getattr(application_context.author.guild_permissions, name, False)
        for name in required_permissions
    )


def is_invoking_guild(application_context: discord.ApplicationContext, guild_id: GuildID | None) -> bool:
    """True when ``guild_id`` is the guild the command was invoked in."""
    if application_context.guild is None or guild_id is None:
        return False
    return guild_id == application_context.guild.id
