"""
Enforcement primitives of the chat platform.

:class:`EnforcementPlatform` is the black box the orchestrator, the notification
strategy and the reconciler talk to. Its errors are surfaced to callers as
raised; only :class:`PrivateMessageRefused` carries meaning of its own, because
it tells the notification strategy to stop trying private messages.

:class:`DiscordPlatform` implements the primitives on top of a py-cord client.
"""

from __future__ import annotations

import datetime
from abc import ABC, abstractmethod
from dataclasses import dataclass

import discord

from modguard.datatypes.action_datatypes import ActionType
from modguard.datatypes.identifiers import ChannelID, GuildID, MessageID, UserID
from modguard.util.logger import get_logger
from modguard.util.time_utils import format_duration

logger = get_logger("platform")


class PrivateMessageRefused(Exception):
    """The platform refused to deliver a private message to the account."""


class CommunityUnavailable(Exception):
    """The bot cannot reach the community (left it, or it is not cached)."""


@dataclass(frozen=True, slots=True)
class NotificationMessage:
    """Platform-neutral notification content."""
    action: ActionType
    reason: str
    community_name: str | None = None
    expires_at: datetime.datetime | None = None
    duration: datetime.timedelta | None = None
    automatic: bool = False
    lifted: bool = False

    @property
    def title(self) -> str:
        if self.lifted:
            return "Your mute has ended" if self.action is ActionType.MUTE else "Your ban has expired"
        return {
            ActionType.BAN: "You have been banned",
            ActionType.TEMPBAN: "You have been temporarily banned",
            ActionType.MUTE: "You have been muted",
            ActionType.UNBAN: "Your ban has been lifted",
        }.get(self.action, f"Moderation action: {self.action}")

    def as_text(self) -> str:
        lines = [self.title]
        if self.community_name:
            lines.append(f"Community: {self.community_name}")
        lines.append(f"Reason: {self.reason}")
        if self.duration is not None:
            lines.append(f"Duration: {format_duration(self.duration)}")
        if self.expires_at is not None:
            lines.append(f"Expires: {self.expires_at:%Y-%m-%d %H:%M UTC}")
        return "\n".join(lines)


class EnforcementPlatform(ABC):
    """Black-box enforcement and messaging primitives, one community at a time."""

    # Longest mute the platform can apply, None when unbounded
    max_mute_duration: datetime.timedelta | None = None

    @abstractmethod
    async def restrict(
        self,
        guild_id: GuildID,
        user_id: UserID,
        action: ActionType,
        reason: str,
        until: datetime.datetime | None = None,
    ) -> None:
        """Apply a ban or mute in one community."""

    @abstractmethod
    async def lift(self, guild_id: GuildID, user_id: UserID, action: ActionType, reason: str) -> None:
        """Remove a ban or mute in one community. Lifting twice must not raise."""

    @abstractmethod
    async def delete_message(self, guild_id: GuildID, channel_id: ChannelID, message_id: MessageID) -> None:
        ...

    @abstractmethod
    async def send_private(self, user_id: UserID, message: NotificationMessage) -> None:
        """Send a private message. Raises :class:`PrivateMessageRefused` when refused."""

    @abstractmethod
    async def send_in_community(
        self,
        guild_id: GuildID,
        channel_id: ChannelID | None,
        user_id: UserID,
        message: NotificationMessage,
        reply_to: MessageID | None = None,
    ) -> None:
        """Mention the account in a community channel, as a reply when possible."""

    @abstractmethod
    async def send_admin_report(self, channel_id: ChannelID, content: str) -> None:
        ...


# ------------------------------------------------------------------
# Discord implementation
# ------------------------------------------------------------------

ACTION_STYLE = {
    ActionType.BAN:     ("🔨", discord.Color.red()),
    ActionType.TEMPBAN: ("⏳", discord.Color.dark_red()),
    ActionType.MUTE:    ("🔇", discord.Color.blue()),
    ActionType.UNBAN:   ("🔓", discord.Color.green()),
}


def build_notification_embed(message: NotificationMessage, user_id: UserID) -> discord.Embed:
    """Render a notification as an embed."""
    emoji, color = ACTION_STYLE.get(message.action, ("❓", discord.Color.light_grey()))
    embed = discord.Embed(
        title=f"{emoji} {message.title}",
        color=color,
        timestamp=datetime.datetime.now(datetime.timezone.utc),
    )
    embed.add_field(name="User", value=f"<@{user_id}> (`{user_id}`)", inline=True)
    if message.community_name:
        embed.add_field(name="Community", value=message.community_name, inline=True)
    embed.add_field(name="Reason", value=message.reason or "No reason given", inline=False)
    if message.expires_at is not None:
        label = format_duration(message.duration) if message.duration else "Timed"
        embed.add_field(
            name="Duration",
            value=f"{label} (Expires: <t:{int(message.expires_at.timestamp())}:R>)",
            inline=False,
        )
    if message.automatic:
        embed.set_footer(text="Automatic spam detection")
    return embed


class DiscordPlatform(EnforcementPlatform):
    """Enforcement primitives backed by a py-cord client."""

    max_mute_duration = datetime.timedelta(days=28)

    def __init__(self, bot: discord.Client):
        self.bot = bot

    def _guild(self, guild_id: GuildID) -> discord.Guild:
        guild = self.bot.get_guild(guild_id.to_int())
        if guild is None:
            raise CommunityUnavailable(f"guild {guild_id} is not available")
        return guild

    async def _member(self, guild: discord.Guild, user_id: UserID) -> discord.Member:
        member = guild.get_member(user_id.to_int())
        if member is None:
            member = await guild.fetch_member(user_id.to_int())
        return member

    async def restrict(self, guild_id, user_id, action, reason, until=None) -> None:
        guild = self._guild(guild_id)
        if action in (ActionType.BAN, ActionType.TEMPBAN):
            await guild.ban(discord.Object(id=user_id.to_int()), reason=reason, delete_message_seconds=0)
        elif action is ActionType.MUTE:
            member = await self._member(guild, user_id)
            await member.timeout(until, reason=reason)
        else:
            raise ValueError(f"{action} is not a restriction")

    async def lift(self, guild_id, user_id, action, reason) -> None:
        guild = self._guild(guild_id)
        try:
            if action in (ActionType.BAN, ActionType.TEMPBAN):
                await guild.unban(discord.Object(id=user_id.to_int()), reason=reason)
            elif action is ActionType.MUTE:
                member = await self._member(guild, user_id)
                await member.remove_timeout(reason=reason)
            else:
                raise ValueError(f"{action} cannot be lifted")
        except discord.NotFound:
            # Not banned or no longer a member: nothing left to lift
            logger.debug("[PLATFORM] Nothing to lift for %s in guild %s", user_id, guild_id)

    async def delete_message(self, guild_id, channel_id, message_id) -> None:
        guild = self._guild(guild_id)
        channel = guild.get_channel_or_thread(channel_id.to_int())
        if channel is None:
            channel = await guild.fetch_channel(channel_id.to_int())
        try:
            await channel.get_partial_message(message_id.to_int()).delete()
        except discord.NotFound:
            logger.debug("[PLATFORM] Message %s already deleted", message_id)

    async def send_private(self, user_id, message) -> None:
        user = self.bot.get_user(user_id.to_int()) or await self.bot.fetch_user(user_id.to_int())
        try:
            await user.send(embed=build_notification_embed(message, user_id))
        except discord.Forbidden as exc:
            raise PrivateMessageRefused(str(exc)) from exc

    async def send_in_community(self, guild_id, channel_id, user_id, message, reply_to=None) -> None:
        guild = self._guild(guild_id)
        channel = guild.get_channel_or_thread(channel_id.to_int()) if channel_id else guild.system_channel
        if channel is None:
            raise CommunityUnavailable(f"no channel to notify in guild {guild_id}")

        embed = build_notification_embed(message, user_id)
        content = f"<@{user_id}>"
        if reply_to is not None:
            reference = discord.MessageReference(
                message_id=reply_to.to_int(),
                channel_id=channel.id,
                guild_id=guild.id,
                fail_if_not_exists=False,
            )
            await channel.send(content=content, embed=embed, reference=reference)
        else:
            await channel.send(content=content, embed=embed)

    async def send_admin_report(self, channel_id, content) -> None:
        channel = self.bot.get_channel(channel_id.to_int()) or await self.bot.fetch_channel(channel_id.to_int())
        await channel.send(content[:2000])
