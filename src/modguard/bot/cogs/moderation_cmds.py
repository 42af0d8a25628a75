"""
Moderation cog: administrative slash commands.

Each command maps to exactly one enforcement intent (``/markspam`` to the
mark-as-spam flow) and replies ephemerally with a definitive success or
failure, the number of communities affected, the computed expiry for timed
actions and any error detail.

Enforcement is federated: a ban issued here restricts the account in every
community the bot has seen it in, not only the one the command ran in.

Permissions
- ``/ban``, ``/tempban``, ``/unban``, ``/markspam`` need ``ban_members``.
- ``/mute`` needs ``moderate_members``.
- ``/trust``, ``/untrust``, ``/reviews``, ``/resolve`` need ``manage_guild``.
"""

from __future__ import annotations

import discord
from discord import Option
from discord.ext import commands

from modguard.datatypes.action_datatypes import ActionOutcome, ActionType, EnforcementIntent, FailureKind, NotificationChannel
from modguard.datatypes.identifiers import ChannelID, GuildID, UserID
from modguard.moderation.admin_reports import describe_decision
from modguard.util.discord_utils import executor_for, has_permissions, is_invoking_guild, parse_message_link
from modguard.util.logger import get_logger
from modguard.util.time_utils import parse_duration

logger = get_logger("moderation_cmds")

ACTION_VERBS = {
    ActionType.BAN: "Banned",
    ActionType.TEMPBAN: "Temporarily banned",
    ActionType.MUTE: "Muted",
    ActionType.UNBAN: "Unbanned",
    ActionType.TRUST: "Trusted",
    ActionType.UNTRUST: "Removed trust from",
}

NO_OP_TEXT = {
    ActionType.UNBAN: "is not banned",
    ActionType.TRUST: "is already trusted",
    ActionType.UNTRUST: "is not trusted",
}

NOTIFICATION_TEXT = {
    NotificationChannel.PRIVATE_MESSAGE: "Notified by private message.",
    NotificationChannel.COMMUNITY_MENTION: "Notified by mention in the community.",
}


def format_outcome_response(outcome: ActionOutcome, target: str) -> str:
    """Render an outcome as the ephemeral reply sent to the issuing administrator.

    Args:
        outcome: Result of the orchestration call.
        target: Human-readable account label (usually a mention).

    Returns:
        Multi-line reply text.
    """
    if not outcome.success:
        if outcome.failure is FailureKind.VALIDATION:
            return f"❌ Rejected: {outcome.error}"
        if outcome.failure is FailureKind.CANCELLED:
            return f"❌ Cancelled after {outcome.chats_affected} communities: {outcome.error}"
        return (
            f"❌ {outcome.action} failed in all {outcome.chats_targeted} communities "
            f"(0 affected): {outcome.error}"
        )

    if outcome.no_op:
        lines = [f"ℹ️ {target} {NO_OP_TEXT.get(outcome.action, 'needs no change')}; nothing to do."]
    else:
        verb = ACTION_VERBS.get(outcome.action, str(outcome.action))
        if outcome.action in (ActionType.TRUST, ActionType.UNTRUST):
            lines = [f"✅ {verb} {target}."]
        else:
            lines = [f"✅ {verb} {target} in {outcome.chats_affected} of {outcome.chats_targeted} communities."]

    if outcome.expires_at is not None:
        lines.append(
            f"Expires: {outcome.expires_at:%Y-%m-%d %H:%M UTC} (<t:{int(outcome.expires_at.timestamp())}:R>)"
        )
    if outcome.trust_revoked:
        lines.append("Trust was revoked.")
    if outcome.action.notifies_account:
        lines.append(NOTIFICATION_TEXT.get(outcome.notification, "Could not notify the account."))
    if outcome.error:
        lines.append(f"⚠️ Partial failure: {outcome.error}")
    return "\n".join(lines)


class ModerationActionCog(commands.Cog):
    """Cog containing the administrative moderation commands.

    Each command defers ephemerally, checks the invoker's permission, builds
    an intent and hands it to the orchestrator held by ``runtime``.
    """

    def __init__(self, discord_bot_instance, runtime):
        self.discord_bot_instance = discord_bot_instance
        self.runtime = runtime
        logger.info("Moderation cog loaded")

    async def _check_invoker(self, ctx: discord.ApplicationContext, target_id: int | None, **permissions) -> bool:
        if not has_permissions(ctx, **permissions):
            await ctx.send_followup("You do not have permission to use this command.")
            return False
        if target_id is not None and target_id == ctx.user.id:
            await ctx.send_followup("You cannot perform moderation actions on yourself.")
            return False
        return True

    async def _execute(self, ctx: discord.ApplicationContext, intent: EnforcementIntent, target: str) -> None:
        try:
            outcome = await self.runtime.orchestrator.execute(intent)
            await ctx.send_followup(format_outcome_response(outcome, target))
        except Exception as e:
            logger.exception("Error executing %s for %s: %s", intent.action, intent.user_id, e)
            await ctx.send_followup("An error occurred while processing the command.")

    def _intent(self, ctx, user_id: int, action: ActionType, reason: str, **kwargs) -> EnforcementIntent:
        return EnforcementIntent(
            user_id=UserID(user_id),
            executor=executor_for(ctx.user),
            action=action,
            reason=reason,
            guild_id=GuildID(ctx.guild.id) if ctx.guild else None,
            channel_id=ChannelID(ctx.channel.id) if ctx.channel else None,
            **kwargs,
        )

    async def _timed(self, ctx, user, action: ActionType, duration: str, reason: str) -> None:
        try:
            parsed = parse_duration(duration)
        except ValueError as e:
            await ctx.send_followup(f"❌ Rejected: {e}")
            return
        await self._execute(ctx, self._intent(ctx, user.id, action, reason, duration=parsed), user.mention)

    @commands.slash_command(name="ban", description="Ban a user from every community they are in.")
    async def ban(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user to ban.", required=True),  # type: ignore
        reason: Option(str, "Reason for the ban.", default="No reason provided."),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not await self._check_invoker(ctx, user.id, ban_members=True):
            return
        await self._execute(ctx, self._intent(ctx, user.id, ActionType.BAN, reason), user.mention)

    @commands.slash_command(name="tempban", description="Ban a user everywhere for a limited time.")
    async def tempban(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user to ban.", required=True),  # type: ignore
        duration: Option(str, "How long, e.g. 30m, 2h, 1d 12h.", required=True),  # type: ignore
        reason: Option(str, "Reason for the ban.", default="No reason provided."),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not await self._check_invoker(ctx, user.id, ban_members=True):
            return
        await self._timed(ctx, user, ActionType.TEMPBAN, duration, reason)

    @commands.slash_command(name="mute", description="Mute a user everywhere for a limited time.")
    async def mute(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user to mute.", required=True),  # type: ignore
        duration: Option(str, "How long, e.g. 10m, 1h.", required=True),  # type: ignore
        reason: Option(str, "Reason for the mute.", default="No reason provided."),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not await self._check_invoker(ctx, user.id, moderate_members=True):
            return
        await self._timed(ctx, user, ActionType.MUTE, duration, reason)

    @commands.slash_command(name="unban", description="Lift a ban everywhere.")
    async def unban(
        self,
        ctx: discord.ApplicationContext,
        user_id: Option(str, "ID of the user to unban.", required=True),  # type: ignore
        reason: Option(str, "Reason for the unban.", default="No reason provided."),  # type: ignore
        restore_trust: Option(bool, "Also trust the user (false positive).", default=False),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        try:
            target_id = int(user_id.strip())
        except ValueError:
            await ctx.send_followup("❌ Rejected: user_id must be a numeric user ID.")
            return
        if not await self._check_invoker(ctx, target_id, ban_members=True):
            return
        intent = self._intent(ctx, target_id, ActionType.UNBAN, reason, restore_trust=restore_trust)
        await self._execute(ctx, intent, f"<@{target_id}>")

    @commands.slash_command(name="trust", description="Exempt a user from automatic enforcement.")
    async def trust(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user to trust.", required=True),  # type: ignore
        reason: Option(str, "Reason for trusting.", default="No reason provided."),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not await self._check_invoker(ctx, None, manage_guild=True):
            return
        await self._execute(ctx, self._intent(ctx, user.id, ActionType.TRUST, reason), user.mention)

    @commands.slash_command(name="untrust", description="Remove a user's trust.")
    async def untrust(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user to untrust.", required=True),  # type: ignore
        reason: Option(str, "Reason for removing trust.", default="No reason provided."),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not await self._check_invoker(ctx, None, manage_guild=True):
            return
        await self._execute(ctx, self._intent(ctx, user.id, ActionType.UNTRUST, reason), user.mention)

    @commands.slash_command(name="accounttraining", description="Record a user's spam detections without enforcing them.")
    async def accounttraining(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user to switch.", required=True),  # type: ignore
        enabled: Option(bool, "True to stop automatic enforcement for this user.", required=True),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not await self._check_invoker(ctx, None, manage_guild=True):
            return
        try:
            await self.runtime.pipeline.set_account_training(
                UserID(user.id), enabled, executor_for(ctx.user), GuildID(ctx.guild.id) if ctx.guild else None,
            )
        except Exception as e:
            logger.exception("Error setting training mode for %s: %s", user.id, e)
            await ctx.send_followup("An error occurred while processing the command.")
            return
        state = "on" if enabled else "off"
        await ctx.send_followup(f"✅ Training mode {state} for {user.mention}.")

    @commands.slash_command(name="markspam", description="Label a message as spam, delete it and ban its author.")
    async def markspam(
        self,
        ctx: discord.ApplicationContext,
        message_link: Option(str, "Link to the message (Copy Message Link).", required=True),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not await self._check_invoker(ctx, None, ban_members=True):
            return
        try:
            link = parse_message_link(message_link)
        except ValueError:
            await ctx.send_followup("❌ Rejected: that is not a message link.")
            return
        if not is_invoking_guild(ctx, link.guild_id):
            await ctx.send_followup("❌ Rejected: that message is in another server.")
            return

        try:
            channel = self.discord_bot_instance.get_channel(link.channel_id.to_int()) \
                or await self.discord_bot_instance.fetch_channel(link.channel_id.to_int())
            message = await channel.fetch_message(link.message_id.to_int())
        except discord.HTTPException as e:
            await ctx.send_followup(f"❌ Could not fetch that message: {e}")
            return

        if message.author.id == ctx.user.id:
            await ctx.send_followup("You cannot perform moderation actions on yourself.")
            return

        try:
            outcome = await self.runtime.pipeline.mark_as_spam(
                UserID(message.author.id),
                executor_for(ctx.user),
                message.content or "",
                guild_id=link.guild_id,
                channel_id=link.channel_id,
                message_id=link.message_id,
            )
            await ctx.send_followup(format_outcome_response(outcome, message.author.mention))
        except Exception as e:
            logger.exception("Error marking message %s as spam: %s", link.message_id, e)
            await ctx.send_followup("An error occurred while processing the command.")

    @commands.slash_command(name="reviews", description="List detections waiting for review.")
    async def reviews(self, ctx: discord.ApplicationContext) -> None:
        await ctx.defer(ephemeral=True)
        if not await self._check_invoker(ctx, None, manage_guild=True):
            return
        pending = await self.runtime.pipeline.pending_reviews(GuildID(ctx.guild.id) if ctx.guild else None)
        if not pending:
            await ctx.send_followup("Nothing is waiting for review.")
            return
        lines = [f"`#{d.decision_id}` {describe_decision(d)}" for d in pending]
        await ctx.send_followup("\n".join(lines)[:2000])

    @commands.slash_command(name="resolve", description="Resolve a queued detection as spam or clean.")
    async def resolve(
        self,
        ctx: discord.ApplicationContext,
        decision_id: Option(int, "Decision number from /reviews.", required=True),  # type: ignore
        is_spam: Option(bool, "True if the message is spam.", required=True),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not await self._check_invoker(ctx, None, manage_guild=True):
            return
        try:
            outcome = await self.runtime.pipeline.resolve_review(
                decision_id, executor_for(ctx.user), is_spam, guild_id=GuildID(ctx.guild.id) if ctx.guild else None,
            )
        except ValueError as e:
            await ctx.send_followup(f"❌ Rejected: {e}")
            return
        if outcome is None:
            await ctx.send_followup(f"✅ Decision #{decision_id} resolved as clean.")
            return
        await ctx.send_followup(f"Decision #{decision_id} resolved as spam.\n" + format_outcome_response(outcome, "the author"))


def setup(discord_bot_instance, runtime):
    """Register the moderation cog with the running bot."""
    discord_bot_instance.add_cog(ModerationActionCog(discord_bot_instance, runtime))
