"""Event listener Cog.

Keeps the local view of community presence current (which communities each
account is in, and whether it holds a protected role there), starts the
background tasks once the bot is connected and reports command errors.
"""

from __future__ import annotations

import discord
from discord.ext import commands

from modguard.datatypes.identifiers import GuildID, UserID
from modguard.repositories.account_repo import AccountRepo
from modguard.util.discord_utils import has_elevated_permissions
from modguard.util.logger import get_logger

logger = get_logger("events_listener_cog")


class EventsListenerCog(commands.Cog):
    """Cog containing lifecycle, presence and command error handlers."""

    def __init__(self, discord_bot_instance, runtime):
        self.bot = discord_bot_instance
        self.runtime = runtime
        logger.info("Events listener cog loaded")

    @commands.Cog.listener(name="on_ready")
    async def on_ready(self):
        """Sync guild membership into the presence table and start background tasks."""
        if self.bot.user:
            logger.info(f"Bot connected as {self.bot.user} (ID: {self.bot.user.id})")
            await self.bot.change_presence(
                status=discord.Status.online,
                activity=discord.Activity(type=discord.ActivityType.watching, name="for spam"),
            )
        else:
            logger.warning("Bot partially connected, but user information not yet available.")

        logger.info("--==--==--==--==--==--==--==--==--==--==--==--==--==--==--==--==--")

        for guild in self.bot.guilds:
            await self.sync_guild(guild)

        logger.info("Starting expiry reconciler and maintenance tasks...")
        self.runtime.start_background_tasks()

    async def sync_guild(self, guild: discord.Guild) -> int:
        """Record every cached member of ``guild`` as present. Returns the count."""
        members = [m for m in guild.members if not m.bot]
        async with self.runtime.connections.transaction() as conn:
            for member in members:
                await AccountRepo.record_join(
                    conn, GuildID(guild.id), UserID(member.id), is_admin=has_elevated_permissions(member)
                )
        logger.debug("Synced %d members of guild %s", len(members), guild.name)
        return len(members)

    @commands.Cog.listener(name="on_guild_join")
    async def on_guild_join(self, guild: discord.Guild):
        await self.sync_guild(guild)

    @commands.Cog.listener(name="on_member_join")
    async def on_member_join(self, member: discord.Member):
        if member.bot:
            return
        async with self.runtime.connections.transaction() as conn:
            await AccountRepo.record_join(
                conn, GuildID(member.guild.id), UserID(member.id), is_admin=has_elevated_permissions(member)
            )

    @commands.Cog.listener(name="on_member_remove")
    async def on_member_remove(self, member: discord.Member):
        if member.bot:
            return
        async with self.runtime.connections.transaction() as conn:
            await AccountRepo.record_leave(conn, GuildID(member.guild.id), UserID(member.id))

    @commands.Cog.listener(name="on_member_update")
    async def on_member_update(self, before: discord.Member, after: discord.Member):
        """Track gaining or losing a protected role."""
        was_admin = has_elevated_permissions(before)
        is_admin = has_elevated_permissions(after)
        if was_admin == is_admin or after.bot:
            return
        async with self.runtime.connections.transaction() as conn:
            await AccountRepo.set_admin(conn, GuildID(after.guild.id), UserID(after.id), is_admin)
        logger.info("%s in guild %s is_admin=%s", after, after.guild.name, is_admin)

    @commands.Cog.listener(name="on_application_command_error")
    async def on_application_command_error(self, application_context: discord.ApplicationContext, error: Exception):
        """Log command errors and tell the invoker something went wrong."""
        if isinstance(error, commands.CommandNotFound):
            return

        command_name = getattr(application_context.command, "name", "<unknown>")
        logger.error(f"Error in command '{command_name}': {error}", exc_info=True)

        error_message = "A :bug: showed up while running this command."
        try:
            await application_context.respond(error_message, ephemeral=True)
        except discord.InteractionResponded:
            await application_context.followup.send(error_message, ephemeral=True)


def setup(discord_bot_instance, runtime):
    """Register the EventsListenerCog with the bot."""
    discord_bot_instance.add_cog(EventsListenerCog(discord_bot_instance, runtime))
