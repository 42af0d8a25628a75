"""Message listener Cog.

Feeds every guild message, and every edit of one, into the moderation
pipeline. Edits are evaluated as a new edit version of the same message, so a
late evaluation of an older version can never override the newer one.

Private messages sent to the bot mark the author as reachable by private
message.
"""

from __future__ import annotations

import re
from collections import OrderedDict

import discord
from discord.ext import commands

from modguard.datatypes.detection_datatypes import ContentContext
from modguard.datatypes.identifiers import ChannelID, GuildID, MessageID, UserID
from modguard.errors import EvaluationCancelled
from modguard.repositories.account_repo import AccountRepo
from modguard.repositories.decision_repo import DecisionRepo
from modguard.util.discord_utils import has_elevated_permissions, is_ignored_author
from modguard.util.logger import get_logger

logger = get_logger("message_listener_cog")

URL_RE = re.compile(r"https?://\S+")
MAX_TRACKED_EDITS = 10_000


def extract_urls(text: str) -> tuple[str, ...]:
    return tuple(URL_RE.findall(text))


class MessageListenerCog(commands.Cog):
    """Cog responsible for handling message creation and editing events."""

    def __init__(self, discord_bot_instance, runtime):
        self.bot = discord_bot_instance
        self.runtime = runtime
        # message id -> last edit version handed to the pipeline
        self._edit_versions: OrderedDict[int, int] = OrderedDict()
        logger.info("Message listener cog loaded")

    async def next_edit_version(self, message_id: MessageID) -> int:
        """Return a strictly increasing edit version for ``message_id``."""
        async with self.runtime.connections.read() as conn:
            stored = await DecisionRepo.latest_edit_version(conn, message_id) or 0
        version = max(stored, self._edit_versions.get(message_id.to_int(), 0)) + 1
        self._remember(message_id, version)
        return version

    def _remember(self, message_id: MessageID, version: int) -> None:
        self._edit_versions[message_id.to_int()] = version
        self._edit_versions.move_to_end(message_id.to_int())
        while len(self._edit_versions) > MAX_TRACKED_EDITS:
            self._edit_versions.popitem(last=False)

    def build_context(self, message: discord.Message, edit_version: int = 0) -> ContentContext:
        text = message.content.strip()
        return ContentContext(
            user_id=UserID(message.author.id),
            text=text,
            guild_id=GuildID(message.guild.id),
            channel_id=ChannelID(message.channel.id),
            message_id=MessageID(message.id),
            edit_version=edit_version,
            urls=extract_urls(text),
        )

    async def _note_presence(self, message: discord.Message) -> None:
        async with self.runtime.connections.transaction() as conn:
            await AccountRepo.record_join(
                conn,
                GuildID(message.guild.id),
                UserID(message.author.id),
                is_admin=has_elevated_permissions(message.author),
            )

    async def _should_process(self, message: discord.Message) -> bool:
        if message.guild is None:
            return False
        if is_ignored_author(message.author):
            return False
        await self._note_presence(message)
        # Moderators are not scanned
        if has_elevated_permissions(message.author):
            return False
        return bool(message.content and message.content.strip())

    async def _evaluate(self, context: ContentContext) -> None:
        if self.runtime.pipeline is None:
            logger.debug("Pipeline not ready, skipping message %s", context.message_id)
            return
        try:
            result = await self.runtime.pipeline.handle_content(context)
        except EvaluationCancelled:
            logger.info("Evaluation of message %s cancelled", context.message_id)
            return
        except Exception as e:
            logger.error("Error evaluating message %s: %s", context.message_id, e, exc_info=True)
            return
        if result.decision is not None:
            logger.debug(
                "Message %s v%d: %s (%d%%)",
                context.message_id, context.edit_version, result.decision.action, result.decision.net_confidence,
            )

    @commands.Cog.listener(name="on_message")
    async def on_message(self, message: discord.Message):
        """
        Handle new messages.

        Private messages to the bot mark the author as DM-eligible; guild
        messages from regular members are evaluated.
        """
        if message.guild is None:
            if not message.author.bot:
                async with self.runtime.connections.transaction() as conn:
                    await AccountRepo.set_dm_enabled(conn, UserID(message.author.id), True)
            return

        if not await self._should_process(message):
            return

        logger.debug("Received message from %s: %s", message.author, message.content[:80])
        self._remember(MessageID(message.id), 0)
        await self._evaluate(self.build_context(message))

    @commands.Cog.listener(name="on_message_edit")
    async def on_message_edit(self, before: discord.Message, after: discord.Message):
        """Re-evaluate a message whose text changed, as its next edit version."""
        if (before.content or "").strip() == (after.content or "").strip():
            return
        if not await self._should_process(after):
            return

        version = await self.next_edit_version(MessageID(after.id))
        await self._evaluate(self.build_context(after, edit_version=version))


def setup(discord_bot_instance, runtime):
    """Register the MessageListenerCog with the bot."""
    discord_bot_instance.add_cog(MessageListenerCog(discord_bot_instance, runtime))
