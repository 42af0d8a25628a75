"""
Notification delivery strategy.

One attempt at a private message (only for accounts that have interacted with
the bot privately), then one attempt at an in-community mention. Failures are
logged and reported through the returned :class:`DeliveryResult`, never raised.
"""

from __future__ import annotations

import asyncio

from modguard.database.db_connection import ConnectionManager
from modguard.datatypes.action_datatypes import DeliveryResult, NotificationChannel
from modguard.datatypes.identifiers import ChannelID, GuildID, MessageID, UserID
from modguard.moderation.platform import EnforcementPlatform, NotificationMessage, PrivateMessageRefused
from modguard.repositories.account_repo import AccountRepo
from modguard.util.logger import get_logger

logger = get_logger("notification")


class NotificationDelivery:
    """Delivers an account notification over the best available channel.

    Args:
        platform: Messaging primitives.
        connections: Used to read and update the account's private-message flag.
        call_timeout: Timeout applied to each send attempt, in seconds.
    """

    def __init__(self, platform: EnforcementPlatform, connections: ConnectionManager, call_timeout: float = 10.0):
        self.platform = platform
        self.connections = connections
        self.call_timeout = call_timeout

    async def _try_private(self, user_id: UserID, message: NotificationMessage) -> tuple[bool, str | None]:
        try:
            await asyncio.wait_for(self.platform.send_private(user_id, message), timeout=self.call_timeout)
        except PrivateMessageRefused as exc:
            logger.info("[NOTIFY] Private messages refused by %s, disabling: %s", user_id, exc)
            async with self.connections.transaction() as conn:
                await AccountRepo.set_dm_enabled(conn, user_id, False)
            return False, f"private message refused: {exc}"
        except asyncio.TimeoutError:
            logger.warning("[NOTIFY] Private message to %s timed out", user_id)
            return False, "private message timed out"
        except Exception as exc:
            logger.warning("[NOTIFY] Private message to %s failed: %s", user_id, exc)
            return False, f"private message failed: {exc}"
        return True, None

    async def _try_community(
        self,
        user_id: UserID,
        guild_id: GuildID,
        channel_id: ChannelID | None,
        reply_to: MessageID | None,
        message: NotificationMessage,
    ) -> tuple[bool, str | None]:
        try:
            await asyncio.wait_for(
                self.platform.send_in_community(guild_id, channel_id, user_id, message, reply_to=reply_to),
                timeout=self.call_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("[NOTIFY] Community mention of %s in %s timed out", user_id, guild_id)
            return False, "community mention timed out"
        except Exception as exc:
            logger.warning("[NOTIFY] Community mention of %s in %s failed: %s", user_id, guild_id, exc)
            return False, f"community mention failed: {exc}"
        return True, None

    async def deliver(
        self,
        user_id: UserID,
        fallback_guild_id: GuildID | None,
        message: NotificationMessage,
        fallback_channel_id: ChannelID | None = None,
        reply_to: MessageID | None = None,
    ) -> DeliveryResult:
        """
        Notify ``user_id`` once, private message first.

        Args:
            user_id: Account to notify.
            fallback_guild_id: Community to mention the account in if the private
                message is not possible. None disables the fallback.
            message: What to say.
            fallback_channel_id: Channel for the mention; the community's system
                channel is used when None.
            reply_to: Message to attach the mention to as a reply.

        Returns:
            DeliveryResult: Channel that succeeded, or NONE with the last error.
        """
        errors = []

        async with self.connections.read() as conn:
            dm_enabled = await AccountRepo.is_dm_enabled(conn, user_id)

        if dm_enabled:
            delivered, error = await self._try_private(user_id, message)
            if delivered:
                logger.debug("[NOTIFY] Notified %s privately", user_id)
                return DeliveryResult(NotificationChannel.PRIVATE_MESSAGE)
            errors.append(error)
        else:
            logger.debug("[NOTIFY] %s has never messaged the bot privately, skipping DM", user_id)

        if fallback_guild_id is not None:
            delivered, error = await self._try_community(
                user_id, fallback_guild_id, fallback_channel_id, reply_to, message
            )
            if delivered:
                logger.debug("[NOTIFY] Notified %s by mention in %s", user_id, fallback_guild_id)
                return DeliveryResult(NotificationChannel.COMMUNITY_MENTION)
            errors.append(error)

        return DeliveryResult(NotificationChannel.NONE, error="; ".join(e for e in errors if e) or "no channel available")
