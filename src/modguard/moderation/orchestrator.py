"""
Moderation action orchestrator.

Turns an :class:`EnforcementIntent` into federation-wide enforcement:

1. validate the intent against local state only (no external call on rejection)
2. resolve every community the account is known to be in
3. call the platform in each community independently and count successes
4. persist one global :class:`ActionRecord`
5. notify the account once for restricting kinds
6. append the outcome to the audit trail

All work for one account runs under a per-account lock, so read-then-act
sequences such as trust toggling are a single critical section.
"""

from __future__ import annotations

import asyncio
from datetime import datetime

import aiosqlite

from modguard.database.db_connection import ConnectionManager
from modguard.datatypes.action_datatypes import (
    ActionOutcome,
    ActionRecord,
    ActionType,
    EnforcementIntent,
    FailureKind,
    NotificationChannel,
    reverse,
)
from modguard.datatypes.identifiers import UserID
from modguard.errors import EnforcementError, IntentValidationError
from modguard.moderation.account_locks import KeyedLocks
from modguard.moderation.fanout import FanOutResult, fan_out
from modguard.moderation.notification import NotificationDelivery
from modguard.moderation.platform import EnforcementPlatform, NotificationMessage
from modguard.repositories.account_repo import AccountRepo, Membership
from modguard.repositories.action_record_repo import ActionRecordRepo
from modguard.repositories.audit_repo import AuditEntry, AuditRepo
from modguard.util.logger import get_logger
from modguard.util.time_utils import utcnow

logger = get_logger("orchestrator")


class ModerationOrchestrator:
    """Executes enforcement intents across every community an account is in.

    Args:
        platform: Enforcement primitives.
        connections: Database connection manager.
        notifier: Notification delivery strategy.
        concurrency: Maximum community calls in flight per intent.
        call_timeout: Timeout of each platform call, in seconds.
        deadline: Overall budget for the fan-out of one intent, in seconds.
        clock: Returns the current UTC time; overridable in tests.
        locks: Per-account locks, shared with the expiry reconciler.
    """

    def __init__(
        self,
        platform: EnforcementPlatform,
        connections: ConnectionManager,
        notifier: NotificationDelivery,
        concurrency: int = 5,
        call_timeout: float = 10.0,
        deadline: float = 60.0,
        clock=utcnow,
        locks: KeyedLocks | None = None,
    ):
        self.platform = platform
        self.connections = connections
        self.notifier = notifier
        self.concurrency = concurrency
        self.call_timeout = call_timeout
        self.deadline = deadline
        self.clock = clock
        self.locks = locks if locks is not None else KeyedLocks()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute(self, intent: EnforcementIntent, cancel_event: asyncio.Event | None = None) -> ActionOutcome:
        """
        Execute ``intent`` and return its outcome.

        Validation and enforcement failures are reported through the outcome,
        not raised.

        Args:
            intent: What to do and to whom.
            cancel_event: When set, in-flight community calls are abandoned and
                a cancelled outcome is returned.
        """
        async with self.locks.hold(intent.user_id):
            return await self._execute_locked(intent, cancel_event)

    async def toggle_trust(self, user_id: UserID, executor: str, reason: str) -> ActionOutcome:
        """
        Trust an untrusted account or untrust a trusted one.

        The status read and the resulting write happen under the account lock,
        so concurrent toggles are applied one after the other.
        """
        async with self.locks.hold(user_id):
            async with self.connections.read() as conn:
                trusted = bool(await ActionRecordRepo.get_active(conn, user_id, "trust"))
            action = ActionType.UNTRUST if trusted else ActionType.TRUST
            intent = EnforcementIntent(user_id=user_id, executor=executor, action=action, reason=reason)
            return await self._execute_locked(intent, None)

    async def is_trusted(self, user_id: UserID) -> bool:
        async with self.connections.read() as conn:
            return bool(await ActionRecordRepo.get_active(conn, user_id, "trust"))

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _execute_locked(self, intent: EnforcementIntent, cancel_event: asyncio.Event | None) -> ActionOutcome:
        try:
            memberships = await self._validate(intent)
            if intent.action in (ActionType.BAN, ActionType.TEMPBAN, ActionType.MUTE):
                outcome = await self._restrict(intent, memberships, cancel_event)
            elif intent.action is ActionType.UNBAN:
                outcome = await self._unban(intent, cancel_event)
            elif intent.action is ActionType.TRUST:
                outcome = await self._trust(intent, memberships)
            else:
                outcome = await self._untrust(intent, memberships)
        except IntentValidationError as exc:
            logger.info("[ORCHESTRATOR] Rejected %s for %s: %s", intent.action, intent.user_id, exc)
            outcome = ActionOutcome.rejected(intent.action, str(exc))
        except EnforcementError as exc:
            logger.warning("[ORCHESTRATOR] %s for %s failed everywhere: %s", intent.action, intent.user_id, exc)
            outcome = ActionOutcome(
                success=False,
                action=intent.action,
                chats_targeted=exc.targeted,
                error=str(exc),
                failure=FailureKind.ENFORCEMENT,
            )

        await self._audit(intent, outcome)
        return outcome

    async def _validate(self, intent: EnforcementIntent) -> list[Membership]:
        """Check the intent against local state. Raises IntentValidationError."""
        intent.validate()
        limit = self.platform.max_mute_duration
        if intent.action is ActionType.MUTE and limit is not None and intent.duration > limit:
            raise IntentValidationError(f"mute duration cannot exceed {limit.days} days")

        async with self.connections.read() as conn:
            memberships = await AccountRepo.communities_of(conn, intent.user_id)

        if intent.action.exempts_admins:
            protected = [m.guild_id for m in memberships if m.is_admin]
            if protected:
                raise IntentValidationError(
                    f"account {intent.user_id} holds an administrator role in {len(protected)} communities"
                )
        return memberships

    # ------------------------------------------------------------------
    # Restricting kinds: ban, tempban, mute
    # ------------------------------------------------------------------

    async def _restrict(
        self,
        intent: EnforcementIntent,
        memberships: list[Membership],
        cancel_event: asyncio.Event | None,
    ) -> ActionOutcome:
        targets = [m.guild_id for m in memberships]
        if not targets:
            raise EnforcementError(f"account {intent.user_id} is not present in any known community")

        issued_at = self.clock()
        record = ActionRecord.from_intent(intent, issued_at=issued_at)

        async def restrict_in(guild_id):
            await self.platform.restrict(guild_id, intent.user_id, intent.action, intent.reason, until=record.expires_at)

        result = await self._fan_out(targets, restrict_in, cancel_event)
        self._log_failures(intent, result)

        if not result.succeeded:
            if result.cancelled:
                return ActionOutcome.aborted(intent.action)
            raise EnforcementError(
                f"{intent.action} failed in all {len(targets)} communities: {_describe(result.first_error)}",
                cause=result.first_error,
                targeted=len(targets),
            )

        # The restriction now exists somewhere, so it is recorded even if cancelled
        record_id, trust_revoked = await self._persist_restriction(record, issued_at)

        if result.cancelled:
            return ActionOutcome(
                success=False,
                action=intent.action,
                chats_affected=len(result.succeeded),
                chats_targeted=len(targets),
                error="operation cancelled",
                failure=FailureKind.CANCELLED,
                trust_revoked=trust_revoked,
                expires_at=record.expires_at,
                record_id=record_id,
            )

        delivery = await self.notifier.deliver(
            intent.user_id,
            intent.guild_id or result.succeeded[0],
            NotificationMessage(
                action=intent.action,
                reason=intent.reason,
                expires_at=record.expires_at,
                duration=intent.duration,
                automatic=intent.is_automatic,
            ),
            fallback_channel_id=intent.channel_id,
            reply_to=intent.message_id,
        )
        if not delivery.delivered:
            logger.info("[ORCHESTRATOR] Could not notify %s: %s", intent.user_id, delivery.error)

        first_error = result.first_error
        logger.info(
            "[ORCHESTRATOR] %s %s in %d/%d communities (record %s)",
            intent.action, intent.user_id, len(result.succeeded), len(targets), record_id,
        )
        return ActionOutcome(
            success=True,
            action=intent.action,
            chats_affected=len(result.succeeded),
            chats_targeted=len(targets),
            error=_describe(first_error) if first_error else None,
            trust_revoked=trust_revoked,
            notification=delivery.channel,
            expires_at=record.expires_at,
            record_id=record_id,
        )

    async def _persist_restriction(self, record: ActionRecord, now: datetime) -> tuple[int, bool]:
        """Supersede the active record of the same family, revoke trust on bans, insert."""
        trust_revoked = False
        async with self.connections.transaction() as conn:
            superseded_by = f"superseded:{record.issuer}"
            await self._reverse_active(conn, record.user_id, record.action.family, now, superseded_by)
            if record.action.family == "ban":
                revoked = await self._reverse_active(conn, record.user_id, "trust", now, f"revoked:{record.action}")
                trust_revoked = revoked > 0
            record_id = await ActionRecordRepo.insert(conn, record)
        if trust_revoked:
            logger.info("[ORCHESTRATOR] Trust of %s revoked by %s", record.user_id, record.action)
        return record_id, trust_revoked

    # ------------------------------------------------------------------
    # Unban
    # ------------------------------------------------------------------

    async def _unban(self, intent: EnforcementIntent, cancel_event: asyncio.Event | None) -> ActionOutcome:
        async with self.connections.read() as conn:
            active_bans = await ActionRecordRepo.get_active(conn, intent.user_id, "ban")
            targets = await AccountRepo.known_communities(conn, intent.user_id)

        if not active_bans:
            logger.info("[ORCHESTRATOR] %s is not banned, unban is a no-op", intent.user_id)
            if intent.restore_trust:
                await self._restore_trust(intent)
            return ActionOutcome(success=True, action=intent.action, no_op=True)

        async def lift_in(guild_id):
            await self.platform.lift(guild_id, intent.user_id, ActionType.BAN, intent.reason)

        result = await self._fan_out(targets, lift_in, cancel_event)
        self._log_failures(intent, result)

        if result.cancelled:
            return ActionOutcome.aborted(intent.action, chats_affected=len(result.succeeded))
        if targets and not result.succeeded:
            raise EnforcementError(
                f"unban failed in all {len(targets)} communities: {_describe(result.first_error)}",
                cause=result.first_error,
                targeted=len(targets),
            )

        now = self.clock()
        async with self.connections.transaction() as conn:
            await self._reverse_active(conn, intent.user_id, "ban", now, intent.executor)

        if intent.restore_trust:
            await self._restore_trust(intent)

        first_error = result.first_error
        return ActionOutcome(
            success=True,
            action=intent.action,
            chats_affected=len(result.succeeded),
            chats_targeted=len(targets),
            error=_describe(first_error) if first_error else None,
        )

    async def _restore_trust(self, intent: EnforcementIntent) -> bool:
        """Grant trust after an unban. Returns False if already trusted."""
        async with self.connections.read() as conn:
            if await ActionRecordRepo.get_active(conn, intent.user_id, "trust"):
                return False
        trust = EnforcementIntent(
            user_id=intent.user_id,
            executor=intent.executor,
            action=ActionType.TRUST,
            reason=f"trust restored on unban: {intent.reason}",
        )
        outcome = await self._trust(trust, [])
        await self._audit(trust, outcome)
        return not outcome.no_op

    # ------------------------------------------------------------------
    # Trust and untrust (global, no platform call)
    # ------------------------------------------------------------------

    async def _trust(self, intent: EnforcementIntent, memberships: list[Membership]) -> ActionOutcome:
        async with self.connections.read() as conn:
            if await ActionRecordRepo.get_active(conn, intent.user_id, "trust"):
                return ActionOutcome(success=True, action=intent.action, chats_affected=len(memberships), no_op=True)

        record = ActionRecord.from_intent(intent, issued_at=self.clock())
        try:
            async with self.connections.transaction() as conn:
                record_id = await ActionRecordRepo.insert(conn, record)
        except aiosqlite.IntegrityError:
            # Another writer outside this process trusted the account first
            return ActionOutcome(success=True, action=intent.action, chats_affected=len(memberships), no_op=True)

        logger.info("[ORCHESTRATOR] %s trusted by %s", intent.user_id, intent.executor)
        return ActionOutcome(
            success=True,
            action=intent.action,
            chats_affected=len(memberships),
            chats_targeted=len(memberships),
            record_id=record_id,
        )

    async def _untrust(self, intent: EnforcementIntent, memberships: list[Membership]) -> ActionOutcome:
        async with self.connections.transaction() as conn:
            reversed_count = await self._reverse_active(conn, intent.user_id, "trust", self.clock(), intent.executor)
        if not reversed_count:
            return ActionOutcome(success=True, action=intent.action, chats_affected=len(memberships), no_op=True)
        logger.info("[ORCHESTRATOR] %s untrusted by %s", intent.user_id, intent.executor)
        return ActionOutcome(
            success=True,
            action=intent.action,
            chats_affected=len(memberships),
            chats_targeted=len(memberships),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _fan_out(self, targets, call, cancel_event) -> FanOutResult:
        return await fan_out(
            targets,
            call,
            concurrency=self.concurrency,
            call_timeout=self.call_timeout,
            deadline=self.deadline,
            cancel_event=cancel_event,
        )

    @staticmethod
    async def _reverse_active(conn, user_id: UserID, family: str, now: datetime, by: str) -> int:
        """Move every active record of ``family`` to Reversed. Returns how many changed."""
        changed = 0
        for active in await ActionRecordRepo.get_active(conn, user_id, family):
            if await ActionRecordRepo.apply_transition(conn, active, reverse(active, now, by)):
                changed += 1
        return changed

    @staticmethod
    def _log_failures(intent: EnforcementIntent, result: FanOutResult) -> None:
        for guild_id, exc in result.failed:
            logger.warning("[ORCHESTRATOR] %s of %s failed in guild %s: %s", intent.action, intent.user_id, guild_id, _describe(exc))

    async def _audit(self, intent: EnforcementIntent, outcome: ActionOutcome) -> None:
        if outcome.failure is not None:
            status = str(outcome.failure)
        elif outcome.no_op:
            status = "no_op"
        elif outcome.partial:
            status = "partial"
        else:
            status = "success"

        entry = AuditEntry(
            actor=intent.executor,
            action=str(intent.action),
            outcome=status,
            target_user_id=intent.user_id,
            guild_id=intent.guild_id,
            occurred_at=self.clock(),
            detail={
                "reason": intent.reason,
                "duration_seconds": intent.duration.total_seconds() if intent.duration else None,
                "chats_affected": outcome.chats_affected,
                "chats_targeted": outcome.chats_targeted,
                "error": outcome.error,
                "trust_revoked": outcome.trust_revoked,
                "notification": str(outcome.notification) if outcome.notification is not NotificationChannel.NONE else None,
                "expires_at": outcome.expires_at.isoformat() if outcome.expires_at else None,
                "record_id": outcome.record_id,
                "message_id": str(intent.message_id) if intent.message_id else None,
            },
        )
        async with self.connections.transaction() as conn:
            await AuditRepo.append(conn, entry)


def _describe(exc: BaseException | None) -> str:
    if exc is None:
        return "unknown error"
    text = str(exc)
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__
