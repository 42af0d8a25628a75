"""
Expiry reconciler.

Periodically finds timed action records past their expiry and reverses them:

    Active --claim--> Expired --lift in every community--> Reversed

The claim is a conditional update, so when two sweeps race on one record only
one of them lifts the restriction and notifies the account. A claim whose
holder died before finishing goes stale after ``claim_timeout`` and is picked
up again by a later sweep. Lifting is idempotent on the platform side, so a
retried claim cannot fail loudly.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import List

from modguard.database.db_connection import ConnectionManager
from modguard.datatypes.action_datatypes import ActionRecord, ActionState, expire, reverse
from modguard.moderation.account_locks import KeyedLocks
from modguard.moderation.fanout import fan_out
from modguard.moderation.notification import NotificationDelivery
from modguard.moderation.platform import EnforcementPlatform, NotificationMessage
from modguard.repositories.account_repo import AccountRepo
from modguard.repositories.action_record_repo import ActionRecordRepo
from modguard.repositories.audit_repo import AuditEntry, AuditRepo
from modguard.scheduler.periodic_task import PeriodicTask
from modguard.util.logger import get_logger
from modguard.util.time_utils import utcnow

logger = get_logger("expiry_reconciler")

RECONCILER_ACTOR = "system:reconciler"


@dataclass(slots=True)
class SweepReport:
    """Counts from one sweep."""
    due: int = 0
    claimed: int = 0
    reversed: List[int] = field(default_factory=list)
    superseded: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    notified: int = 0


class ExpiryReconciler:
    """Reverses expired timed actions exactly once.

    Args:
        connections: Database connection manager.
        platform: Enforcement primitives used to lift restrictions.
        notifier: Delivery strategy for the "restriction lifted" message.
        claim_timeout: Seconds after which an unfinished claim may be retaken.
        call_timeout: Timeout of each lift call.
        concurrency: Community lift calls in flight per record.
        batch_size: Maximum records handled per sweep.
        locks: Per-account locks shared with the orchestrator.
    """

    def __init__(
        self,
        connections: ConnectionManager,
        platform: EnforcementPlatform,
        notifier: NotificationDelivery,
        claim_timeout: float = 300.0,
        call_timeout: float = 10.0,
        concurrency: int = 5,
        batch_size: int = 100,
        locks: KeyedLocks | None = None,
    ):
        self.connections = connections
        self.platform = platform
        self.notifier = notifier
        self.claim_timeout = claim_timeout
        self.call_timeout = call_timeout
        self.concurrency = concurrency
        self.batch_size = batch_size
        self.locks = locks if locks is not None else KeyedLocks()
        self.instance_id = uuid.uuid4().hex[:12]

    def scheduler(self, interval: float) -> PeriodicTask:
        """Return a periodic task running :meth:`sweep` every ``interval`` seconds."""
        return PeriodicTask("RECONCILER", self.sweep, lambda: interval)

    async def sweep(self, now: datetime | None = None) -> SweepReport:
        """
        Claim and reverse every due record.

        Args:
            now: Reference time; defaults to the current UTC time.

        Returns:
            SweepReport: What this sweep did. A record claimed by another sweep
            is not counted.
        """
        now = now or utcnow()
        stale_before = now - timedelta(seconds=self.claim_timeout)
        token = f"{self.instance_id}:{uuid.uuid4().hex[:8]}"
        report = SweepReport()

        async with self.connections.read() as conn:
            due = await ActionRecordRepo.get_due(conn, now, stale_before, self.batch_size)
        report.due = len(due)

        for record in due:
            if not await self._claim(record, now, stale_before, token):
                continue
            report.claimed += 1
            await self._reverse_claimed(record, now, token, report)

        if report.claimed:
            logger.info(
                "[RECONCILER] Sweep: %d due, %d claimed, %d reversed, %d superseded, %d failed",
                report.due, report.claimed, len(report.reversed), len(report.superseded), len(report.failed),
            )
        return report

    async def _claim(self, record: ActionRecord, now: datetime, stale_before: datetime, token: str) -> bool:
        async with self.connections.transaction() as conn:
            if record.state is ActionState.ACTIVE:
                return await ActionRecordRepo.apply_transition(conn, record, expire(record, now), claimed_by=token, now=now)
            logger.info("[RECONCILER] Retaking stale claim on record %s", record.record_id)
            return await ActionRecordRepo.reclaim_stale(conn, record.record_id, token, now, stale_before)

    async def _reverse_claimed(self, record: ActionRecord, now: datetime, token: str, report: SweepReport) -> None:
        # Held across the supersede check, the lift and the finish so a ban
        # issued meanwhile is never lifted by this expiry
        async with self.locks.hold(record.user_id):
            lifted_in = await self._lift_and_finish(record, now, token, report)
        if lifted_in is None:
            return

        delivery = await self.notifier.deliver(
            record.user_id,
            lifted_in,
            NotificationMessage(action=record.action, reason="The restriction has expired", lifted=True),
        )
        if delivery.delivered:
            report.notified += 1

    async def _lift_and_finish(self, record: ActionRecord, now: datetime, token: str, report: SweepReport):
        """Lift and close one claimed record. Returns the community to notify in, if any."""
        family = record.action.family
        async with self.connections.read() as conn:
            superseded = await ActionRecordRepo.has_active_since(conn, record.user_id, family, record.record_id)
            targets = await AccountRepo.known_communities(conn, record.user_id)

        succeeded = []
        first_error = None
        if not superseded and targets:
            async def lift_in(guild_id):
                await self.platform.lift(guild_id, record.user_id, record.action, "Restriction expired")

            result = await fan_out(
                targets, lift_in,
                concurrency=self.concurrency, call_timeout=self.call_timeout, deadline=self.call_timeout * 2,
            )
            succeeded = result.succeeded
            first_error = result.first_error
            if not succeeded:
                # Leave the claim in place; it goes stale and a later sweep retries
                logger.warning("[RECONCILER] Could not lift record %s anywhere: %s", record.record_id, first_error)
                report.failed.append(record.record_id)
                return None

        done = reverse(replace(record, state=ActionState.EXPIRED), now, RECONCILER_ACTOR)
        async with self.connections.transaction() as conn:
            finished = await ActionRecordRepo.finish_claim(conn, done, token)
            if finished:
                await AuditRepo.append(conn, AuditEntry(
                    actor=RECONCILER_ACTOR,
                    action=f"expire_{record.action}",
                    outcome="superseded" if superseded else ("partial" if first_error else "success"),
                    target_user_id=record.user_id,
                    occurred_at=now,
                    detail={
                        "record_id": record.record_id,
                        "expires_at": record.expires_at.isoformat() if record.expires_at else None,
                        "chats_affected": len(succeeded),
                        "chats_targeted": len(targets),
                        "error": str(first_error) if first_error else None,
                    },
                ))
        if not finished:
            # Our claim was taken over while we were lifting; the new holder notifies
            logger.info("[RECONCILER] Lost claim on record %s before finishing", record.record_id)
            return None

        if superseded:
            report.superseded.append(record.record_id)
            return None
        report.reversed.append(record.record_id)
        return succeeded[0] if succeeded else None
