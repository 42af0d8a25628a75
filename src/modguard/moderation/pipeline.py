"""
Moderation pipeline: from inbound content to recorded decision and enforcement.

For each message the pipeline loads the community's two-level configuration,
runs the detection engine, records the decision (never overwriting an earlier
one), feeds the training corpus and, when policy calls for it, hands a ban
intent to the orchestrator. Human review resolution and mark-as-spam also live
here because both produce manual decisions.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from modguard.database.db_connection import ConnectionManager
from modguard.datatypes.action_datatypes import (
    SYSTEM_EXECUTOR,
    ActionOutcome,
    ActionType,
    EnforcementIntent,
)
from modguard.datatypes.detection_datatypes import (
    CheckName,
    CheckResult,
    ContentContext,
    Decision,
    DetectionAction,
    DetectionPolicy,
    DetectionSource,
)
from modguard.datatypes.identifiers import ChannelID, GuildID, MessageID, UserID
from modguard.detection.detection_engine import DetectionEngine
from modguard.detection.scope_resolver import resolve_policy
from modguard.detection.training_feed import TrainingCorpusFeed
from modguard.errors import EvaluationError
from modguard.moderation.admin_reports import AdminReporter
from modguard.moderation.orchestrator import ModerationOrchestrator
from modguard.repositories.account_repo import AccountRepo
from modguard.repositories.audit_repo import AuditEntry, AuditRepo
from modguard.repositories.check_config_repo import CheckConfigRepo
from modguard.repositories.decision_repo import DecisionRepo
from modguard.util.logger import get_logger

logger = get_logger("moderation_pipeline")

DETECTION_ACTOR = "system:detection"


@dataclass(slots=True)
class PipelineResult:
    """What happened to one piece of content.

    Attributes:
        decision: The recorded decision, None when evaluation failed.
        intent: Enforcement intent issued, if any.
        outcome: Outcome of that intent, if any.
        stale: A newer edit of the same message had already been evaluated.
        skipped: Why an enforcing decision did not produce an intent.
        error: Evaluation error text when no decision could be made.
    """
    decision: Decision | None = None
    intent: EnforcementIntent | None = None
    outcome: ActionOutcome | None = None
    stale: bool = False
    skipped: str | None = None
    error: str | None = None


def automatic_ban_reason(decision: Decision) -> str:
    top = max((r for r in decision.results if r.is_spam and r.votes_for_enforcement),
              key=lambda r: r.confidence, default=None)
    via = f" via {top.check}" if top else ""
    return f"Automatic spam detection (confidence {decision.net_confidence}%{via})"


class ModerationPipeline:
    """Wires detection, persistence, training and enforcement together."""

    def __init__(
        self,
        engine: DetectionEngine,
        connections: ConnectionManager,
        feed: TrainingCorpusFeed,
        orchestrator: ModerationOrchestrator,
        reporter: AdminReporter | None = None,
        default_policy: DetectionPolicy | None = None,
    ):
        self.engine = engine
        self.connections = connections
        self.feed = feed
        self.orchestrator = orchestrator
        self.reporter = reporter
        self.default_policy = default_policy

    # ------------------------------------------------------------------
    # Automatic path
    # ------------------------------------------------------------------

    async def handle_content(self, context: ContentContext, cancel_event: asyncio.Event | None = None) -> PipelineResult:
        """
        Evaluate one message (or edit) and act on the decision.

        Evaluation failures are audited and returned in ``error``; they are
        never treated as a Clean verdict. Cancellation propagates as
        :class:`EvaluationCancelled`.
        """
        async with self.connections.read() as conn:
            scope = await CheckConfigRepo.load_scope(conn, context.guild_id, self.default_policy)

        try:
            decision = await self.engine.evaluate(context, scope, cancel_event)
        except EvaluationError as exc:
            logger.error("[PIPELINE] No decision for message %s: %s", context.message_id, exc)
            await self._audit(DETECTION_ACTOR, "detection", "evaluation_failed", context.user_id, context.guild_id,
                              {"message_id": str(context.message_id), "error": str(exc)})
            return PipelineResult(error=str(exc))

        decision, stale = await self._record(decision)
        result = PipelineResult(decision=decision, stale=stale)
        if decision.decision_id is not None:
            await self.feed.record(decision)

        if stale:
            logger.info("[PIPELINE] Decision for message %s v%d is stale, not acting",
                        context.message_id, context.edit_version)
            result.skipped = "stale edit"
            return result

        if decision.action is DetectionAction.REVIEW:
            if self.reporter:
                await self.reporter.report_review(decision)
            return result

        if decision.action is not DetectionAction.AUTO_BAN:
            return result

        if not decision.should_enforce:
            logger.info("[PIPELINE] Training mode: Spam decision %s recorded without enforcement", decision.decision_id)
            result.skipped = "training mode"
            return result

        async with self.connections.read() as conn:
            account_training = await AccountRepo.is_training_mode(conn, context.user_id)
        if account_training:
            logger.info("[PIPELINE] Training mode for %s: Spam decision %s recorded without enforcement",
                        context.user_id, decision.decision_id)
            result.skipped = "training mode"
            return result

        if await self.orchestrator.is_trusted(context.user_id):
            logger.info("[PIPELINE] %s is trusted, not auto-enforcing decision %s", context.user_id, decision.decision_id)
            result.skipped = "trusted account"
            return result

        intent = EnforcementIntent(
            user_id=context.user_id,
            executor=SYSTEM_EXECUTOR,
            action=ActionType.BAN,
            reason=automatic_ban_reason(decision),
            guild_id=context.guild_id,
            channel_id=context.channel_id,
            message_id=context.message_id,
        )
        result.intent = intent
        await self._delete_message(context.guild_id, context.channel_id, context.message_id)
        result.outcome = await self.orchestrator.execute(intent, cancel_event)
        if self.reporter:
            await self.reporter.report_enforcement(decision, result.outcome)
        return result

    async def _record(self, decision: Decision) -> tuple[Decision, bool]:
        """Insert the decision; report whether a newer edit was already recorded."""
        async with self.connections.transaction() as conn:
            latest = None
            if decision.message_id is not None:
                latest = await DecisionRepo.latest_edit_version(conn, decision.message_id)
            outdated = latest is not None and latest > decision.edit_version
            decision_id = await DecisionRepo.insert(conn, decision, queue_review=not outdated)
            if decision_id is not None and decision.message_id is not None and not outdated:
                await DecisionRepo.drop_outdated_reviews(conn, decision.message_id, decision.edit_version)
            await AuditRepo.append(conn, AuditEntry(
                actor=DETECTION_ACTOR if decision.source is DetectionSource.AUTOMATIC else "system:review",
                action="detection",
                outcome=str(decision.verdict),
                target_user_id=decision.user_id,
                guild_id=decision.guild_id,
                detail={
                    "decision_id": decision_id,
                    "message_id": str(decision.message_id) if decision.message_id else None,
                    "edit_version": decision.edit_version,
                    "net_confidence": decision.net_confidence,
                    "accuracy_confidence": decision.accuracy_confidence,
                    "action": str(decision.action),
                    "source": str(decision.source),
                    "training_mode": decision.policy.training_mode,
                },
            ))
        if decision_id is None:
            return decision, True
        return decision.with_id(decision_id), outdated

    async def _delete_message(self, guild_id, channel_id, message_id) -> None:
        if guild_id is None or channel_id is None or message_id is None:
            return
        try:
            await asyncio.wait_for(
                self.orchestrator.platform.delete_message(guild_id, channel_id, message_id),
                timeout=self.orchestrator.call_timeout,
            )
        except Exception as exc:
            logger.warning("[PIPELINE] Could not delete message %s: %s", message_id, exc)

    async def _audit(self, actor, action, outcome, user_id, guild_id, detail) -> None:
        async with self.connections.transaction() as conn:
            await AuditRepo.append(conn, AuditEntry(
                actor=actor, action=action, outcome=outcome,
                target_user_id=user_id, guild_id=guild_id, detail=detail,
            ))

    # ------------------------------------------------------------------
    # Manual paths
    # ------------------------------------------------------------------

    async def _manual_decision(
        self,
        user_id: UserID,
        is_spam: bool,
        text: str,
        guild_id: GuildID | None,
        channel_id: ChannelID | None,
        message_id: MessageID | None,
        reviewer: str,
    ) -> Decision:
        async with self.connections.read() as conn:
            scope = await CheckConfigRepo.load_scope(conn, guild_id, self.default_policy)
            edit_version = 0
            if message_id is not None:
                edit_version = await DecisionRepo.latest_edit_version(conn, message_id) or 0

        label = (
            CheckResult.spam(CheckName.MANUAL, 100, details=f"labeled spam by {reviewer}")
            if is_spam else
            CheckResult.clean(CheckName.MANUAL, 0, details=f"labeled clean by {reviewer}")
        )
        decision = Decision(
            user_id=user_id,
            results=(label,),
            policy=resolve_policy(scope),
            source=DetectionSource.MANUAL,
            message_id=message_id,
            guild_id=guild_id,
            channel_id=channel_id,
            edit_version=edit_version,
            text=text,
            training_eligible=True,
        )
        recorded, _ = await self._record(decision)
        if recorded.decision_id is None:
            async with self.connections.read() as conn:
                recorded = await DecisionRepo.find(conn, message_id, edit_version, DetectionSource.MANUAL)
        await self.feed.record(recorded)
        return recorded

    async def mark_as_spam(
        self,
        user_id: UserID,
        executor: str,
        text: str,
        guild_id: GuildID | None = None,
        channel_id: ChannelID | None = None,
        message_id: MessageID | None = None,
    ) -> ActionOutcome:
        """
        Label a message as spam, delete it and ban its author everywhere.

        The ban revokes any trust grant, reported via ``trust_revoked``.
        """
        await self._manual_decision(user_id, True, text, guild_id, channel_id, message_id, executor)
        await self._delete_message(guild_id, channel_id, message_id)
        intent = EnforcementIntent(
            user_id=user_id,
            executor=executor,
            action=ActionType.BAN,
            reason="Marked as spam by an administrator",
            guild_id=guild_id,
            channel_id=channel_id,
            message_id=message_id,
        )
        return await self.orchestrator.execute(intent)

    async def set_account_training(self, user_id: UserID, enabled: bool, actor: str,
                                   guild_id: GuildID | None = None) -> None:
        """Switch training mode for one account; its Spam decisions stop being enforced while it is on."""
        async with self.connections.transaction() as conn:
            await AccountRepo.set_training_mode(conn, user_id, enabled)
            await AuditRepo.append(conn, AuditEntry(
                actor=actor, action="training_mode", outcome="enabled" if enabled else "disabled",
                target_user_id=user_id, guild_id=guild_id,
            ))
        logger.info("[PIPELINE] Training mode for %s set to %s by %s", user_id, enabled, actor)

    async def pending_reviews(self, guild_id: GuildID | None = None, limit: int = 25) -> list[Decision]:
        async with self.connections.read() as conn:
            return await DecisionRepo.pending_reviews(conn, guild_id, limit)

    async def resolve_review(
        self,
        decision_id: int,
        reviewer: str,
        is_spam: bool,
        enforce: bool = True,
        guild_id: GuildID | None = None,
    ) -> ActionOutcome | None:
        """
        Resolve a queued decision with a human label.

        A manual decision carrying the label is recorded and fed to training;
        the automatic decision's own eligibility is cleared since the human
        label supersedes it. When the label is spam and ``enforce`` is set, the
        author is banned.

        Returns:
            The ban outcome, or None when nothing was enforced.

        Raises:
            ValueError: If the decision does not exist, is not pending review,
                belongs to a guild other than ``guild_id`` (when given), or is
                for an edit that has since been replaced.
        """
        async with self.connections.transaction() as conn:
            original = await DecisionRepo.get(conn, decision_id)
            if original is None:
                raise ValueError(f"decision {decision_id} is not pending review")
            if guild_id is not None and original.guild_id != guild_id:
                raise ValueError(f"decision {decision_id} belongs to another server")
            if original.message_id is not None:
                latest = await DecisionRepo.latest_edit_version(conn, original.message_id)
                if latest is not None and latest > original.edit_version:
                    raise ValueError(f"decision {decision_id} is for an outdated edit of the message")
            if not await DecisionRepo.resolve_review(conn, decision_id):
                raise ValueError(f"decision {decision_id} is not pending review")

        await self.feed.set_eligibility(decision_id, False)
        await self._manual_decision(
            original.user_id, is_spam, original.text, original.guild_id,
            original.channel_id, original.message_id, reviewer,
        )
        logger.info("[PIPELINE] Review of decision %s resolved by %s as %s", decision_id, reviewer,
                    "spam" if is_spam else "clean")

        if not (is_spam and enforce):
            return None
        await self._delete_message(original.guild_id, original.channel_id, original.message_id)
        return await self.orchestrator.execute(EnforcementIntent(
            user_id=original.user_id,
            executor=reviewer,
            action=ActionType.BAN,
            reason="Confirmed as spam on review",
            guild_id=original.guild_id,
            channel_id=original.channel_id,
            message_id=original.message_id,
        ))
