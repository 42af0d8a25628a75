"""
Training corpus feed.

Collects labeled examples from training-eligible decisions and hands them to
learning checks on request. The sample set is bounded: every manually labeled
example is kept, plus the most recent ``max_automatic`` automatic examples per
label.
"""

from __future__ import annotations

from typing import AsyncIterator

from modguard.database.db_connection import ConnectionManager
from modguard.datatypes.detection_datatypes import (
    Decision,
    DetectionAction,
    DetectionSource,
    Verdict,
)
from modguard.repositories.decision_repo import DecisionRepo
from modguard.repositories.training_sample_repo import TrainingSample, TrainingSampleRepo
from modguard.util.logger import get_logger

logger = get_logger("training_feed")

# Automatic samples need text worth learning from
MIN_SAMPLE_LENGTH = 10


def is_training_eligible(decision: Decision) -> bool:
    """Default eligibility of a freshly evaluated decision.

    Manual decisions are always eligible. Automatic decisions are eligible only
    when the signal is unambiguous: an unvetoed auto-ban, or a unanimous clean
    where no check voted Spam and none abstained.
    """
    if decision.source is DetectionSource.MANUAL:
        return True
    if len(decision.text.strip()) < MIN_SAMPLE_LENGTH:
        return False
    classification = decision.classification
    if classification.action is DetectionAction.AUTO_BAN and not classification.vetoed:
        return True
    if decision.verdict is Verdict.CLEAN:
        return decision.accuracy_confidence == 0 and not any(r.abstained for r in decision.results)
    return False


class TrainingCorpusFeed:
    """Bounded, quality-filtered sample store fed by decisions.

    Args:
        connections: Database connection manager.
        max_automatic: Automatic samples kept per label.
    """

    def __init__(self, connections: ConnectionManager, max_automatic: int = 500):
        if max_automatic < 0:
            raise ValueError("max_automatic must not be negative")
        self.connections = connections
        self.max_automatic = max_automatic

    async def record(self, decision: Decision) -> bool:
        """
        Add the decision to the corpus if it is training-eligible.

        The decision must already be persisted (``decision_id`` set). Manual
        decisions replace any automatic sample taken from the same message.

        Returns:
            True if a sample was written.
        """
        if not decision.training_eligible:
            return False
        if decision.decision_id is None:
            raise ValueError("decision must be persisted before it can be recorded for training")

        sample = TrainingSample(
            decision_id=decision.decision_id,
            message_id=decision.message_id,
            label=decision.verdict,
            source=decision.source,
            text=decision.text,
            created_at=decision.evaluated_at,
        )
        async with self.connections.transaction() as conn:
            if decision.source is DetectionSource.MANUAL and decision.message_id is not None:
                await TrainingSampleRepo.delete_automatic_for_message(conn, decision.message_id)
            await TrainingSampleRepo.upsert(conn, sample)
            if decision.source is DetectionSource.AUTOMATIC:
                await TrainingSampleRepo.prune_automatic(conn, sample.label, self.max_automatic)

        logger.debug("[TRAINING] Recorded %s %s sample from decision %s", sample.source, sample.label, decision.decision_id)
        return True

    async def set_eligibility(self, decision_id: int, eligible: bool) -> bool:
        """
        Flip a decision's training eligibility and add or drop its sample.

        Returns:
            False if no such decision exists.
        """
        async with self.connections.transaction() as conn:
            if not await DecisionRepo.set_training_eligible(conn, decision_id, eligible):
                return False
            if not eligible:
                await TrainingSampleRepo.delete_for_decision(conn, decision_id)
        if eligible:
            async with self.connections.read() as conn:
                decision = await DecisionRepo.get(conn, decision_id)
            await self.record(decision)
        logger.info("[TRAINING] Decision %s training eligibility set to %s", decision_id, eligible)
        return True

    async def samples(self, label: Verdict) -> AsyncIterator[TrainingSample]:
        """
        Lazily yield every manual sample of ``label``, then the most recent
        automatic ones up to the bound.
        """
        async with self.connections.read() as conn:
            async for sample in TrainingSampleRepo.iter_samples(conn, label, DetectionSource.MANUAL):
                yield sample
            async for sample in TrainingSampleRepo.iter_samples(
                conn, label, DetectionSource.AUTOMATIC, limit=self.max_automatic
            ):
                yield sample

    async def prune(self) -> int:
        """Trim automatic samples of both labels to the bound."""
        removed = 0
        async with self.connections.transaction() as conn:
            for label in Verdict:
                removed += await TrainingSampleRepo.prune_automatic(conn, label, self.max_automatic)
        if removed:
            logger.info("[TRAINING] Pruned %d automatic samples beyond the bound", removed)
        return removed
