"""Best-effort private reports to the configured administrator channels."""

from __future__ import annotations

import asyncio
from typing import Iterable

from modguard.datatypes.action_datatypes import ActionOutcome
from modguard.datatypes.detection_datatypes import Decision
from modguard.datatypes.identifiers import ChannelID
from modguard.moderation.platform import EnforcementPlatform
from modguard.util.logger import get_logger

logger = get_logger("admin_reports")


def describe_decision(decision: Decision) -> str:
    voting = [r for r in decision.results if r.is_spam]
    checks = ", ".join(f"{r.check}={r.confidence}" for r in voting) or "none"
    return (
        f"user <@{decision.user_id}> message {decision.message_id} (edit {decision.edit_version}): "
        f"net {decision.net_confidence}, spam checks: {checks}"
    )


class AdminReporter:
    """Sends short text reports to every admin channel, never raising."""

    def __init__(self, platform: EnforcementPlatform, channel_ids: Iterable[int], call_timeout: float = 10.0):
        self.platform = platform
        self.channel_ids = [ChannelID(c) for c in channel_ids]
        self.call_timeout = call_timeout

    async def report(self, content: str) -> int:
        """Send ``content`` to each admin channel. Returns how many sends succeeded."""
        delivered = 0
        for channel_id in self.channel_ids:
            try:
                await asyncio.wait_for(self.platform.send_admin_report(channel_id, content), timeout=self.call_timeout)
                delivered += 1
            except Exception as exc:
                logger.warning("[ADMIN REPORT] Could not report to channel %s: %s", channel_id, exc)
        return delivered

    async def report_enforcement(self, decision: Decision, outcome: ActionOutcome) -> int:
        status = "banned" if outcome.success else f"ban failed ({outcome.error})"
        detail = f" in {outcome.chats_affected} communities" if outcome.success else ""
        if outcome.error and outcome.success:
            detail += f", partial failure: {outcome.error}"
        return await self.report(f"🚨 Auto-{status}{detail}: {describe_decision(decision)}")

    async def report_review(self, decision: Decision) -> int:
        reason = decision.classification.reason
        return await self.report(f"🔎 Queued for review (decision {decision.decision_id}, {reason}): {describe_decision(decision)}")
