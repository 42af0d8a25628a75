"""End-to-end tests for the moderation pipeline with a fake platform."""

import pytest

from modguard.datatypes.action_datatypes import ActionType
from modguard.datatypes.check_config import CheckConfig
from modguard.datatypes.detection_datatypes import (
    CheckName,
    CheckResult,
    ContentContext,
    DetectionAction,
    DetectionPolicy,
    DetectionSource,
)
from modguard.datatypes.identifiers import ChannelID, GuildID, MessageID, UserID
from modguard.detection.checks.base import Check
from modguard.detection.checks.registry import CheckRegistry
from modguard.detection.detection_engine import DetectionEngine
from modguard.detection.training_feed import TrainingCorpusFeed
from modguard.moderation.admin_reports import AdminReporter
from modguard.moderation.notification import NotificationDelivery
from modguard.moderation.orchestrator import ModerationOrchestrator
from modguard.moderation.pipeline import ModerationPipeline
from modguard.repositories.audit_repo import AuditRepo
from modguard.repositories.check_config_repo import CheckConfigRepo
from modguard.repositories.decision_repo import DecisionRepo

USER = UserID(900)
GUILD = GuildID(1)
CHANNEL = ChannelID(10)
ADMIN_CHANNEL = 4242
SPAM_TEXT = "claim your free crypto giveaway right now"


class ScriptedCheck(Check):
    """Stop-word stand-in whose confidence is set per test."""

    name = CheckName.STOP_WORDS

    def __init__(self, confidence=0):
        self.confidence = confidence

    async def evaluate(self, context, config):
        if self.confidence:
            return CheckResult.spam(self.name, self.confidence)
        return CheckResult.clean(self.name)


@pytest.fixture
def check():
    return ScriptedCheck()


@pytest.fixture
async def pipeline(connections, platform, check, add_member):
    async with connections.transaction() as conn:
        await CheckConfigRepo.upsert_check(conn, None, CheckConfig(CheckName.STOP_WORDS))
    for guild in (1, 2):
        await add_member(guild, 900)

    notifier = NotificationDelivery(platform, connections, call_timeout=1)
    orchestrator = ModerationOrchestrator(platform, connections, notifier, call_timeout=1, deadline=5)
    return ModerationPipeline(
        engine=DetectionEngine(CheckRegistry([check])),
        connections=connections,
        feed=TrainingCorpusFeed(connections),
        orchestrator=orchestrator,
        reporter=AdminReporter(platform, [ADMIN_CHANNEL], call_timeout=1),
    )


def message(message_id=100, text=SPAM_TEXT, edit_version=0):
    return ContentContext(
        user_id=USER, text=text, guild_id=GUILD, channel_id=CHANNEL,
        message_id=MessageID(message_id), edit_version=edit_version,
    )


async def set_policy(connections, **kwargs):
    async with connections.transaction() as conn:
        await CheckConfigRepo.upsert_policy(conn, None, DetectionPolicy(**kwargs))


async def test_spam_is_banned_everywhere(pipeline, platform, check):
    check.confidence = 90

    result = await pipeline.handle_content(message())

    assert result.decision.decision_id is not None
    assert result.decision.action is DetectionAction.AUTO_BAN
    assert result.intent.action is ActionType.BAN
    assert result.intent.reason.startswith("Automatic spam detection (confidence 90% via stop_words)")
    assert result.outcome.success
    assert result.outcome.chats_affected == 2
    assert sorted(c[1] for c in platform.calls_of("restrict")) == [1, 2]
    assert platform.deleted == [100]
    assert platform.admin_reports and platform.admin_reports[0][0] == ADMIN_CHANNEL


async def test_clean_message_is_only_recorded(pipeline, platform, connections):
    result = await pipeline.handle_content(message())

    assert result.decision.action is DetectionAction.ALLOW
    assert result.intent is None
    assert platform.calls == []
    async with connections.read() as conn:
        assert len(await DecisionRepo.history(conn, MessageID(100))) == 1


async def test_training_mode_records_without_enforcing(pipeline, platform, check, connections):
    check.confidence = 90
    await set_policy(connections, training_mode=True)

    result = await pipeline.handle_content(message())

    assert result.skipped == "training mode"
    assert result.intent is None
    assert platform.calls == []
    assert result.decision.net_confidence == 90


async def test_account_training_mode_records_without_enforcing(pipeline, platform, check, connections):
    check.confidence = 90
    await pipeline.set_account_training(USER, True, "user:1", GUILD)

    result = await pipeline.handle_content(message())

    assert result.skipped == "training mode"
    assert result.intent is None
    assert platform.calls_of("restrict") == []
    async with connections.read() as conn:
        audit = await AuditRepo.for_target(conn, USER)
    assert [(e.action, e.outcome) for e in audit] == [("training_mode", "enabled")]

    await pipeline.set_account_training(USER, False, "user:1", GUILD)
    result = await pipeline.handle_content(message(message_id=101))

    assert result.intent.action is ActionType.BAN
    assert result.outcome.success


async def test_trusted_account_is_not_auto_enforced(pipeline, platform, check):
    check.confidence = 90
    await pipeline.orchestrator.toggle_trust(USER, "user:1", "known member")

    result = await pipeline.handle_content(message())

    assert result.skipped == "trusted account"
    assert platform.calls_of("restrict") == []


async def test_stale_edit_is_recorded_but_not_acted_on(pipeline, platform, check, connections):
    await pipeline.handle_content(message(edit_version=1, text="an innocent edit of the message"))
    check.confidence = 90

    result = await pipeline.handle_content(message(edit_version=0))

    assert result.stale
    assert result.skipped == "stale edit"
    assert platform.calls == []
    async with connections.read() as conn:
        assert [d.edit_version for d in await DecisionRepo.history(conn, MessageID(100))] == [0, 1]


async def test_late_review_for_outdated_edit_is_not_queued(pipeline, platform, check):
    await pipeline.handle_content(message(edit_version=1, text="an innocent edit of the message"))
    check.confidence = 60

    late = await pipeline.handle_content(message(edit_version=0))

    assert late.stale
    assert late.decision.action is DetectionAction.REVIEW
    assert await pipeline.pending_reviews(GUILD) == []
    with pytest.raises(ValueError):
        await pipeline.resolve_review(late.decision.decision_id, "user:1", is_spam=True)
    assert platform.calls_of("restrict") == []


async def test_edit_takes_earlier_version_out_of_review(pipeline, platform, check):
    check.confidence = 60
    queued = await pipeline.handle_content(message(edit_version=0))
    assert [d.decision_id for d in await pipeline.pending_reviews(GUILD)] == [queued.decision.decision_id]

    check.confidence = 0
    await pipeline.handle_content(message(edit_version=1, text="an innocent edit of the message"))

    assert await pipeline.pending_reviews(GUILD) == []
    with pytest.raises(ValueError, match="outdated edit"):
        await pipeline.resolve_review(queued.decision.decision_id, "user:1", is_spam=True)
    assert platform.calls_of("restrict") == []


async def test_duplicate_evaluation_is_not_enforced_twice(pipeline, platform, check):
    check.confidence = 90
    await pipeline.handle_content(message())
    restricts = len(platform.calls_of("restrict"))

    again = await pipeline.handle_content(message())

    assert again.stale
    assert len(platform.calls_of("restrict")) == restricts


async def test_no_enabled_checks_is_reported_as_error(pipeline, connections, platform):
    async with connections.transaction() as conn:
        await CheckConfigRepo.upsert_check(conn, None, CheckConfig.disabled(CheckName.STOP_WORDS))

    result = await pipeline.handle_content(message())

    assert result.decision is None
    assert "no checks enabled" in result.error
    assert platform.calls == []


async def test_review_band_is_queued_and_resolved(pipeline, platform, check):
    check.confidence = 60

    result = await pipeline.handle_content(message())

    assert result.decision.action is DetectionAction.REVIEW
    assert result.intent is None
    assert "Queued for review" in platform.admin_reports[-1][1]
    pending = await pipeline.pending_reviews(GUILD)
    assert [d.decision_id for d in pending] == [result.decision.decision_id]

    outcome = await pipeline.resolve_review(result.decision.decision_id, "user:1", is_spam=True)

    assert outcome.success
    assert outcome.action is ActionType.BAN
    assert await pipeline.pending_reviews(GUILD) == []
    with pytest.raises(ValueError):
        await pipeline.resolve_review(result.decision.decision_id, "user:1", is_spam=True)


async def test_review_cannot_be_resolved_from_another_guild(pipeline, platform, check):
    check.confidence = 60
    result = await pipeline.handle_content(message())

    with pytest.raises(ValueError, match="another server"):
        await pipeline.resolve_review(result.decision.decision_id, "user:1", is_spam=True, guild_id=GuildID(2))

    assert platform.calls_of("restrict") == []
    assert [d.decision_id for d in await pipeline.pending_reviews(GUILD)] == [result.decision.decision_id]


async def test_review_resolved_as_clean_does_not_enforce(pipeline, platform, check, connections):
    check.confidence = 60
    result = await pipeline.handle_content(message())

    assert await pipeline.resolve_review(result.decision.decision_id, "user:1", is_spam=False) is None
    assert platform.calls_of("restrict") == []
    async with connections.read() as conn:
        manual = await DecisionRepo.find(conn, MessageID(100), 0, DetectionSource.MANUAL)
    assert manual is not None
    assert manual.net_confidence == 0


async def test_mark_as_spam_bans_and_revokes_trust(pipeline, platform, connections):
    await pipeline.orchestrator.toggle_trust(USER, "user:1", "known member")

    outcome = await pipeline.mark_as_spam(
        USER, "user:1", SPAM_TEXT, guild_id=GUILD, channel_id=CHANNEL, message_id=MessageID(101),
    )

    assert outcome.success
    assert outcome.trust_revoked
    assert outcome.chats_affected == 2
    assert platform.deleted == [101]
    async with connections.read() as conn:
        manual = await DecisionRepo.find(conn, MessageID(101), 0, DetectionSource.MANUAL)
    assert manual.training_eligible
    assert manual.net_confidence == 100
