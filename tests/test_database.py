"""Tests for schema guarantees and the repositories."""

from datetime import datetime, timedelta, timezone

import aiosqlite
import pytest

from modguard.database.db_maintenance import MaintenanceOperations
from modguard.datatypes.action_datatypes import (
    ActionRecord,
    ActionState,
    ActionType,
    InvalidTransition,
    expire,
    reverse,
)
from modguard.datatypes.check_config import CheckConfig, StopWordsParams
from modguard.datatypes.detection_datatypes import (
    CheckName,
    CheckResult,
    Decision,
    DetectionPolicy,
    DetectionSource,
)
from modguard.datatypes.identifiers import GuildID, MessageID, UserID
from modguard.repositories.account_repo import AccountRepo
from modguard.repositories.action_record_repo import ActionRecordRepo
from modguard.repositories.audit_repo import AuditEntry, AuditRepo
from modguard.repositories.check_config_repo import CheckConfigRepo
from modguard.repositories.decision_repo import DecisionRepo

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
USER = UserID(1001)


def mute_record(issued_at=T0, minutes=5):
    return ActionRecord(
        user_id=USER,
        action=ActionType.MUTE,
        issuer="user:1",
        issued_at=issued_at,
        expires_at=issued_at + timedelta(minutes=minutes),
        reason="test",
    )


async def insert(connections, record):
    async with connections.transaction() as conn:
        record_id = await ActionRecordRepo.insert(conn, record)
    async with connections.read() as conn:
        return await ActionRecordRepo.get(conn, record_id)


# -------------------- Initialization --------------------

async def test_initialize_is_idempotent(db):
    assert db.initialized
    assert await db.initialize()
    assert await db.analyze()


# -------------------- Audit trail --------------------

async def test_audit_log_is_append_only(connections):
    async with connections.transaction() as conn:
        entry_id = await AuditRepo.append(conn, AuditEntry(
            actor="user:1", action="ban", outcome="success", target_user_id=USER, detail={"chats_affected": 2},
        ))

    with pytest.raises(aiosqlite.DatabaseError):
        async with connections.transaction() as conn:
            await conn.execute("UPDATE audit_log SET outcome = 'failure' WHERE id = ?", (entry_id,))

    with pytest.raises(aiosqlite.DatabaseError):
        async with connections.transaction() as conn:
            await conn.execute("DELETE FROM audit_log WHERE id = ?", (entry_id,))

    async with connections.read() as conn:
        entries = await AuditRepo.for_target(conn, USER)
    assert len(entries) == 1
    assert entries[0].outcome == "success"
    assert entries[0].detail == {"chats_affected": 2}


# -------------------- Decisions --------------------

def spam_decision(edit_version=0, text="claim your free crypto giveaway now"):
    return Decision(
        user_id=USER,
        results=(CheckResult.spam(CheckName.STOP_WORDS, 60),),
        policy=DetectionPolicy(),
        message_id=MessageID(55),
        guild_id=GuildID(1),
        edit_version=edit_version,
        text=text,
    )


async def test_decision_insert_is_idempotent_per_edit(connections):
    async with connections.transaction() as conn:
        first = await DecisionRepo.insert(conn, spam_decision())
        duplicate = await DecisionRepo.insert(conn, spam_decision())
        edited = await DecisionRepo.insert(conn, spam_decision(edit_version=1))

    assert first is not None
    assert duplicate is None
    assert edited is not None

    async with connections.read() as conn:
        assert await DecisionRepo.latest_edit_version(conn, MessageID(55)) == 1
        history = await DecisionRepo.history(conn, MessageID(55))
    assert [d.edit_version for d in history] == [0, 1]


async def test_decision_core_fields_are_immutable(connections):
    async with connections.transaction() as conn:
        decision_id = await DecisionRepo.insert(conn, spam_decision())

    with pytest.raises(aiosqlite.DatabaseError):
        async with connections.transaction() as conn:
            await conn.execute("UPDATE detection_decisions SET net_confidence = 0 WHERE id = ?", (decision_id,))

    async with connections.transaction() as conn:
        assert await DecisionRepo.set_training_eligible(conn, decision_id, True)

    async with connections.read() as conn:
        stored = await DecisionRepo.get(conn, decision_id)
    assert stored.training_eligible
    assert stored.net_confidence == 60


async def test_review_queue(connections):
    async with connections.transaction() as conn:
        decision_id = await DecisionRepo.insert(conn, spam_decision())
        manual = Decision(
            user_id=USER,
            results=(CheckResult.spam(CheckName.MANUAL, 60),),
            policy=DetectionPolicy(),
            source=DetectionSource.MANUAL,
            message_id=MessageID(55),
            text="claim your free crypto giveaway now",
        )
        await DecisionRepo.insert(conn, manual)

    async with connections.read() as conn:
        pending = await DecisionRepo.pending_reviews(conn, GuildID(1))
    assert [d.decision_id for d in pending] == [decision_id]

    async with connections.transaction() as conn:
        assert await DecisionRepo.resolve_review(conn, decision_id)
        assert not await DecisionRepo.resolve_review(conn, decision_id)


# -------------------- Action records --------------------

async def test_one_active_ban_per_account(connections):
    ban = ActionRecord(user_id=USER, action=ActionType.BAN, issuer="user:1", issued_at=T0, reason="spam")
    await insert(connections, ban)

    tempban = ActionRecord(
        user_id=USER, action=ActionType.TEMPBAN, issuer="user:1", issued_at=T0,
        expires_at=T0 + timedelta(days=1), reason="spam",
    )
    with pytest.raises(aiosqlite.IntegrityError):
        async with connections.transaction() as conn:
            await ActionRecordRepo.insert(conn, tempban)

    # A mute is a different family and can coexist
    assert (await insert(connections, mute_record())).is_active


async def test_transitions_are_conditional(connections):
    stored = await insert(connections, mute_record())
    now = T0 + timedelta(minutes=6)

    expired = expire(stored, now)
    async with connections.transaction() as conn:
        assert await ActionRecordRepo.apply_transition(conn, stored, expired, claimed_by="a:1", now=now)
        # Second writer still believes the row is active
        assert not await ActionRecordRepo.apply_transition(conn, stored, expired, claimed_by="b:1", now=now)

    reversed_record = reverse(expired, now, "system:reconciler")
    async with connections.transaction() as conn:
        assert not await ActionRecordRepo.finish_claim(conn, reversed_record, "b:1")
        assert await ActionRecordRepo.finish_claim(conn, reversed_record, "a:1")

    async with connections.read() as conn:
        final = await ActionRecordRepo.get(conn, stored.record_id)
    assert final.state is ActionState.REVERSED
    assert final.reversed_by == "system:reconciler"


def test_transition_rules():
    record = mute_record()
    with pytest.raises(InvalidTransition):
        expire(record, T0 + timedelta(minutes=1))

    reversed_record = reverse(record, T0, "user:1")
    with pytest.raises(InvalidTransition):
        reverse(reversed_record, T0, "user:1")
    with pytest.raises(InvalidTransition):
        expire(reversed_record, T0 + timedelta(days=1))


async def test_due_records_and_stale_claims(connections):
    stored = await insert(connections, mute_record())
    now = T0 + timedelta(minutes=6)

    async with connections.read() as conn:
        assert [r.record_id for r in await ActionRecordRepo.get_due(conn, T0, T0)] == []
        assert [r.record_id for r in await ActionRecordRepo.get_due(conn, now, now)] == [stored.record_id]

    async with connections.transaction() as conn:
        await ActionRecordRepo.apply_transition(conn, stored, expire(stored, now), claimed_by="a:1", now=now)

    later = now + timedelta(minutes=1)
    async with connections.read() as conn:
        # Claim is fresh relative to the stale cutoff
        assert await ActionRecordRepo.get_due(conn, later, stale_before=now - timedelta(minutes=5)) == []
        assert len(await ActionRecordRepo.get_due(conn, later, stale_before=later)) == 1

    async with connections.transaction() as conn:
        assert await ActionRecordRepo.reclaim_stale(conn, stored.record_id, "b:1", later, stale_before=later)


async def test_retention_keeps_permanent_and_active_records(connections):
    old = T0 - timedelta(days=200)
    permanent = ActionRecord(user_id=USER, action=ActionType.BAN, issuer="user:1", issued_at=old, reason="spam")
    await insert(connections, permanent)

    finished = await insert(connections, mute_record(issued_at=old))
    async with connections.transaction() as conn:
        await ActionRecordRepo.apply_transition(conn, finished, reverse(finished, old, "user:1"))

    await insert(connections, ActionRecord(
        user_id=UserID(2002), action=ActionType.MUTE, issuer="user:1", issued_at=old,
        expires_at=old + timedelta(minutes=5), reason="still active",
    ))

    async with connections.transaction() as conn:
        removed = await MaintenanceOperations.cleanup_action_records(conn, retention_days=90, now=T0)
    assert removed == 1

    async with connections.read() as conn:
        remaining = await ActionRecordRepo.history(conn, USER)
    assert [r.action for r in remaining] == [ActionType.BAN]


# -------------------- Accounts --------------------

async def test_presence_and_dm_flag(connections):
    async with connections.transaction() as conn:
        await AccountRepo.record_join(conn, GuildID(1), USER)
        await AccountRepo.record_join(conn, GuildID(2), USER, is_admin=True)
        await AccountRepo.record_leave(conn, GuildID(1), USER)

    async with connections.read() as conn:
        assert [m.guild_id for m in await AccountRepo.communities_of(conn, USER)] == [GuildID(2)]
        # Ban fan-out still reaches communities the account has left
        assert await AccountRepo.known_communities(conn, USER) == [GuildID(1), GuildID(2)]
        assert [m.is_admin for m in await AccountRepo.communities_of(conn, USER)] == [True]
        assert not await AccountRepo.is_dm_enabled(conn, USER)

    async with connections.transaction() as conn:
        await AccountRepo.set_dm_enabled(conn, USER, True)
    async with connections.read() as conn:
        assert await AccountRepo.is_dm_enabled(conn, USER)


# -------------------- Check configuration --------------------

async def test_load_scope_reads_both_levels(connections):
    guild = GuildID(9)
    async with connections.transaction() as conn:
        await CheckConfigRepo.upsert_check(conn, None, CheckConfig(
            CheckName.STOP_WORDS, params=StopWordsParams(words=("airdrop",)),
        ))
        await CheckConfigRepo.upsert_check(conn, guild, CheckConfig(CheckName.SPACING, enabled=False))
        await CheckConfigRepo.upsert_policy(conn, None, DetectionPolicy(auto_ban_threshold=85))
        await CheckConfigRepo.upsert_policy(conn, guild, DetectionPolicy(training_mode=True))

    async with connections.read() as conn:
        scope = await CheckConfigRepo.load_scope(conn, guild)

    assert scope.global_checks[CheckName.STOP_WORDS].params.words == ("airdrop",)
    assert not scope.overrides[CheckName.SPACING].enabled
    assert scope.global_policy.auto_ban_threshold == 85
    assert scope.policy_override.training_mode
    assert not scope.policy_use_global
