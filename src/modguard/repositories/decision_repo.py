"""
Persistent storage for detection decisions.

Decisions are insert-only. The derived columns (verdict, confidences, action)
are written from the :class:`Decision` properties at insert time for querying,
and a trigger rejects any later change to them. Only ``training_eligible`` and
``review_state`` may be updated.
"""

from __future__ import annotations

import json
from typing import List

import aiosqlite

from modguard.datatypes.detection_datatypes import (
    CheckName,
    CheckResult,
    Decision,
    DetectionAction,
    DetectionPolicy,
    DetectionSource,
    Verdict,
)
from modguard.datatypes.identifiers import ChannelID, GuildID, MessageID, UserID
from modguard.util.time_utils import from_db, to_db

REVIEW_NONE = "none"
REVIEW_PENDING = "pending"
REVIEW_RESOLVED = "resolved"


def results_to_json(results) -> str:
    return json.dumps([
        {
            "check": r.check.value,
            "verdict": r.verdict.value,
            "confidence": r.confidence,
            "duration": round(r.duration, 6),
            "abstained": r.abstained,
            "always_run_only": r.always_run_only,
            "details": r.details,
        }
        for r in results
    ])


def results_from_json(raw: str) -> tuple[CheckResult, ...]:
    return tuple(
        CheckResult(
            check=CheckName(item["check"]),
            verdict=Verdict(item["verdict"]),
            confidence=int(item["confidence"]),
            duration=float(item.get("duration", 0.0)),
            abstained=bool(item.get("abstained", False)),
            always_run_only=bool(item.get("always_run_only", False)),
            details=item.get("details", ""),
        )
        for item in json.loads(raw)
    )


def _optional(cls, value):
    return cls(value) if value is not None else None


def row_to_decision(row) -> Decision:
    return Decision(
        decision_id=row["id"],
        user_id=UserID(row["user_id"]),
        guild_id=_optional(GuildID, row["guild_id"]),
        channel_id=_optional(ChannelID, row["channel_id"]),
        message_id=_optional(MessageID, row["message_id"]),
        edit_version=row["edit_version"],
        source=DetectionSource(row["source"]),
        results=results_from_json(row["results"]),
        policy=DetectionPolicy.from_dict(json.loads(row["policy"])),
        text=row["text"],
        training_eligible=bool(row["training_eligible"]),
        evaluated_at=from_db(row["evaluated_at"]),
    )


class DecisionRepo:
    """Insert-only store for ``detection_decisions``."""

    @staticmethod
    async def insert(conn: aiosqlite.Connection, decision: Decision, queue_review: bool = True) -> int | None:
        """
        Persist a decision.

        Args:
            conn: Open connection, usually inside a transaction.
            decision: The decision to store.
            queue_review: False stores a review-band decision without queueing
                it, used for decisions on an outdated edit.

        Returns:
            The new row id, or None when a decision for the same message,
            edit version and source already exists.
        """
        classification = decision.classification
        review_state = REVIEW_PENDING if classification.action is DetectionAction.REVIEW else REVIEW_NONE
        if decision.source is DetectionSource.MANUAL or not queue_review:
            review_state = REVIEW_NONE

        cursor = await conn.execute(
            """
            INSERT OR IGNORE INTO detection_decisions
                (user_id, guild_id, channel_id, message_id, edit_version, source, verdict,
                 net_confidence, accuracy_confidence, action, vetoed, results, policy, text,
                 training_eligible, review_state, evaluated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                decision.user_id.to_int(),
                decision.guild_id.to_int() if decision.guild_id else None,
                decision.channel_id.to_int() if decision.channel_id else None,
                decision.message_id.to_int() if decision.message_id else None,
                decision.edit_version,
                decision.source.value,
                decision.verdict.value,
                decision.net_confidence,
                decision.accuracy_confidence,
                classification.action.value,
                int(classification.vetoed),
                results_to_json(decision.results),
                json.dumps(decision.policy.to_dict()),
                decision.text,
                int(decision.training_eligible),
                review_state,
                to_db(decision.evaluated_at),
            ),
        )
        if cursor.rowcount == 0:
            return None
        return cursor.lastrowid

    @staticmethod
    async def set_training_eligible(conn: aiosqlite.Connection, decision_id: int, eligible: bool) -> bool:
        cursor = await conn.execute(
            "UPDATE detection_decisions SET training_eligible = ? WHERE id = ?",
            (int(eligible), decision_id),
        )
        return cursor.rowcount > 0

    @staticmethod
    async def drop_outdated_reviews(conn: aiosqlite.Connection, message_id: MessageID, edit_version: int) -> int:
        """Take pending reviews for edits older than ``edit_version`` out of the queue."""
        cursor = await conn.execute(
            "UPDATE detection_decisions SET review_state = ? "
            "WHERE message_id = ? AND edit_version < ? AND review_state = ?",
            (REVIEW_NONE, message_id.to_int(), edit_version, REVIEW_PENDING),
        )
        return cursor.rowcount

    @staticmethod
    async def resolve_review(conn: aiosqlite.Connection, decision_id: int) -> bool:
        """Mark a pending review resolved. Returns False if it was not pending."""
        cursor = await conn.execute(
            "UPDATE detection_decisions SET review_state = ? WHERE id = ? AND review_state = ?",
            (REVIEW_RESOLVED, decision_id, REVIEW_PENDING),
        )
        return cursor.rowcount > 0

    @staticmethod
    async def get(conn: aiosqlite.Connection, decision_id: int) -> Decision | None:
        cursor = await conn.execute("SELECT * FROM detection_decisions WHERE id = ?", (decision_id,))
        row = await cursor.fetchone()
        return row_to_decision(row) if row else None

    @staticmethod
    async def find(
        conn: aiosqlite.Connection,
        message_id: MessageID,
        edit_version: int,
        source: DetectionSource,
    ) -> Decision | None:
        cursor = await conn.execute(
            "SELECT * FROM detection_decisions WHERE message_id = ? AND edit_version = ? AND source = ?",
            (message_id.to_int(), edit_version, source.value),
        )
        row = await cursor.fetchone()
        return row_to_decision(row) if row else None

    @staticmethod
    async def latest_edit_version(conn: aiosqlite.Connection, message_id: MessageID) -> int | None:
        cursor = await conn.execute(
            "SELECT MAX(edit_version) FROM detection_decisions WHERE message_id = ?",
            (message_id.to_int(),),
        )
        row = await cursor.fetchone()
        return row[0] if row else None

    @staticmethod
    async def history(conn: aiosqlite.Connection, message_id: MessageID) -> List[Decision]:
        """All decisions for a message, oldest edit first."""
        cursor = await conn.execute(
            "SELECT * FROM detection_decisions WHERE message_id = ? ORDER BY edit_version, id",
            (message_id.to_int(),),
        )
        return [row_to_decision(row) for row in await cursor.fetchall()]

    @staticmethod
    async def pending_reviews(conn: aiosqlite.Connection, guild_id: GuildID | None = None, limit: int = 25) -> List[Decision]:
        if guild_id is None:
            cursor = await conn.execute(
                "SELECT * FROM detection_decisions WHERE review_state = ? ORDER BY evaluated_at LIMIT ?",
                (REVIEW_PENDING, limit),
            )
        else:
            cursor = await conn.execute(
                "SELECT * FROM detection_decisions WHERE review_state = ? AND guild_id = ? "
                "ORDER BY evaluated_at LIMIT ?",
                (REVIEW_PENDING, guild_id.to_int(), limit),
            )
        return [row_to_decision(row) for row in await cursor.fetchall()]
