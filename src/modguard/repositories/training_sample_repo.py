"""
Persistent storage for labeled training samples.

Manual (human-labeled) samples are kept indefinitely; automatic samples are
bounded by :meth:`TrainingSampleRepo.prune_automatic`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator

import aiosqlite

from modguard.datatypes.detection_datatypes import DetectionSource, Verdict
from modguard.datatypes.identifiers import MessageID
from modguard.util.time_utils import from_db, to_db


@dataclass(slots=True)
class TrainingSample:
    """A single row from the ``training_samples`` table."""
    label: Verdict
    source: DetectionSource
    text: str
    created_at: datetime
    decision_id: int | None = None
    message_id: MessageID | None = None
    sample_id: int | None = None


def _row_to_sample(row) -> TrainingSample:
    return TrainingSample(
        sample_id=row["id"],
        decision_id=row["decision_id"],
        message_id=MessageID(row["message_id"]) if row["message_id"] is not None else None,
        label=Verdict(row["label"]),
        source=DetectionSource(row["source"]),
        text=row["text"],
        created_at=from_db(row["created_at"]),
    )


class TrainingSampleRepo:
    """CRUD for ``training_samples``."""

    @staticmethod
    async def upsert(conn: aiosqlite.Connection, sample: TrainingSample) -> int:
        cursor = await conn.execute(
            """
            INSERT INTO training_samples (decision_id, message_id, label, source, text, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(decision_id) DO UPDATE SET label = excluded.label, text = excluded.text
            """,
            (
                sample.decision_id,
                sample.message_id.to_int() if sample.message_id else None,
                sample.label.value,
                sample.source.value,
                sample.text,
                to_db(sample.created_at),
            ),
        )
        return cursor.lastrowid

    @staticmethod
    async def delete_for_decision(conn: aiosqlite.Connection, decision_id: int) -> int:
        cursor = await conn.execute("DELETE FROM training_samples WHERE decision_id = ?", (decision_id,))
        return cursor.rowcount

    @staticmethod
    async def delete_automatic_for_message(conn: aiosqlite.Connection, message_id: MessageID) -> int:
        """Drop automatic samples once a human has labeled the same message."""
        cursor = await conn.execute(
            "DELETE FROM training_samples WHERE message_id = ? AND source = 'automatic'",
            (message_id.to_int(),),
        )
        return cursor.rowcount

    @staticmethod
    async def prune_automatic(conn: aiosqlite.Connection, label: Verdict, keep: int) -> int:
        """Delete automatic samples of ``label`` beyond the ``keep`` most recent."""
        cursor = await conn.execute(
            """
            DELETE FROM training_samples
            WHERE source = 'automatic' AND label = ? AND id NOT IN (
                SELECT id FROM training_samples
                WHERE source = 'automatic' AND label = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
            )
            """,
            (label.value, label.value, keep),
        )
        return cursor.rowcount

    @staticmethod
    async def count(conn: aiosqlite.Connection, label: Verdict, source: DetectionSource | None = None) -> int:
        if source is None:
            cursor = await conn.execute("SELECT COUNT(*) FROM training_samples WHERE label = ?", (label.value,))
        else:
            cursor = await conn.execute(
                "SELECT COUNT(*) FROM training_samples WHERE label = ? AND source = ?",
                (label.value, source.value),
            )
        row = await cursor.fetchone()
        return row[0]

    @staticmethod
    async def iter_samples(
        conn: aiosqlite.Connection,
        label: Verdict,
        source: DetectionSource,
        limit: int | None = None,
    ) -> AsyncIterator[TrainingSample]:
        """Stream samples newest first without loading the whole table."""
        query = (
            "SELECT * FROM training_samples WHERE label = ? AND source = ? "
            "ORDER BY created_at DESC, id DESC LIMIT ?"
        )
        async with conn.execute(query, (label.value, source.value, -1 if limit is None else limit)) as cursor:
            async for row in cursor:
                yield _row_to_sample(row)
