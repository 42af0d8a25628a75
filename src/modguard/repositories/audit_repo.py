"""
Append-only audit trail.

The table is guarded by triggers that abort any UPDATE or DELETE, so this
repository only ever inserts and reads.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import List

import aiosqlite

from modguard.datatypes.identifiers import GuildID, UserID
from modguard.util.time_utils import from_db, to_db, utcnow


@dataclass(slots=True)
class AuditEntry:
    """A single row from the ``audit_log`` table."""
    actor: str
    action: str
    outcome: str
    target_user_id: UserID | None = None
    guild_id: GuildID | None = None
    detail: dict = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)
    entry_id: int | None = None


class AuditRepo:
    """Insert and query ``audit_log``."""

    @staticmethod
    async def append(conn: aiosqlite.Connection, entry: AuditEntry) -> int:
        cursor = await conn.execute(
            """
            INSERT INTO audit_log (occurred_at, actor, target_user_id, guild_id, action, outcome, detail)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                to_db(entry.occurred_at),
                entry.actor,
                entry.target_user_id.to_int() if entry.target_user_id else None,
                entry.guild_id.to_int() if entry.guild_id else None,
                entry.action,
                entry.outcome,
                json.dumps(entry.detail, default=str),
            ),
        )
        return cursor.lastrowid

    @staticmethod
    async def for_target(conn: aiosqlite.Connection, user_id: UserID, limit: int = 100) -> List[AuditEntry]:
        cursor = await conn.execute(
            "SELECT * FROM audit_log WHERE target_user_id = ? ORDER BY id DESC LIMIT ?",
            (user_id.to_int(), limit),
        )
        return [_row_to_entry(row) for row in await cursor.fetchall()]

    @staticmethod
    async def recent(conn: aiosqlite.Connection, limit: int = 100) -> List[AuditEntry]:
        cursor = await conn.execute("SELECT * FROM audit_log ORDER BY id DESC LIMIT ?", (limit,))
        return [_row_to_entry(row) for row in await cursor.fetchall()]


def _row_to_entry(row) -> AuditEntry:
    return AuditEntry(
        entry_id=row["id"],
        occurred_at=from_db(row["occurred_at"]),
        actor=row["actor"],
        target_user_id=UserID(row["target_user_id"]) if row["target_user_id"] is not None else None,
        guild_id=GuildID(row["guild_id"]) if row["guild_id"] is not None else None,
        action=row["action"],
        outcome=row["outcome"],
        detail=json.loads(row["detail"]),
    )
