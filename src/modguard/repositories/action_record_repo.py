"""
Persistent storage for action records.

State changes are computed with the transition functions in
:mod:`modguard.datatypes.action_datatypes` and written with conditional
updates (``WHERE state = <expected>``), so two writers racing on the same
record cannot both succeed. A partial unique index allows at most one active
ban-family and one active trust record per account.
"""

from __future__ import annotations

from datetime import datetime
from typing import List

import aiosqlite

from modguard.datatypes.action_datatypes import ActionRecord, ActionState, ActionType
from modguard.datatypes.identifiers import UserID
from modguard.util.logger import get_logger
from modguard.util.time_utils import from_db, to_db

logger = get_logger("action_record_repo")


def row_to_record(row) -> ActionRecord:
    return ActionRecord(
        record_id=row["id"],
        user_id=UserID(row["user_id"]),
        action=ActionType(row["action"]),
        issuer=row["issuer"],
        issued_at=from_db(row["issued_at"]),
        expires_at=from_db(row["expires_at"]),
        reason=row["reason"],
        state=ActionState(row["state"]),
        reversed_at=from_db(row["reversed_at"]),
        reversed_by=row["reversed_by"],
    )


class ActionRecordRepo:
    """CRUD for ``action_records``."""

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @staticmethod
    async def insert(conn: aiosqlite.Connection, record: ActionRecord) -> int:
        """
        Insert a new active record.

        Raises:
            aiosqlite.IntegrityError: If an active record of the same family
                already exists for the account.
        """
        cursor = await conn.execute(
            """
            INSERT INTO action_records (user_id, action, family, issuer, issued_at, expires_at, reason, state)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.user_id.to_int(),
                record.action.value,
                record.action.family,
                record.issuer,
                to_db(record.issued_at),
                to_db(record.expires_at),
                record.reason,
                record.state.value,
            ),
        )
        return cursor.lastrowid

    @staticmethod
    async def apply_transition(
        conn: aiosqlite.Connection,
        before: ActionRecord,
        after: ActionRecord,
        claimed_by: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        """
        Persist ``before -> after`` if the stored row is still in ``before.state``.

        Args:
            conn: Open connection, normally inside a transaction.
            before: Record as it was read.
            after: Result of a transition function applied to ``before``.
            claimed_by: Claim token to store alongside the new state.
            now: Claim time stored with ``claimed_by``.

        Returns:
            True if this call made the change, False if another writer got there first.
        """
        cursor = await conn.execute(
            """
            UPDATE action_records
            SET state = ?, reversed_at = ?, reversed_by = ?,
                claimed_by = COALESCE(?, claimed_by), claimed_at = COALESCE(?, claimed_at)
            WHERE id = ? AND state = ?
            """,
            (
                after.state.value,
                to_db(after.reversed_at),
                after.reversed_by,
                claimed_by,
                to_db(now) if claimed_by else None,
                before.record_id,
                before.state.value,
            ),
        )
        return cursor.rowcount == 1

    @staticmethod
    async def reclaim_stale(
        conn: aiosqlite.Connection,
        record_id: int,
        claimed_by: str,
        now: datetime,
        stale_before: datetime,
    ) -> bool:
        """Take over an expired record whose previous claim is older than ``stale_before``."""
        cursor = await conn.execute(
            """
            UPDATE action_records SET claimed_by = ?, claimed_at = ?
            WHERE id = ? AND state = 'expired' AND (claimed_at IS NULL OR claimed_at < ?)
            """,
            (claimed_by, to_db(now), record_id, to_db(stale_before)),
        )
        return cursor.rowcount == 1

    @staticmethod
    async def finish_claim(
        conn: aiosqlite.Connection,
        after: ActionRecord,
        claimed_by: str,
    ) -> bool:
        """Expired -> Reversed, only for the current claim holder."""
        cursor = await conn.execute(
            """
            UPDATE action_records SET state = 'reversed', reversed_at = ?, reversed_by = ?
            WHERE id = ? AND state = 'expired' AND claimed_by = ?
            """,
            (to_db(after.reversed_at), after.reversed_by, after.record_id, claimed_by),
        )
        return cursor.rowcount == 1

    @staticmethod
    async def delete_past_retention(conn: aiosqlite.Connection, cutoff: datetime) -> int:
        """Delete finished records whose issuance and expiry are both before ``cutoff``."""
        cursor = await conn.execute(
            """
            DELETE FROM action_records
            WHERE state != 'active'
              AND expires_at IS NOT NULL
              AND issued_at < ? AND expires_at < ?
            """,
            (to_db(cutoff), to_db(cutoff)),
        )
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    async def get(conn: aiosqlite.Connection, record_id: int) -> ActionRecord | None:
        cursor = await conn.execute("SELECT * FROM action_records WHERE id = ?", (record_id,))
        row = await cursor.fetchone()
        return row_to_record(row) if row else None

    @staticmethod
    async def get_active(conn: aiosqlite.Connection, user_id: UserID, family: str) -> List[ActionRecord]:
        cursor = await conn.execute(
            "SELECT * FROM action_records WHERE user_id = ? AND family = ? AND state = 'active' ORDER BY id",
            (user_id.to_int(), family),
        )
        return [row_to_record(row) for row in await cursor.fetchall()]

    @staticmethod
    async def has_active_since(conn: aiosqlite.Connection, user_id: UserID, family: str, after_id: int) -> bool:
        """True if a newer active record of ``family`` exists for the account."""
        cursor = await conn.execute(
            "SELECT 1 FROM action_records WHERE user_id = ? AND family = ? AND state = 'active' AND id > ? LIMIT 1",
            (user_id.to_int(), family, after_id),
        )
        return await cursor.fetchone() is not None

    @staticmethod
    async def get_due(conn: aiosqlite.Connection, now: datetime, stale_before: datetime, limit: int = 100) -> List[ActionRecord]:
        """Active records past expiry, plus expired records whose claim went stale."""
        cursor = await conn.execute(
            """
            SELECT * FROM action_records
            WHERE (state = 'active' AND expires_at IS NOT NULL AND expires_at <= ?)
               OR (state = 'expired' AND (claimed_at IS NULL OR claimed_at < ?))
            ORDER BY expires_at
            LIMIT ?
            """,
            (to_db(now), to_db(stale_before), limit),
        )
        return [row_to_record(row) for row in await cursor.fetchall()]

    @staticmethod
    async def history(conn: aiosqlite.Connection, user_id: UserID) -> List[ActionRecord]:
        cursor = await conn.execute(
            "SELECT * FROM action_records WHERE user_id = ? ORDER BY id",
            (user_id.to_int(),),
        )
        return [row_to_record(row) for row in await cursor.fetchall()]
