"""
Local knowledge about accounts: private-message eligibility, training mode and
community presence.

Enforcement validation and fan-out read only from these tables, never from the
platform, so a rejected intent has made no external call.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

import aiosqlite

from modguard.datatypes.identifiers import GuildID, UserID
from modguard.util.time_utils import to_db, utcnow


@dataclass(slots=True)
class Membership:
    guild_id: GuildID
    user_id: UserID
    is_admin: bool


class AccountRepo:
    """CRUD for ``accounts`` and ``community_members``."""

    # ------------------------------------------------------------------
    # Private-message eligibility
    # ------------------------------------------------------------------

    @staticmethod
    async def touch(conn: aiosqlite.Connection, user_id: UserID) -> None:
        now = to_db(utcnow())
        await conn.execute(
            """
            INSERT INTO accounts (user_id, first_seen, last_seen) VALUES (?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET last_seen = excluded.last_seen
            """,
            (user_id.to_int(), now, now),
        )

    @staticmethod
    async def set_dm_enabled(conn: aiosqlite.Connection, user_id: UserID, enabled: bool) -> None:
        now = to_db(utcnow())
        await conn.execute(
            """
            INSERT INTO accounts (user_id, dm_enabled, first_seen, last_seen) VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET dm_enabled = excluded.dm_enabled, last_seen = excluded.last_seen
            """,
            (user_id.to_int(), int(enabled), now, now),
        )

    @staticmethod
    async def is_dm_enabled(conn: aiosqlite.Connection, user_id: UserID) -> bool:
        cursor = await conn.execute("SELECT dm_enabled FROM accounts WHERE user_id = ?", (user_id.to_int(),))
        row = await cursor.fetchone()
        return bool(row[0]) if row else False

    # ------------------------------------------------------------------
    # Per-account training mode
    # ------------------------------------------------------------------

    @staticmethod
    async def set_training_mode(conn: aiosqlite.Connection, user_id: UserID, enabled: bool) -> None:
        now = to_db(utcnow())
        await conn.execute(
            """
            INSERT INTO accounts (user_id, training_mode, first_seen, last_seen) VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET training_mode = excluded.training_mode
            """,
            (user_id.to_int(), int(enabled), now, now),
        )

    @staticmethod
    async def is_training_mode(conn: aiosqlite.Connection, user_id: UserID) -> bool:
        """Spam decisions about an account in training mode are recorded but never enforced."""
        cursor = await conn.execute("SELECT training_mode FROM accounts WHERE user_id = ?", (user_id.to_int(),))
        row = await cursor.fetchone()
        return bool(row[0]) if row else False

    # ------------------------------------------------------------------
    # Community presence
    # ------------------------------------------------------------------

    @staticmethod
    async def record_join(conn: aiosqlite.Connection, guild_id: GuildID, user_id: UserID, is_admin: bool = False) -> None:
        await conn.execute(
            """
            INSERT INTO community_members (guild_id, user_id, is_admin, joined_at, left_at)
            VALUES (?, ?, ?, ?, NULL)
            ON CONFLICT(guild_id, user_id) DO UPDATE SET is_admin = excluded.is_admin, left_at = NULL
            """,
            (guild_id.to_int(), user_id.to_int(), int(is_admin), to_db(utcnow())),
        )

    @staticmethod
    async def record_leave(conn: aiosqlite.Connection, guild_id: GuildID, user_id: UserID) -> None:
        await conn.execute(
            "UPDATE community_members SET left_at = ? WHERE guild_id = ? AND user_id = ? AND left_at IS NULL",
            (to_db(utcnow()), guild_id.to_int(), user_id.to_int()),
        )

    @staticmethod
    async def set_admin(conn: aiosqlite.Connection, guild_id: GuildID, user_id: UserID, is_admin: bool) -> None:
        await conn.execute(
            "UPDATE community_members SET is_admin = ? WHERE guild_id = ? AND user_id = ?",
            (int(is_admin), guild_id.to_int(), user_id.to_int()),
        )

    @staticmethod
    async def communities_of(conn: aiosqlite.Connection, user_id: UserID) -> List[Membership]:
        """Communities where the account is currently present."""
        cursor = await conn.execute(
            "SELECT guild_id, user_id, is_admin FROM community_members WHERE user_id = ? AND left_at IS NULL "
            "ORDER BY guild_id",
            (user_id.to_int(),),
        )
        return [
            Membership(guild_id=GuildID(row[0]), user_id=UserID(row[1]), is_admin=bool(row[2]))
            for row in await cursor.fetchall()
        ]

    @staticmethod
    async def known_communities(conn: aiosqlite.Connection, user_id: UserID) -> List[GuildID]:
        """Every community the account was ever seen in, including ones it left."""
        cursor = await conn.execute(
            "SELECT guild_id FROM community_members WHERE user_id = ? ORDER BY guild_id",
            (user_id.to_int(),),
        )
        return [GuildID(row[0]) for row in await cursor.fetchall()]
