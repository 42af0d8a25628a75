"""
Persistent storage for per-check configuration and detection policies.

Rows with ``scope_id = 0`` are the global records; any other scope id is a
community (guild) override. :meth:`CheckConfigRepo.load_scope` reads both levels
into one immutable :class:`ScopeConfig`.
"""

from __future__ import annotations

import json
from typing import Dict

import aiosqlite

from modguard.database.db_schema import GLOBAL_SCOPE
from modguard.datatypes.check_config import (
    CheckConfig,
    ScopeConfig,
    params_from_dict,
    params_to_dict,
)
from modguard.datatypes.detection_datatypes import CheckName, DetectionPolicy
from modguard.datatypes.identifiers import GuildID
from modguard.util.logger import get_logger
from modguard.util.time_utils import to_db, utcnow

logger = get_logger("check_config_repo")


def _scope_id(guild_id: GuildID | None) -> int:
    return GLOBAL_SCOPE if guild_id is None else guild_id.to_int()


def _row_to_config(row) -> CheckConfig | None:
    try:
        check = CheckName(row["check_name"])
    except ValueError:
        logger.warning("[CONFIG] Ignoring unknown check %r in database", row["check_name"])
        return None
    return CheckConfig(
        check=check,
        enabled=bool(row["enabled"]),
        use_global=bool(row["use_global"]),
        confidence_threshold=row["confidence_threshold"],
        always_run=bool(row["always_run"]),
        timeout=row["timeout"],
        params=params_from_dict(check, json.loads(row["params"] or "{}")),
    )


class CheckConfigRepo:
    """CRUD for ``check_configs`` and ``detection_policies``."""

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @staticmethod
    async def upsert_check(conn: aiosqlite.Connection, guild_id: GuildID | None, config: CheckConfig) -> None:
        """Insert or replace the record of one check at one scope (None = global)."""
        await conn.execute(
            """
            INSERT INTO check_configs
                (scope_id, check_name, enabled, use_global, confidence_threshold, always_run, timeout, params, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(scope_id, check_name) DO UPDATE SET
                enabled = excluded.enabled,
                use_global = excluded.use_global,
                confidence_threshold = excluded.confidence_threshold,
                always_run = excluded.always_run,
                timeout = excluded.timeout,
                params = excluded.params,
                updated_at = excluded.updated_at
            """,
            (
                _scope_id(guild_id),
                config.check.value,
                int(config.enabled),
                int(config.use_global and guild_id is not None),
                config.confidence_threshold,
                int(config.always_run),
                config.timeout,
                json.dumps(params_to_dict(config.params)),
                to_db(utcnow()),
            ),
        )

    @staticmethod
    async def delete_override(conn: aiosqlite.Connection, guild_id: GuildID, check: CheckName) -> None:
        await conn.execute(
            "DELETE FROM check_configs WHERE scope_id = ? AND check_name = ?",
            (guild_id.to_int(), check.value),
        )

    @staticmethod
    async def upsert_policy(
        conn: aiosqlite.Connection,
        guild_id: GuildID | None,
        policy: DetectionPolicy,
        use_global: bool = False,
    ) -> None:
        """Insert or replace the detection policy of one scope."""
        await conn.execute(
            """
            INSERT INTO detection_policies
                (scope_id, use_global, auto_ban_threshold, review_queue_threshold,
                 max_confidence_veto_threshold, training_mode, min_message_length,
                 veto_min_spam_checks, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(scope_id) DO UPDATE SET
                use_global = excluded.use_global,
                auto_ban_threshold = excluded.auto_ban_threshold,
                review_queue_threshold = excluded.review_queue_threshold,
                max_confidence_veto_threshold = excluded.max_confidence_veto_threshold,
                training_mode = excluded.training_mode,
                min_message_length = excluded.min_message_length,
                veto_min_spam_checks = excluded.veto_min_spam_checks,
                updated_at = excluded.updated_at
            """,
            (
                _scope_id(guild_id),
                int(use_global and guild_id is not None),
                policy.auto_ban_threshold,
                policy.review_queue_threshold,
                policy.max_confidence_veto_threshold,
                int(policy.training_mode),
                policy.min_message_length,
                policy.veto_min_spam_checks,
                to_db(utcnow()),
            ),
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    async def get_checks(conn: aiosqlite.Connection, guild_id: GuildID | None) -> Dict[CheckName, CheckConfig]:
        cursor = await conn.execute(
            "SELECT * FROM check_configs WHERE scope_id = ?",
            (_scope_id(guild_id),),
        )
        rows = await cursor.fetchall()
        configs = {}
        for row in rows:
            config = _row_to_config(row)
            if config is not None:
                configs[config.check] = config
        return configs

    @staticmethod
    async def get_policy(conn: aiosqlite.Connection, guild_id: GuildID | None) -> tuple[DetectionPolicy, bool] | None:
        """Return ``(policy, use_global)`` for the scope, or None when no row exists."""
        cursor = await conn.execute(
            "SELECT * FROM detection_policies WHERE scope_id = ?",
            (_scope_id(guild_id),),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        policy = DetectionPolicy(
            auto_ban_threshold=row["auto_ban_threshold"],
            review_queue_threshold=row["review_queue_threshold"],
            max_confidence_veto_threshold=row["max_confidence_veto_threshold"],
            training_mode=bool(row["training_mode"]),
            min_message_length=row["min_message_length"],
            veto_min_spam_checks=row["veto_min_spam_checks"],
        )
        return policy, bool(row["use_global"])

    @staticmethod
    async def load_scope(
        conn: aiosqlite.Connection,
        guild_id: GuildID | None,
        default_policy: DetectionPolicy | None = None,
    ) -> ScopeConfig:
        """Read the global records and the overrides of ``guild_id`` into one value.

        Args:
            conn: Open connection.
            guild_id: Community to load overrides for; None loads the global level only.
            default_policy: Used when no global policy row exists.
        """
        global_checks = await CheckConfigRepo.get_checks(conn, None)
        global_policy_row = await CheckConfigRepo.get_policy(conn, None)
        global_policy = global_policy_row[0] if global_policy_row else (default_policy or DetectionPolicy())

        overrides: Dict[CheckName, CheckConfig] = {}
        policy_override = None
        policy_use_global = True
        if guild_id is not None:
            overrides = await CheckConfigRepo.get_checks(conn, guild_id)
            row = await CheckConfigRepo.get_policy(conn, guild_id)
            if row is not None:
                policy_override, policy_use_global = row

        return ScopeConfig(
            guild_id=guild_id,
            global_checks=global_checks,
            overrides=overrides,
            global_policy=global_policy,
            policy_override=policy_override,
            policy_use_global=policy_use_global,
        )
