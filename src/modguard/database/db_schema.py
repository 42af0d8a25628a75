"""
Database schema creation.

Handles tables, indexes, triggers and schema version tracking. Every statement
is idempotent so the schema can be applied on each startup.
"""

import aiosqlite

from modguard.util.logger import get_logger

logger = get_logger("database_schema")

SCHEMA_VERSION = 1

# Scope key used for global check configuration and policy rows
GLOBAL_SCOPE = 0


class SchemaManager:
    """Creates the Modguard schema on an open connection."""

    @staticmethod
    async def initialize_schema(db: aiosqlite.Connection) -> None:
        """
        Create all tables, indexes and triggers, then record the schema version.

        Args:
            db: Open database connection
        """
        await SchemaManager._create_tables(db)
        await SchemaManager._create_indexes(db)
        await SchemaManager._create_triggers(db)
        await SchemaManager._update_schema_version(db)
        await db.commit()
        logger.info("[SCHEMA] Database schema initialized (version %d)", SCHEMA_VERSION)

    @staticmethod
    async def _create_tables(db: aiosqlite.Connection) -> None:
        """Create all required database tables."""
        # Per-check configuration; scope_id 0 holds the global records
        await db.execute("""
            CREATE TABLE IF NOT EXISTS check_configs (
                scope_id INTEGER NOT NULL,
                check_name TEXT NOT NULL,
                enabled INTEGER NOT NULL DEFAULT 1,
                use_global INTEGER NOT NULL DEFAULT 0,
                confidence_threshold INTEGER NOT NULL DEFAULT 0,
                always_run INTEGER NOT NULL DEFAULT 0,
                timeout REAL NOT NULL DEFAULT 5.0,
                params TEXT NOT NULL DEFAULT '{}',
                updated_at TEXT NOT NULL,
                PRIMARY KEY (scope_id, check_name)
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS detection_policies (
                scope_id INTEGER PRIMARY KEY,
                use_global INTEGER NOT NULL DEFAULT 0,
                auto_ban_threshold INTEGER NOT NULL,
                review_queue_threshold INTEGER NOT NULL,
                max_confidence_veto_threshold INTEGER NOT NULL,
                training_mode INTEGER NOT NULL DEFAULT 0,
                min_message_length INTEGER NOT NULL,
                veto_min_spam_checks INTEGER NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS detection_decisions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                guild_id INTEGER,
                channel_id INTEGER,
                message_id INTEGER,
                edit_version INTEGER NOT NULL DEFAULT 0,
                source TEXT NOT NULL,
                verdict TEXT NOT NULL,
                net_confidence INTEGER NOT NULL CHECK (net_confidence BETWEEN 0 AND 100),
                accuracy_confidence INTEGER NOT NULL CHECK (accuracy_confidence BETWEEN 0 AND 100),
                action TEXT NOT NULL,
                vetoed INTEGER NOT NULL DEFAULT 0,
                results TEXT NOT NULL,
                policy TEXT NOT NULL,
                text TEXT NOT NULL DEFAULT '',
                training_eligible INTEGER NOT NULL DEFAULT 0,
                review_state TEXT NOT NULL DEFAULT 'none',
                evaluated_at TEXT NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS action_records (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                action TEXT NOT NULL,
                family TEXT NOT NULL,
                issuer TEXT NOT NULL,
                issued_at TEXT NOT NULL,
                expires_at TEXT,
                reason TEXT NOT NULL DEFAULT '',
                state TEXT NOT NULL DEFAULT 'active' CHECK (state IN ('active', 'expired', 'reversed')),
                claimed_by TEXT,
                claimed_at TEXT,
                reversed_at TEXT,
                reversed_by TEXT
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS audit_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                occurred_at TEXT NOT NULL,
                actor TEXT NOT NULL,
                target_user_id INTEGER,
                guild_id INTEGER,
                action TEXT NOT NULL,
                outcome TEXT NOT NULL,
                detail TEXT NOT NULL DEFAULT '{}'
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS accounts (
                user_id INTEGER PRIMARY KEY,
                dm_enabled INTEGER NOT NULL DEFAULT 0,
                training_mode INTEGER NOT NULL DEFAULT 0,
                first_seen TEXT NOT NULL,
                last_seen TEXT NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS community_members (
                guild_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                is_admin INTEGER NOT NULL DEFAULT 0,
                joined_at TEXT NOT NULL,
                left_at TEXT,
                PRIMARY KEY (guild_id, user_id)
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS training_samples (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                decision_id INTEGER UNIQUE REFERENCES detection_decisions(id) ON DELETE CASCADE,
                message_id INTEGER,
                label TEXT NOT NULL CHECK (label IN ('spam', 'clean')),
                source TEXT NOT NULL CHECK (source IN ('automatic', 'manual')),
                text TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

    @staticmethod
    async def _create_indexes(db: aiosqlite.Connection) -> None:
        """Create lookup indexes and the uniqueness constraints expressed as indexes."""
        # At most one active ban-family and one active trust record per account
        await db.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS uq_action_records_active_family
            ON action_records(user_id, family)
            WHERE state = 'active' AND family IN ('ban', 'trust')
        """)
        # One decision per message version and source
        await db.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS uq_decisions_message_version
            ON detection_decisions(message_id, edit_version, source)
            WHERE message_id IS NOT NULL
        """)
        await db.execute("CREATE INDEX IF NOT EXISTS idx_action_records_due ON action_records(state, expires_at)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_action_records_user ON action_records(user_id, family, state)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_decisions_review ON detection_decisions(review_state, evaluated_at)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_decisions_user ON detection_decisions(user_id, evaluated_at DESC)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_audit_target ON audit_log(target_user_id, occurred_at DESC)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_members_user ON community_members(user_id, left_at)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_samples_label ON training_samples(label, source, created_at DESC)")

    @staticmethod
    async def _create_triggers(db: aiosqlite.Connection) -> None:
        """Create triggers that keep the audit log append-only and decisions immutable."""
        await db.execute("""
            CREATE TRIGGER IF NOT EXISTS audit_log_no_update
            BEFORE UPDATE ON audit_log
            BEGIN
                SELECT RAISE(ABORT, 'audit_log is append-only');
            END
        """)

        await db.execute("""
            CREATE TRIGGER IF NOT EXISTS audit_log_no_delete
            BEFORE DELETE ON audit_log
            BEGIN
                SELECT RAISE(ABORT, 'audit_log is append-only');
            END
        """)

        # Only training eligibility and review state may change after insert
        await db.execute("""
            CREATE TRIGGER IF NOT EXISTS detection_decisions_immutable
            BEFORE UPDATE OF user_id, guild_id, channel_id, message_id, edit_version, source, verdict,
                net_confidence, accuracy_confidence, action, vetoed, results, policy, text, evaluated_at
            ON detection_decisions
            BEGIN
                SELECT RAISE(ABORT, 'detection decisions are immutable');
            END
        """)

    @staticmethod
    async def _update_schema_version(db: aiosqlite.Connection) -> None:
        """Record the schema version."""
        await db.execute("INSERT OR IGNORE INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
