"""
Database maintenance operations.

VACUUM, ANALYZE and retention cleanup of finished action records.
"""

import time
from datetime import datetime, timedelta, timezone

import aiosqlite

from modguard.repositories.action_record_repo import ActionRecordRepo
from modguard.util.logger import get_logger

logger = get_logger("database_maintenance")


class MaintenanceOperations:
    """Maintenance and optimization operations on an open connection."""

    @staticmethod
    async def vacuum(db: aiosqlite.Connection) -> bool:
        """
        Reclaim space and defragment the database file.

        Args:
            db: Open database connection

        Returns:
            True if vacuum succeeded, False otherwise
        """
        try:
            logger.info("[MAINTENANCE] Starting VACUUM operation")
            start_time = time.time()
            await db.execute("VACUUM")
            logger.info("[MAINTENANCE] VACUUM completed in %.2f seconds", time.time() - start_time)
            return True
        except aiosqlite.Error as e:
            logger.error("[MAINTENANCE] VACUUM failed: %s", e)
            return False

    @staticmethod
    async def analyze(db: aiosqlite.Connection) -> bool:
        """
        Refresh query planner statistics.

        Args:
            db: Open database connection

        Returns:
            True if analyze succeeded, False otherwise
        """
        try:
            logger.info("[MAINTENANCE] Starting ANALYZE operation")
            start_time = time.time()
            await db.execute("ANALYZE")
            logger.info("[MAINTENANCE] ANALYZE completed in %.2f seconds", time.time() - start_time)
            return True
        except aiosqlite.Error as e:
            logger.error("[MAINTENANCE] ANALYZE failed: %s", e)
            return False

    @staticmethod
    async def cleanup_action_records(
        db: aiosqlite.Connection,
        retention_days: int = 90,
        now: datetime | None = None,
    ) -> int:
        """
        Delete finished action records older than the retention window.

        A record qualifies only when it is no longer active and both its
        issuance and its expiry fall before the cutoff. Permanent records are
        never removed. The caller owns the transaction.

        Args:
            db: Connection inside a write transaction
            retention_days: Days of history to retain
            now: Reference time, defaults to the current UTC time

        Returns:
            Number of records deleted
        """
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=retention_days)
        deleted_count = await ActionRecordRepo.delete_past_retention(db, cutoff)
        logger.info(
            "[MAINTENANCE] Removed %d action records past the %d day retention window",
            deleted_count, retention_days,
        )
        return deleted_count
