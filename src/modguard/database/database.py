"""
Database coordinator.

Owns the :class:`ConnectionManager`, applies the schema at startup and exposes
maintenance entry points. Repositories are used directly by the services that
need them, with connections obtained from :attr:`Database.connections`.
"""

from __future__ import annotations

from pathlib import Path

from modguard.database.db_connection import ConnectionManager
from modguard.database.db_maintenance import MaintenanceOperations
from modguard.database.db_schema import SchemaManager
from modguard.util.logger import get_logger

logger = get_logger("database")

DB_PATH = Path("./data/modguard.db").resolve()


class Database:
    """
    Central database coordinator.

    Lifecycle:
        1. ``await initialize()`` at startup
        2. hand :attr:`connections` to repositories and services
        3. ``await shutdown()`` at exit
    """

    def __init__(self, db_path: Path = DB_PATH):
        """
        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        self.connections = ConnectionManager()
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> bool:
        """
        Open the connection and create the schema.

        Returns:
            True if initialization succeeded, False otherwise
        """
        if self._initialized:
            logger.debug("[DATABASE] Already initialized, skipping")
            return True

        try:
            await self.connections.open(self.db_path)
            await SchemaManager.initialize_schema(self.connections.connection)
        except Exception as e:
            logger.error("[DATABASE] Database initialization failed: %s", e)
            await self.connections.close()
            return False

        self._initialized = True
        logger.info("[DATABASE] Database initialized at %s", self.db_path)
        return True

    async def shutdown(self) -> None:
        """Close the connection."""
        if not self._initialized:
            return
        await self.connections.close()
        self._initialized = False
        logger.info("[DATABASE] Database shutdown complete")

    async def vacuum(self) -> bool:
        async with self.connections.transaction() as conn:
            # VACUUM cannot run inside a transaction; commit anything pending first
            await conn.commit()
            return await MaintenanceOperations.vacuum(conn)

    async def analyze(self) -> bool:
        async with self.connections.read() as conn:
            return await MaintenanceOperations.analyze(conn)

    async def cleanup_action_records(self, retention_days: int) -> int:
        """Delete finished action records past retention. Returns the number removed."""
        async with self.connections.transaction() as conn:
            return await MaintenanceOperations.cleanup_action_records(conn, retention_days)
