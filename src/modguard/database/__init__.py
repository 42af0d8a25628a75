"""
Database package for Modguard.

- **db_connection.py**: One long-lived aiosqlite connection with serialised
  write transactions.
- **db_schema.py**: Tables, indexes and triggers, created idempotently.
- **db_maintenance.py**: VACUUM/ANALYZE and retention cleanup.
- **database.py**: Coordinator owning the connection and the schema lifecycle.
"""
