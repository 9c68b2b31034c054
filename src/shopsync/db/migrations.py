"""
Schema migrations for the sync tables.

Databases created before provenance tags, payload snapshots and cursor
diagnostics existed get the columns added in place with SQLite
ALTER TABLE ADD COLUMN. Each step is idempotent.

Called from init_db() after create_all(), so fresh and existing databases
take the same path.
"""
import logging

from sqlalchemy import text

logger = logging.getLogger(__name__)


def run_migrations(engine) -> None:
    """Apply all pending schema migrations.

    SQLite only (uses PRAGMA table_info); other dialects are skipped because
    create_all() already builds their tables from the current models.
    """
    if engine.dialect.name != "sqlite":
        logger.debug("Skipping SQLite migrations on %s", engine.dialect.name)
        return

    with engine.connect() as conn:
        # sync_logs: provenance tags and row snapshot
        _add_column_if_missing(conn, "sync_logs", "source_server", "VARCHAR")
        _add_column_if_missing(conn, "sync_logs", "store_type", "VARCHAR")
        _add_column_if_missing(conn, "sync_logs", "payload", "TEXT")

        # store_sync_states: node identity and last-cycle diagnostics
        _add_column_if_missing(conn, "store_sync_states", "server_role", "VARCHAR")
        _add_column_if_missing(conn, "store_sync_states", "server_ip", "VARCHAR")
        _add_column_if_missing(conn, "store_sync_states", "last_cursor", "VARCHAR")
        _add_column_if_missing(conn, "store_sync_states", "last_sync_count", "INTEGER NOT NULL DEFAULT 0")

        conn.commit()


def _add_column_if_missing(conn, table: str, column: str, col_type: str) -> None:
    result = conn.execute(text(f"PRAGMA table_info({table})"))
    existing_columns = {row[1] for row in result}
    if not existing_columns:
        return  # table not created yet
    if column not in existing_columns:
        conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}"))
        logger.info("Added column %s.%s", table, column)
