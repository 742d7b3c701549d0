"""
SQLite Schema Initialization.

Defines the schema of the local database and provides
:func:`initialize_schema`, which creates every table idempotently and
records the schema version in a single-row ``schema_version`` table.

Usage::

    from eprometna.logger import StructuredLogger
    from eprometna.schema import initialize_schema

    initialize_schema(db.sqlite, StructuredLogger(name="schema"))
"""

from __future__ import annotations

import sqlite3

from eprometna.logger import StructuredLogger

__all__ = ["CURRENT_SCHEMA_VERSION", "initialize_schema"]

CURRENT_SCHEMA_VERSION: int = 1

_TABLE_DEFINITIONS: list[str] = [
    # -- single-row version tracker -------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS schema_version (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        version INTEGER NOT NULL,
        applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    # -- secure_store (encrypted credential entries, one row per key) ---------
    """
    CREATE TABLE IF NOT EXISTS secure_store (
        key TEXT PRIMARY KEY,
        encrypted_value BLOB NOT NULL,
        nonce BLOB NOT NULL,
        tag BLOB NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
]


def _get_schema_version(conn: sqlite3.Connection) -> int:
    """Return the recorded schema version, or ``0`` for a fresh database."""
    try:
        row = conn.execute("SELECT version FROM schema_version WHERE id = 1").fetchone()
    except sqlite3.OperationalError:
        return 0
    return int(row[0]) if row else 0


def initialize_schema(conn: sqlite3.Connection, logger: StructuredLogger) -> None:
    """Create all tables and record :data:`CURRENT_SCHEMA_VERSION`.

    Runs inside one transaction; on failure the database is rolled back
    and the error propagates so startup aborts instead of running against
    a half-built schema.
    """
    current = _get_schema_version(conn)
    if current >= CURRENT_SCHEMA_VERSION:
        logger.debug("Schema already at version %d.", current)
        return

    try:
        for ddl in _TABLE_DEFINITIONS:
            conn.execute(ddl)
        conn.execute(
            """
            INSERT INTO schema_version (id, version) VALUES (1, ?)
            ON CONFLICT(id) DO UPDATE SET
                version    = excluded.version,
                applied_at = CURRENT_TIMESTAMP
            """,
            (CURRENT_SCHEMA_VERSION,),
        )
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        logger.error("Schema initialisation failed; rolled back.", exc_info=True)
        raise

    logger.info(
        "Schema initialised (version %d -> %d).", current, CURRENT_SCHEMA_VERSION,
    )
