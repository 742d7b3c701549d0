"""
Local Database Layer.

Owns the single SQLite connection used for on-device persistence.  The
only durable state the core keeps is the encrypted credential set (see
``CredentialStore``), so this module manages the raw connection and its
transaction helpers; it contains no query logic.

Usage (dependency injection at app startup)::

    from eprometna.database import DatabaseManager
    from eprometna.logger import StructuredLogger

    db = DatabaseManager(
        sqlite_path=config.LOCAL_DB_PATH,
        logger=StructuredLogger(name="database"),
    )
"""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from eprometna.logger import StructuredLogger


class DatabaseManager:
    """Manages the connection to the local SQLite database.

    Parameters
    ----------
    sqlite_path:
        Filesystem path for the local SQLite database file, or
        ``":memory:"``.  Parent directories are created when missing.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    """

    def __init__(
        self,
        sqlite_path: Path | str,
        logger: StructuredLogger,
    ) -> None:
        self._logger: StructuredLogger = logger
        self._write_lock: threading.RLock = threading.RLock()
        self._in_batch: bool = False
        self._closed: bool = False
        self._sqlite_conn: sqlite3.Connection = self._connect_sqlite(sqlite_path)

    # ------------------------------------------------------------------
    # Public properties
    # ------------------------------------------------------------------

    @property
    def sqlite(self) -> sqlite3.Connection:
        """Return the initialised SQLite connection."""
        return self._sqlite_conn

    @property
    def write_lock(self) -> threading.RLock:
        """Lock serialising credential writes.

        ``CredentialStore`` holds it around each single-row upsert/delete
        and its commit.  It is re-entrant, so those calls also work inside
        :meth:`batch_write`, which holds the same lock.
        """
        return self._write_lock

    @property
    def in_batch(self) -> bool:
        return self._in_batch

    @contextmanager
    def batch_write(self) -> Generator[None, None, None]:
        """Apply every write in the block as one all-or-nothing transaction.

        ``CredentialStore.write_many`` relies on this to store the token
        set and user blob together: a session must never be half-persisted.
        :meth:`commit` is suppressed while the block runs; the block's end
        commits once, and any exception rolls every row back before it
        propagates.  A nested block joins the outer transaction.
        """
        with self._write_lock:
            if self._in_batch:
                yield
                return

            self._in_batch = True
            try:
                yield
            except BaseException:
                self._sqlite_conn.rollback()
                self._logger.error(
                    "Credential transaction rolled back.", exc_info=True,
                )
                raise
            else:
                self._sqlite_conn.commit()
                self._logger.debug("Credential transaction committed.")
            finally:
                self._in_batch = False

    def commit(self) -> None:
        """Commit a single-row write; deferred while a batch is open."""
        if not self._in_batch:
            self._sqlite_conn.commit()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the connection.  Idempotent.

        ``main`` calls this from both its ``finally`` block and ``atexit``.
        """
        with self._write_lock:
            if self._closed:
                return
            self._closed = True
            self._sqlite_conn.close()
            self._logger.info("Local database closed.")

    def _connect_sqlite(self, path: Path | str) -> sqlite3.Connection:
        """Open the database file in WAL mode with ``sqlite3.Row`` rows.

        Raises
        ------
        sqlite3.OperationalError
            The file cannot be opened (read-only directory, locked or
            corrupt file).  The path is logged first.
        """
        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(str(path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL;")
        except sqlite3.OperationalError:
            self._logger.error("Cannot open the local database at '%s'.", path)
            raise
        self._logger.info("Local database opened at %s", path)
        return conn
