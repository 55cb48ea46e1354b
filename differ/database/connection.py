"""
Database connection management with thread safety.

Provides ConnectionManager, which owns the single SQLite connection of a
folder cache and serializes every transaction on it.
"""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional


class ConnectionManager:
    """
    Owns one shared SQLite connection.

    Provides context manager for transactions with:
    - One connection for the lifetime of the cache instance
    - A lock serializing all reads and writes on that connection
    - Transaction management (BEGIN/COMMIT/ROLLBACK)
    """

    def __init__(self, db_path: str):
        """
        Initialize connection manager.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None
        self._ensure_directory()

    def _ensure_directory(self):
        """Ensure the directory for the database file exists."""
        db_path = Path(self.db_path).resolve()
        db_dir = db_path.parent

        if db_dir and db_dir != db_path:
            db_dir.mkdir(parents=True, exist_ok=True)

    def open(self) -> None:
        """Open the shared connection (no-op if already open)."""
        with self._lock:
            if self._conn is not None:
                return
            conn = sqlite3.connect(
                self.db_path,
                timeout=30.0,
                # Transactions are managed explicitly
                isolation_level=None,
                # Shared across worker threads; access is serialized by _lock
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            self._conn = conn

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for one transaction on the shared connection.

        Yields:
            sqlite3.Connection with row factory enabled

        Raises:
            sqlite3.ProgrammingError: If the cache has been closed

        Example:
            with conn_mgr.connection() as conn:
                conn.execute("INSERT INTO ...")
        """
        with self._lock:
            conn = self._conn
            if conn is None:
                raise sqlite3.ProgrammingError(f"Cache database is closed: {self.db_path}")

            conn.execute("BEGIN")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    def execute_outside_transaction(self, sql: str) -> None:
        """Run a statement that must not be inside a transaction (VACUUM)."""
        with self._lock:
            if self._conn is None:
                raise sqlite3.ProgrammingError(f"Cache database is closed: {self.db_path}")
            self._conn.execute(sql)

    def close(self) -> None:
        """Close the shared connection; later operations fail as closed."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


__all__ = ['ConnectionManager']
