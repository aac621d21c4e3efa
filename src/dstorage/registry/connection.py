"""SQLite connection and initialization utilities for the local registry."""

import sqlite3
import threading
from pathlib import Path

from .schema import get_init_schema
from ..core.exceptions import ConflictError, RegistryError


def translate_error(err):
    """Map a sqlite3 error onto the registry error taxonomy."""
    message = str(err).lower()
    if isinstance(err, sqlite3.OperationalError) and ("locked" in message or "busy" in message):
        # another writer holds the database; the write may succeed on retry
        return ConflictError(f"Registry write rejected: {err}", retryable=True)
    if isinstance(err, sqlite3.IntegrityError):
        return ConflictError(f"Registry write rejected: {err}", retryable=False)
    return RegistryError(f"Registry failure: {err}")


class DatabaseConnection:
    """Own one SQLite connection and initialize the registry schema."""

    __slots__ = ("db_path", "timeout", "_conn", "_lock", "_initialized")

    def __init__(self, db_path="./registry.db", timeout=5.0):
        """Initialize connection state; ``":memory:"`` gives a throwaway registry."""
        self.db_path = db_path if db_path == ":memory:" else Path(db_path)
        self.timeout = timeout
        self._conn = None
        self._lock = threading.RLock()
        self._initialized = False

    def initialize(self):
        """Create tables if they do not exist yet."""
        if self._initialized:
            return

        with self._lock:
            if self._initialized:
                return
            try:
                if isinstance(self.db_path, Path):
                    self.db_path.parent.mkdir(parents=True, exist_ok=True)
                conn = self._get_connection()
                for statement in get_init_schema():
                    conn.execute(statement)
                self._initialized = True
            except sqlite3.Error as e:
                raise RegistryError(f"Failed to initialize registry database: {e}") from e

    def _get_connection(self):
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.timeout,
                check_same_thread=False,
                isolation_level=None,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
        return self._conn

    def execute(self, query, params=()):
        """Execute one statement in autocommit mode and return lastrowid."""
        with self._lock:
            try:
                cursor = self._get_connection().execute(query, params)
                try:
                    return cursor.lastrowid
                finally:
                    cursor.close()
            except sqlite3.Error as e:
                raise translate_error(e) from e

    def fetch_one(self, query, params=()):
        """Fetch a single row as a dict or None."""
        with self._lock:
            try:
                row = self._get_connection().execute(query, params).fetchone()
            except sqlite3.Error as e:
                raise translate_error(e) from e
            return dict(row) if row else None

    def fetch_all(self, query, params=()):
        """Fetch all rows as a list of dicts."""
        with self._lock:
            try:
                rows = self._get_connection().execute(query, params).fetchall()
            except sqlite3.Error as e:
                raise translate_error(e) from e
            return [dict(row) for row in rows]

    def transaction(self):
        """Return a transaction context manager (BEGIN IMMEDIATE/COMMIT/ROLLBACK)."""
        return TransactionContext(self)

    def close(self):
        """Close the connection if open."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                self._initialized = False


class TransactionContext:
    """Context manager for write transactions on a DatabaseConnection."""

    __slots__ = ("db", "cursor")

    def __init__(self, db):
        self.db = db
        self.cursor = None

    def __enter__(self):
        """Take the write lock up front and return a cursor."""
        self.db._lock.acquire()
        try:
            self.cursor = self.db._get_connection().cursor()
            self.cursor.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            self.db._lock.release()
            raise translate_error(e) from e
        return self.cursor

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Commit on success, rollback on error, then close cursor."""
        conn = self.db._get_connection()
        try:
            if exc_type is None:
                try:
                    conn.commit()
                except sqlite3.Error as e:
                    conn.rollback()
                    raise translate_error(e) from e
            else:
                conn.rollback()
        finally:
            if self.cursor:
                self.cursor.close()
            self.db._lock.release()
        if isinstance(exc_val, sqlite3.Error):
            raise translate_error(exc_val) from exc_val
        return False
