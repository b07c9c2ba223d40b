"""
SQLite database initialization and connection management.

Provides the schema for all fintrack tables and a singleton connection
manager.

Thread Safety Notes:
- Uses check_same_thread=False for multi-threaded access
- WAL mode is enabled for better concurrent read performance
- Use atomic() for every write that must land together; it serializes
  writers that share one connection and takes SQLite's write lock up front
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Optional, TypeVar
import logging
import sqlite3
import threading
import time

from fintrack.core.exceptions import DatabaseError, PersistenceConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS assets (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    asset_type TEXT NOT NULL DEFAULT 'CASH' CHECK(asset_type IN (
        'CASH', 'PROPERTY', 'VEHICLE', 'INVESTMENT', 'CRYPTO',
        'SUPERANNUATION', 'SOCIAL_INSURANCE', 'DEBT', 'OTHER'
    )),
    country TEXT,
    currency TEXT NOT NULL,
    amount TEXT NOT NULL DEFAULT '0.00',
    initial_amount TEXT NOT NULL DEFAULT '0.00',
    user_id TEXT,
    family_id TEXT,
    organization_id TEXT NOT NULL,
    data_source TEXT NOT NULL DEFAULT 'MANUAL',
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    CHECK ((user_id IS NULL) <> (family_id IS NULL))
);

CREATE TABLE IF NOT EXISTS valuations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    asset_id INTEGER NOT NULL,
    value TEXT NOT NULL,
    currency TEXT NOT NULL,
    source TEXT NOT NULL DEFAULT 'MANUAL',
    date DATE NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (asset_id) REFERENCES assets(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS import_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    type TEXT NOT NULL CHECK(type IN ('csv', 'excel')),
    file_name TEXT,
    status TEXT NOT NULL CHECK(status IN ('processing', 'completed', 'failed')),
    total_rows INTEGER NOT NULL DEFAULT 0,
    successful_rows INTEGER NOT NULL DEFAULT 0,
    failed_rows INTEGER NOT NULL DEFAULT 0,
    skipped_rows INTEGER NOT NULL DEFAULT 0,
    mapping TEXT,
    errors TEXT,
    asset_id INTEGER,
    user_id TEXT NOT NULL,
    organization_id TEXT NOT NULL,
    started_at TIMESTAMP,
    completed_at TIMESTAMP,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    CHECK (successful_rows + failed_rows + skipped_rows <= total_rows)
);

CREATE TABLE IF NOT EXISTS transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    type TEXT NOT NULL CHECK(type IN ('INCOME', 'EXPENSE', 'TRANSFER')),
    category TEXT NOT NULL,
    amount TEXT NOT NULL,
    currency TEXT NOT NULL,
    description TEXT,
    date DATE NOT NULL,
    asset_id INTEGER NOT NULL,
    user_id TEXT NOT NULL,
    organization_id TEXT NOT NULL,
    import_history_id INTEGER,
    metadata TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (asset_id) REFERENCES assets(id) ON DELETE CASCADE,
    FOREIGN KEY (import_history_id) REFERENCES import_history(id) ON DELETE SET NULL
);

CREATE TABLE IF NOT EXISTS exchange_rate_cache (
    cache_key TEXT PRIMARY KEY,
    base_currency TEXT NOT NULL,
    rate_day DATE NOT NULL,
    payload TEXT NOT NULL,
    created_at TIMESTAMP NOT NULL,
    expires_at TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS audit_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    table_name TEXT NOT NULL,
    record_id INTEGER,
    action TEXT NOT NULL CHECK(action IN ('INSERT','UPDATE','DELETE')),
    old_values TEXT,
    new_values TEXT,
    user_id TEXT,
    source TEXT,
    timestamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_assets_org ON assets(organization_id);
CREATE INDEX IF NOT EXISTS idx_assets_user ON assets(user_id);
CREATE INDEX IF NOT EXISTS idx_assets_family ON assets(family_id);
CREATE INDEX IF NOT EXISTS idx_valuations_asset ON valuations(asset_id, date);
CREATE INDEX IF NOT EXISTS idx_txn_asset ON transactions(asset_id);
CREATE INDEX IF NOT EXISTS idx_txn_date ON transactions(date);
CREATE INDEX IF NOT EXISTS idx_txn_category ON transactions(category);
CREATE INDEX IF NOT EXISTS idx_txn_import ON transactions(import_history_id);
CREATE INDEX IF NOT EXISTS idx_txn_dedupe ON transactions(asset_id, date, amount, description);
CREATE INDEX IF NOT EXISTS idx_import_org ON import_history(organization_id, created_at);
CREATE INDEX IF NOT EXISTS idx_import_user ON import_history(user_id);
CREATE INDEX IF NOT EXISTS idx_import_status ON import_history(status);
CREATE INDEX IF NOT EXISTS idx_rate_cache_base ON exchange_rate_cache(base_currency, rate_day);
CREATE INDEX IF NOT EXISTS idx_audit_log_table ON audit_log(table_name, record_id);
"""


# Per-connection write locks and per-thread nesting depth for atomic()
_write_locks: Dict[int, threading.RLock] = {}
_write_locks_guard = threading.Lock()
_nesting = threading.local()


def _write_lock_for(conn: sqlite3.Connection) -> threading.RLock:
    key = id(conn)
    with _write_locks_guard:
        lock = _write_locks.get(key)
        if lock is None:
            lock = threading.RLock()
            _write_locks[key] = lock
        return lock


def _is_lock_error(error: sqlite3.OperationalError) -> bool:
    text = str(error).lower()
    return "locked" in text or "busy" in text


@contextmanager
def atomic(conn: sqlite3.Connection):
    """
    Run a block as one write transaction.

    Usage:
        with atomic(conn):
            conn.execute("INSERT INTO transactions ...")
            conn.execute("UPDATE assets ...")
        # Commits on success, rolls back on exception

    Nested calls on the same thread join the outer transaction.

    Raises:
        PersistenceConflictError: If the write lock could not be acquired
    """
    lock = _write_lock_for(conn)
    with lock:
        depths = getattr(_nesting, "depths", None)
        if depths is None:
            depths = _nesting.depths = {}
        key = id(conn)
        depth = depths.get(key, 0)

        if depth > 0:
            depths[key] = depth + 1
            try:
                yield conn
            finally:
                depths[key] = depth
            return

        if conn.in_transaction:
            # Flush implicit work left open by plain execute() calls
            conn.commit()

        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as e:
            if _is_lock_error(e):
                raise PersistenceConflictError(f"Could not acquire write lock: {e}") from e
            raise DatabaseError(f"Failed to begin transaction: {e}") from e

        depths[key] = 1
        try:
            yield conn
            conn.commit()
        except sqlite3.OperationalError as e:
            conn.rollback()
            if _is_lock_error(e):
                raise PersistenceConflictError(f"Write conflict: {e}") from e
            raise DatabaseError(f"Transaction failed: {e}") from e
        except BaseException:
            conn.rollback()
            raise
        finally:
            depths[key] = 0


def run_with_retry(
    operation: Callable[[], T],
    description: str,
    retries: int = 3,
    delay: float = 0.05,
) -> T:
    """
    Run a unit of work, re-running it on PersistenceConflictError.

    Attempt n waits n * delay before the next one. The last conflict is
    re-raised once retries are exhausted.
    """
    retries = max(1, retries)
    for attempt in range(1, retries + 1):
        try:
            return operation()
        except PersistenceConflictError as e:
            if attempt == retries:
                logger.error(f"{description} failed after {attempt} attempts: {e}")
                raise
            logger.warning(f"{description} hit a write conflict (attempt {attempt}), retrying")
            time.sleep(delay * attempt)


def connect(db_path: str) -> sqlite3.Connection:
    """
    Open a connection and make sure the schema exists.

    Args:
        db_path: Path to database file or ":memory:"

    Returns:
        Configured sqlite3 connection

    Raises:
        DatabaseError: If the database cannot be opened
    """
    try:
        if db_path != ":memory:":
            Path(db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
            db_path = str(Path(db_path).expanduser())

        conn = sqlite3.connect(db_path, check_same_thread=False, timeout=10.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")

        # WAL mode allows multiple readers and one writer simultaneously
        if db_path != ":memory:":
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")

        conn.executescript(SCHEMA_SQL)
        conn.commit()
        return conn

    except sqlite3.Error as e:
        raise DatabaseError(f"Failed to initialize database: {e}")


class DatabaseManager:
    """
    Singleton manager for the fintrack database connection.

    Usage:
        db = DatabaseManager()
        conn = db.init("/path/to/fintrack.db")
        # Use connection...
        db.close()
    """

    _instance: Optional["DatabaseManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "DatabaseManager":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._connection = None
                    cls._instance._db_path = None
        return cls._instance

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the current database connection."""
        if self._connection is None:
            raise DatabaseError("Database not initialized. Call init() first.")
        return self._connection

    def init(self, db_path: str) -> sqlite3.Connection:
        """
        Initialize the database.

        Args:
            db_path: Path to database file or ":memory:" for in-memory database

        Returns:
            Database connection
        """
        self._db_path = db_path
        self._connection = connect(db_path)
        logger.debug(f"Database initialized at {db_path}")
        return self._connection

    @contextmanager
    def transaction(self):
        """Context manager for atomic transactions on the managed connection."""
        with atomic(self.connection) as conn:
            yield conn

    def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            with _write_locks_guard:
                _write_locks.pop(id(self._connection), None)
            self._connection.close()
            self._connection = None
            self._db_path = None

    def get_tables(self) -> list[str]:
        """Get list of all tables in database."""
        cursor = self.connection.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"
        )
        return [row[0] for row in cursor.fetchall()]

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (useful for testing)."""
        with cls._lock:
            if cls._instance and cls._instance._connection:
                cls._instance.close()
            cls._instance = None


def get_connection() -> sqlite3.Connection:
    """Get the current database connection (convenience function)."""
    return DatabaseManager().connection
