"""
Import history persistence.

An import_history row is created in 'processing' before any row of the file
is touched and is finalized exactly once, to 'completed' or 'failed'.
Finalized rows are never updated again.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import sqlite3

from fintrack.core.database import atomic, run_with_retry
from fintrack.core.exceptions import DatabaseError, ImportNotFoundError
from fintrack.core.models import ImportHistory, ImportRowError, ImportStatus, Transaction

logger = logging.getLogger(__name__)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class ImportHistoryStore:
    """
    Read and write import_history rows.

    Usage:
        store = ImportHistoryStore(conn)
        import_id = store.create("csv", "jan.csv", "user-1", "org-1", asset_id=1, mapping={...})
        ...
        store.finalize(import_id, ImportStatus.COMPLETED, total_rows=3, successful_rows=2, failed_rows=1)
    """

    def __init__(self, db_connection: sqlite3.Connection, write_retries: int = 3, retry_delay: float = 0.05):
        """
        Args:
            db_connection: SQLite database connection
            write_retries: Attempts for a history write that hits a lock conflict
            retry_delay: Base delay in seconds between attempts
        """
        self.conn = db_connection
        self.write_retries = max(1, write_retries)
        self.retry_delay = retry_delay

    def create(
        self,
        file_type: str,
        file_name: str,
        user_id: str,
        organization_id: str,
        asset_id: Optional[int] = None,
        mapping: Dict[str, Any] = None,
    ) -> int:
        """
        Open a new import job in 'processing' state.

        Returns:
            The new import id
        """
        def unit() -> int:
            with atomic(self.conn):
                cursor = self.conn.execute(
                    """
                    INSERT INTO import_history
                    (type, file_name, status, mapping, asset_id, user_id, organization_id, started_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        file_type,
                        file_name,
                        ImportStatus.PROCESSING.value,
                        json.dumps(mapping) if mapping is not None else None,
                        asset_id,
                        user_id,
                        organization_id,
                        _utcnow(),
                    ),
                )
            return cursor.lastrowid

        import_id = run_with_retry(
            unit, f"Create import job for {file_name!r}", retries=self.write_retries, delay=self.retry_delay
        )
        logger.info(f"Import {import_id} started: {file_type} file {file_name!r} for asset {asset_id}")
        return import_id

    def finalize(
        self,
        import_id: int,
        status: ImportStatus,
        total_rows: int = 0,
        successful_rows: int = 0,
        failed_rows: int = 0,
        skipped_rows: int = 0,
        errors: List[ImportRowError] = None,
    ) -> None:
        """
        Move a processing job to its terminal status with final counts.

        Lock conflicts are retried; the UPDATE only matches a job that is
        still processing, so a retry never overwrites a terminal row.

        Raises:
            ValueError: If status is not terminal
            DatabaseError: If the job is unknown or already finalized
            PersistenceConflictError: If every attempt hit a lock conflict
        """
        if not status.is_terminal:
            raise ValueError(f"Cannot finalize import with non-terminal status {status.value}")

        errors_json = json.dumps([e.to_dict() for e in errors], default=str) if errors else None

        def unit() -> None:
            with atomic(self.conn):
                cursor = self.conn.execute(
                    """
                    UPDATE import_history
                    SET status = ?, total_rows = ?, successful_rows = ?, failed_rows = ?,
                        skipped_rows = ?, errors = ?, completed_at = ?
                    WHERE id = ? AND status = ?
                    """,
                    (
                        status.value,
                        total_rows,
                        successful_rows,
                        failed_rows,
                        skipped_rows,
                        errors_json,
                        _utcnow(),
                        import_id,
                        ImportStatus.PROCESSING.value,
                    ),
                )
                if cursor.rowcount != 1:
                    raise DatabaseError(f"Import {import_id} is not in processing state")

        run_with_retry(
            unit, f"Finalize import {import_id}", retries=self.write_retries, delay=self.retry_delay
        )
        logger.info(
            f"Import {import_id} {status.value}: total={total_rows}, ok={successful_rows}, "
            f"failed={failed_rows}, skipped={skipped_rows}"
        )

    def get(self, import_id: int) -> ImportHistory:
        """
        Fetch one import job.

        Raises:
            ImportNotFoundError: If it does not exist
        """
        row = self.conn.execute("SELECT * FROM import_history WHERE id = ?", (import_id,)).fetchone()
        if row is None:
            raise ImportNotFoundError(import_id)
        return ImportHistory.from_row(row)

    def list(self, organization_id: str, user_id: str = None, limit: int = 10) -> List[ImportHistory]:
        """Import jobs of an organization, newest first."""
        sql = "SELECT * FROM import_history WHERE organization_id = ?"
        params: List[Any] = [organization_id]
        if user_id:
            sql += " AND user_id = ?"
            params.append(user_id)
        sql += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(limit)
        return [ImportHistory.from_row(row) for row in self.conn.execute(sql, params).fetchall()]

    def transactions(self, import_id: int, limit: int = 100) -> List[Transaction]:
        """Transactions created by one import, newest date first."""
        cursor = self.conn.execute(
            """
            SELECT * FROM transactions
            WHERE import_history_id = ?
            ORDER BY date DESC, id DESC
            LIMIT ?
            """,
            (import_id, limit),
        )
        return [Transaction.from_row(row) for row in cursor.fetchall()]

    def transaction_count(self, import_id: int) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) AS n FROM transactions WHERE import_history_id = ?", (import_id,)
        ).fetchone()
        return row["n"]
