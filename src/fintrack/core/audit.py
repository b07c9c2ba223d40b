"""
Audit logging for data tracking.

Captures data changes with table, record ID, action, old/new values, and timestamp.
Entries are written on the caller's connection and committed with the
caller's unit of work, so an audit row never outlives a rolled-back change.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List, Dict, Any
import sqlite3


@dataclass
class AuditLogEntry:
    """One row of the audit_log table."""

    id: int
    table_name: str
    record_id: Optional[int]
    action: str
    old_values: Optional[Dict[str, Any]]
    new_values: Optional[Dict[str, Any]]
    user_id: Optional[str]
    source: Optional[str]
    timestamp: datetime

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "AuditLogEntry":
        """Create AuditLogEntry from database row."""
        return cls(
            id=row["id"],
            table_name=row["table_name"],
            record_id=row["record_id"],
            action=row["action"],
            old_values=json.loads(row["old_values"]) if row["old_values"] else None,
            new_values=json.loads(row["new_values"]) if row["new_values"] else None,
            user_id=row["user_id"],
            source=row["source"],
            timestamp=datetime.fromisoformat(row["timestamp"]) if isinstance(row["timestamp"], str) else row["timestamp"],
        )


class AuditLogger:
    """
    Logger for tracking data changes in the system.

    Usage:
        audit = AuditLogger(connection, user_id="user-1", source="import")

        audit.log_update(
            table_name="assets",
            record_id=1,
            old_values={"amount": "1000.00"},
            new_values={"amount": "800.00"},
        )
    """

    VALID_ACTIONS = ("INSERT", "UPDATE", "DELETE")

    def __init__(
        self,
        db_connection: sqlite3.Connection,
        user_id: str = None,
        source: str = None,
    ):
        """
        Initialize the audit logger.

        Args:
            db_connection: SQLite database connection
            user_id: Default user ID for log entries
            source: Origin of the change (manual, import, valuation)
        """
        self.conn = db_connection
        self.user_id = user_id
        self.source = source

    def log_change(
        self,
        table_name: str,
        record_id: Optional[int],
        action: str,
        old_values: Dict[str, Any] = None,
        new_values: Dict[str, Any] = None,
        user_id: str = None,
    ) -> int:
        """
        Write one audit row for a change to a fintrack table.

        Args:
            table_name: Table that changed (assets, transactions, ...)
            record_id: Primary key of the changed row
            action: One of INSERT, UPDATE, DELETE
            old_values: Previous values (for UPDATE/DELETE)
            new_values: New values (for INSERT/UPDATE)
            user_id: User who made the change (overrides default)

        Returns:
            Audit log entry ID

        Raises:
            ValueError: If action is not INSERT, UPDATE or DELETE
        """
        if action not in self.VALID_ACTIONS:
            raise ValueError(f"Invalid action: {action}. Must be one of {self.VALID_ACTIONS}")

        cursor = self.conn.execute(
            """
            INSERT INTO audit_log
            (table_name, record_id, action, old_values, new_values, user_id, source)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                table_name,
                record_id,
                action,
                json.dumps(old_values, default=str) if old_values else None,
                json.dumps(new_values, default=str) if new_values else None,
                user_id or self.user_id,
                self.source,
            ),
        )
        return cursor.lastrowid

    def log_insert(self, table_name: str, record_id: int, new_values: Dict[str, Any], user_id: str = None) -> int:
        """Record a newly written row."""
        return self.log_change(table_name, record_id, "INSERT", new_values=new_values, user_id=user_id)

    def log_update(
        self,
        table_name: str,
        record_id: int,
        old_values: Dict[str, Any],
        new_values: Dict[str, Any],
        user_id: str = None,
    ) -> int:
        """Record a changed row with before and after values."""
        return self.log_change(
            table_name, record_id, "UPDATE",
            old_values=old_values, new_values=new_values, user_id=user_id,
        )

    def log_delete(self, table_name: str, record_id: int, old_values: Dict[str, Any], user_id: str = None) -> int:
        """Record a removed row with its last values."""
        return self.log_change(table_name, record_id, "DELETE", old_values=old_values, user_id=user_id)

    def get_history(self, table_name: str, record_id: int) -> List[AuditLogEntry]:
        """
        Get audit history for a specific record, oldest first.

        Args:
            table_name: Name of the table
            record_id: ID of the record

        Returns:
            List of AuditLogEntry objects
        """
        cursor = self.conn.execute(
            """
            SELECT * FROM audit_log
            WHERE table_name = ? AND record_id = ?
            ORDER BY id ASC
            """,
            (table_name, record_id),
        )
        return [AuditLogEntry.from_row(row) for row in cursor.fetchall()]
