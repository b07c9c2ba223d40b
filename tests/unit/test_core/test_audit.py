"""
Unit tests for audit module.

Audit rows ride on the caller's unit of work; these tests write them directly.
"""

import pytest
from datetime import datetime
from decimal import Decimal

from fintrack.core.audit import AuditLogger, AuditLogEntry


@pytest.fixture
def audit_logger(db_connection):
    return AuditLogger(db_connection, user_id="user-1", source="manual")


class TestAuditLogCreation:
    """Tests for audit log creation."""

    def test_log_insert(self, audit_logger, db_connection):
        log_id = audit_logger.log_insert("assets", 7, {"name": "Everyday", "amount": Decimal("10.50")})
        assert log_id > 0

        row = db_connection.execute("SELECT * FROM audit_log WHERE id = ?", (log_id,)).fetchone()
        assert row["action"] == "INSERT"
        assert row["old_values"] is None
        assert row["user_id"] == "user-1"
        assert row["source"] == "manual"

    def test_values_serialized_with_str_default(self, audit_logger):
        audit_logger.log_insert("assets", 7, {"amount": Decimal("10.50")})
        entry = audit_logger.get_history("assets", 7)[0]
        assert entry.new_values == {"amount": "10.50"}

    def test_user_override(self, audit_logger):
        audit_logger.log_delete("transactions", 3, {"amount": "5.00"}, user_id="user-2")
        entry = audit_logger.get_history("transactions", 3)[0]

        assert entry.user_id == "user-2"
        assert entry.action == "DELETE"
        assert entry.new_values is None

    def test_invalid_action(self, audit_logger):
        with pytest.raises(ValueError, match="Invalid action"):
            audit_logger.log_change("assets", 1, "MERGE")


class TestAuditHistory:
    """Tests for reading audit history."""

    def test_history_oldest_first(self, audit_logger):
        audit_logger.log_insert("assets", 1, {"amount": "100.00"})
        audit_logger.log_update("assets", 1, {"amount": "100.00"}, {"amount": "80.00"})
        audit_logger.log_update("assets", 2, {"amount": "1.00"}, {"amount": "2.00"})

        history = audit_logger.get_history("assets", 1)

        assert [e.action for e in history] == ["INSERT", "UPDATE"]
        assert history[1].old_values == {"amount": "100.00"}
        assert history[1].new_values == {"amount": "80.00"}
        assert all(isinstance(e, AuditLogEntry) for e in history)
        assert isinstance(history[0].timestamp, datetime)

    def test_history_empty(self, audit_logger):
        assert audit_logger.get_history("assets", 999) == []
