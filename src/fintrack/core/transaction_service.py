"""
Transaction service for fintrack.

All transaction changes flow through this service, ensuring:
- The owning asset exists and belongs to the caller's organization
- The row mutation and its balance delta commit together
- Lock conflicts are retried from a fresh read
- Every change lands in the audit trail
"""

import json
import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional, TypeVar
import sqlite3

from fintrack.core.assets import normalize_currency
from fintrack.core.audit import AuditLogger
from fintrack.core.balance import (
    BalanceReconciler,
    TransactionCreated,
    TransactionDeleted,
    TransactionUpdated,
)
from fintrack.core.database import atomic, run_with_retry
from fintrack.core.exceptions import (
    AssetNotFoundError,
    TransactionNotFoundError,
    ValidationError,
)
from fintrack.core.models import Transaction, TransactionType, to_money
from fintrack.core.security import check_organization, require_user_context

logger = logging.getLogger(__name__)

T = TypeVar("T")

UPDATABLE_FIELDS = ("type", "amount", "currency", "date", "category", "description", "metadata")


def _validate_amount(amount: Any) -> Decimal:
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount: {amount!r}", field="amount")
    if not value.is_finite():
        raise ValidationError(f"Invalid amount: {amount!r}", field="amount")
    if value < 0:
        raise ValidationError("Transaction amount must be non-negative", field="amount")
    return to_money(value)


def _coerce_type(txn_type: Any) -> TransactionType:
    if isinstance(txn_type, TransactionType):
        return txn_type
    try:
        return TransactionType(str(txn_type).upper())
    except ValueError:
        raise ValidationError(f"Invalid transaction type: {txn_type!r}", field="type")


def _coerce_date(value: Any) -> date:
    """Accept a date, a datetime or an ISO 'YYYY-MM-DD' string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            pass
    raise ValidationError(f"Invalid transaction date: {value!r}", field="date")


class TransactionService:
    """
    Manual and programmatic transaction lifecycle.

    Every create, update and delete runs as one atomic unit together with
    exactly one BalanceReconciler.apply() call.

    Usage:
        service = TransactionService(conn)

        txn = service.create(
            user_id="user-1",
            organization_id="org-1",
            asset_id=1,
            txn_type=TransactionType.EXPENSE,
            amount=Decimal("200"),
            category="Groceries",
            txn_date=date(2025, 1, 1),
        )
        service.update(txn.id, "user-1", "org-1", amount=Decimal("50"))
        service.delete(txn.id, "user-1", "org-1")
    """

    def __init__(
        self,
        db_connection: sqlite3.Connection,
        reconciler: BalanceReconciler = None,
        write_retries: int = 3,
        retry_delay: float = 0.05,
    ):
        """
        Initialize transaction service.

        Args:
            db_connection: SQLite database connection
            reconciler: Balance authority (default: balance-neutral transfers)
            write_retries: Attempts for a unit of work that hits a lock conflict
            retry_delay: Base delay in seconds; attempt n waits n * retry_delay
        """
        self.conn = db_connection
        self.reconciler = reconciler or BalanceReconciler(db_connection)
        self.write_retries = max(1, write_retries)
        self.retry_delay = retry_delay

    def _with_retry(self, operation: Callable[[], T], description: str) -> T:
        """Run a unit of work, re-running it on PersistenceConflictError."""
        return run_with_retry(operation, description, retries=self.write_retries, delay=self.retry_delay)

    def _load_asset_row(self, asset_id: int, organization_id: str) -> sqlite3.Row:
        row = self.conn.execute(
            "SELECT id, currency, organization_id FROM assets WHERE id = ?",
            (asset_id,),
        ).fetchone()
        if row is None:
            raise AssetNotFoundError(asset_id)
        check_organization(row["organization_id"], organization_id, what=f"asset {asset_id}")
        return row

    def _load(self, transaction_id: int) -> Transaction:
        row = self.conn.execute(
            "SELECT * FROM transactions WHERE id = ?", (transaction_id,)
        ).fetchone()
        if row is None:
            raise TransactionNotFoundError(transaction_id)
        return Transaction.from_row(row)

    @require_user_context
    def create(
        self,
        user_id: str,
        organization_id: str,
        asset_id: int,
        txn_type: TransactionType,
        amount: Decimal,
        category: str,
        txn_date: date,
        currency: str = None,
        description: str = None,
        import_history_id: int = None,
        metadata: Dict[str, Any] = None,
        source: str = "manual",
    ) -> Transaction:
        """
        Create a transaction and apply its balance delta.

        Args:
            user_id: Acting user
            organization_id: Caller's organization
            asset_id: Owning asset
            txn_type: INCOME, EXPENSE or TRANSFER
            amount: Non-negative magnitude
            category: Category label
            txn_date: Transaction date
            currency: ISO 4217 code (default: the asset's currency)
            description: Optional description
            import_history_id: Provenance for imported rows
            metadata: Optional free-form metadata
            source: Origin recorded in the audit trail

        Returns:
            The stored Transaction

        Raises:
            AssetNotFoundError: If the asset does not exist
            ForbiddenError: If the asset belongs to another organization
            ValidationError: If amount, type, date or currency is invalid
        """
        txn_type = _coerce_type(txn_type)
        amount = _validate_amount(amount)
        txn_date = _coerce_date(txn_date)
        if not category:
            raise ValidationError("Category is required", field="category")

        def unit() -> Transaction:
            with atomic(self.conn):
                asset_row = self._load_asset_row(asset_id, organization_id)
                txn = Transaction(
                    id=None,
                    type=txn_type,
                    amount=amount,
                    currency=normalize_currency(currency or asset_row["currency"]),
                    date=txn_date,
                    category=category,
                    asset_id=asset_id,
                    user_id=user_id,
                    organization_id=organization_id,
                    description=description,
                    import_history_id=import_history_id,
                    metadata=metadata,
                )
                cursor = self.conn.execute(
                    """
                    INSERT INTO transactions
                    (type, category, amount, currency, description, date,
                     asset_id, user_id, organization_id, import_history_id, metadata)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        txn.type.value,
                        txn.category,
                        str(txn.amount),
                        txn.currency,
                        txn.description,
                        txn.date.isoformat(),
                        txn.asset_id,
                        txn.user_id,
                        txn.organization_id,
                        txn.import_history_id,
                        json.dumps(metadata, default=str) if metadata is not None else None,
                    ),
                )
                txn.id = cursor.lastrowid

                AuditLogger(self.conn, user_id=user_id, source=source).log_insert(
                    table_name="transactions",
                    record_id=txn.id,
                    new_values={
                        "type": txn.type.value,
                        "amount": str(txn.amount),
                        "date": txn.date.isoformat(),
                        "asset_id": asset_id,
                    },
                )
                self.reconciler.apply(TransactionCreated(txn), user_id=user_id, source=source)
                return txn

        txn = self._with_retry(unit, f"Create transaction on asset {asset_id}")
        logger.debug(f"Transaction {txn.id} created on asset {asset_id}: {txn.type.value} {txn.amount}")
        return txn

    @require_user_context
    def update(
        self,
        transaction_id: int,
        user_id: str,
        organization_id: str,
        **changes: Any,
    ) -> Transaction:
        """
        Edit a transaction and apply the old-to-new balance delta.

        Accepted keyword changes: type, amount, currency, date, category,
        description, metadata.

        Raises:
            TransactionNotFoundError: If the transaction does not exist
            ValidationError: If a change is invalid or tries to move the
                transaction to another asset
        """
        if "asset_id" in changes:
            raise ValidationError("A transaction cannot be moved to a different asset", field="asset_id")
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        if "type" in changes:
            changes["type"] = _coerce_type(changes["type"])
        if "amount" in changes:
            changes["amount"] = _validate_amount(changes["amount"])
        if "date" in changes:
            changes["date"] = _coerce_date(changes["date"])
        if "currency" in changes:
            changes["currency"] = normalize_currency(changes["currency"])
        if "category" in changes and not changes["category"]:
            raise ValidationError("Category is required", field="category")

        def unit() -> Transaction:
            with atomic(self.conn):
                old = self._load(transaction_id)
                check_organization(old.organization_id, organization_id, what=f"transaction {transaction_id}")

                new = Transaction(**{**old.__dict__, **changes})
                self.conn.execute(
                    """
                    UPDATE transactions
                    SET type = ?, amount = ?, currency = ?, date = ?, category = ?,
                        description = ?, metadata = ?, updated_at = CURRENT_TIMESTAMP
                    WHERE id = ?
                    """,
                    (
                        new.type.value,
                        str(new.amount),
                        new.currency,
                        new.date.isoformat(),
                        new.category,
                        new.description,
                        json.dumps(new.metadata, default=str) if new.metadata is not None else None,
                        transaction_id,
                    ),
                )

                AuditLogger(self.conn, user_id=user_id, source="manual").log_update(
                    table_name="transactions",
                    record_id=transaction_id,
                    old_values={k: getattr(old, k) for k in changes},
                    new_values={k: getattr(new, k) for k in changes},
                )
                self.reconciler.apply(TransactionUpdated(old, new), user_id=user_id)
                return new

        return self._with_retry(unit, f"Update transaction {transaction_id}")

    @require_user_context
    def delete(self, transaction_id: int, user_id: str, organization_id: str) -> Transaction:
        """
        Delete a transaction and reverse its balance effect.

        Returns:
            The deleted Transaction
        """

        def unit() -> Transaction:
            with atomic(self.conn):
                txn = self._load(transaction_id)
                check_organization(txn.organization_id, organization_id, what=f"transaction {transaction_id}")

                self.conn.execute("DELETE FROM transactions WHERE id = ?", (transaction_id,))
                AuditLogger(self.conn, user_id=user_id, source="manual").log_delete(
                    table_name="transactions",
                    record_id=transaction_id,
                    old_values={"type": txn.type.value, "amount": str(txn.amount), "asset_id": txn.asset_id},
                )
                self.reconciler.apply(TransactionDeleted(txn), user_id=user_id)
                return txn

        return self._with_retry(unit, f"Delete transaction {transaction_id}")

    def get(self, transaction_id: int, organization_id: str) -> Transaction:
        """Fetch one transaction within the caller's organization."""
        txn = self._load(transaction_id)
        check_organization(txn.organization_id, organization_id, what=f"transaction {transaction_id}")
        return txn

    def list_for_asset(
        self,
        asset_id: int,
        organization_id: str,
        limit: Optional[int] = None,
    ) -> List[Transaction]:
        """Transactions of one asset, newest date first."""
        self._load_asset_row(asset_id, organization_id)
        sql = "SELECT * FROM transactions WHERE asset_id = ? ORDER BY date DESC, id DESC"
        params: List[Any] = [asset_id]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [Transaction.from_row(row) for row in self.conn.execute(sql, params).fetchall()]

    def find_duplicate(
        self,
        asset_id: int,
        txn_date: date,
        amount: Decimal,
        description: Optional[str],
    ) -> Optional[int]:
        """
        Look for an existing transaction with the same (date, amount, description).

        Returns:
            ID of the matching transaction, or None
        """
        row = self.conn.execute(
            """
            SELECT id FROM transactions
            WHERE asset_id = ? AND date = ? AND amount = ? AND description IS ?
            LIMIT 1
            """,
            (asset_id, txn_date.isoformat(), str(to_money(amount)), description),
        ).fetchone()
        return row["id"] if row else None

    def summarize(
        self,
        organization_id: str,
        asset_id: int = None,
        start_date: date = None,
        end_date: date = None,
    ) -> Dict[str, Any]:
        """
        Totals by type, by category and by currency.

        Amounts are summed per currency only; nothing here converts between
        currencies.

        Returns:
            Dict with byType, byCategory and byCurrency sections
        """
        sql = "SELECT type, category, currency, amount FROM transactions WHERE organization_id = ?"
        params: List[Any] = [organization_id]
        if asset_id is not None:
            sql += " AND asset_id = ?"
            params.append(asset_id)
        if start_date is not None:
            sql += " AND date >= ?"
            params.append(start_date.isoformat())
        if end_date is not None:
            sql += " AND date <= ?"
            params.append(end_date.isoformat())

        by_type: Dict[str, Dict[str, Any]] = {}
        by_category: Dict[str, Dict[str, Any]] = {}
        by_currency: Dict[str, Dict[str, Decimal]] = {}

        for row in self.conn.execute(sql, params):
            amount = Decimal(str(row["amount"]))
            txn_type = row["type"]

            type_entry = by_type.setdefault(txn_type, {"total": Decimal("0"), "count": 0})
            type_entry["total"] += amount
            type_entry["count"] += 1

            cat_entry = by_category.setdefault(
                row["category"], {"type": txn_type, "total": Decimal("0"), "count": 0}
            )
            cat_entry["total"] += amount
            cat_entry["count"] += 1

            cur_entry = by_currency.setdefault(
                row["currency"], {"income": Decimal("0"), "expense": Decimal("0")}
            )
            if txn_type == TransactionType.INCOME.value:
                cur_entry["income"] += amount
            elif txn_type == TransactionType.EXPENSE.value:
                cur_entry["expense"] += amount

        return {
            "byType": {k: {"total": str(v["total"]), "count": v["count"]} for k, v in by_type.items()},
            "byCategory": {
                k: {"type": v["type"], "total": str(v["total"]), "count": v["count"]}
                for k, v in by_category.items()
            },
            "byCurrency": {
                k: {"income": str(v["income"]), "expense": str(v["expense"]),
                    "net": str(v["income"] - v["expense"])}
                for k, v in by_currency.items()
            },
        }
