"""
Balance reconciliation for asset running totals.

An asset's stored amount is a materialized total:

    amount == initial_amount + sum(signed(t) for t in live transactions)

BalanceReconciler is the only writer of assets.amount. Every transaction
create, update or delete is turned into a single signed delta and added to
the stored amount inside the caller's write transaction; the balance is never
recomputed from history.

Usage:
    reconciler = BalanceReconciler(conn)

    with atomic(conn):
        conn.execute("INSERT INTO transactions ...")
        reconciler.apply(TransactionCreated(txn))
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Union
import sqlite3

from fintrack.core.audit import AuditLogger
from fintrack.core.exceptions import AssetNotFoundError, ValidationError
from fintrack.core.models import Transaction, TransactionType, to_money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransactionCreated:
    transaction: Transaction


@dataclass(frozen=True)
class TransactionUpdated:
    old: Transaction
    new: Transaction


@dataclass(frozen=True)
class TransactionDeleted:
    transaction: Transaction


BalanceEvent = Union[TransactionCreated, TransactionUpdated, TransactionDeleted]


def transaction_sign(txn_type: TransactionType, transfer_sign: int = 0) -> int:
    """
    Sign a transaction type contributes to its asset's balance.

    INCOME is +1 and EXPENSE is -1. TRANSFER is balance-neutral unless the
    caller supplies an explicit direction.
    """
    if txn_type is TransactionType.INCOME:
        return 1
    if txn_type is TransactionType.EXPENSE:
        return -1
    return transfer_sign


def signed_amount(txn: Transaction, transfer_sign: int = 0) -> Decimal:
    """Signed effect of one transaction on its asset's balance."""
    return transaction_sign(txn.type, transfer_sign) * txn.amount


def balance_delta(event: BalanceEvent, transfer_sign: int = 0) -> Decimal:
    """
    Compute the change a lifecycle event makes to an asset's balance.

    Update is modelled as reverting the old effect and applying the new one
    in a single delta.
    """
    if isinstance(event, TransactionCreated):
        return signed_amount(event.transaction, transfer_sign)
    if isinstance(event, TransactionUpdated):
        return signed_amount(event.new, transfer_sign) - signed_amount(event.old, transfer_sign)
    if isinstance(event, TransactionDeleted):
        return -signed_amount(event.transaction, transfer_sign)
    raise TypeError(f"Unknown balance event: {event!r}")


def _event_asset_id(event: BalanceEvent) -> int:
    if isinstance(event, TransactionUpdated):
        if event.old.asset_id != event.new.asset_id:
            raise ValidationError(
                "A transaction cannot be moved to a different asset",
                field="asset_id",
            )
        return event.new.asset_id
    return event.transaction.asset_id


class BalanceReconciler:
    """
    Single authority for mutating an asset's stored balance.

    apply() and revalue() must run inside an open write transaction
    (fintrack.core.database.atomic) together with the row mutation they
    account for, so the two never observably diverge. The stored amount is
    re-read inside that transaction, which holds SQLite's write lock, so
    concurrent deltas compose instead of overwriting each other.
    """

    def __init__(self, db_connection: sqlite3.Connection, transfer_sign: int = 0):
        """
        Initialize reconciler.

        Args:
            db_connection: SQLite database connection
            transfer_sign: Direction applied to TRANSFER transactions
                (0 keeps them balance-neutral)
        """
        if transfer_sign not in (-1, 0, 1):
            raise ValueError(f"transfer_sign must be -1, 0 or 1, got {transfer_sign}")
        self.conn = db_connection
        self.transfer_sign = transfer_sign

    def delta_for(self, event: BalanceEvent) -> Decimal:
        """Delta this reconciler would apply for an event."""
        return balance_delta(event, self.transfer_sign)

    def apply(self, event: BalanceEvent, user_id: str = None, source: str = "manual") -> Decimal:
        """
        Apply the balance delta for a transaction lifecycle event.

        Args:
            event: TransactionCreated, TransactionUpdated or TransactionDeleted
            user_id: Acting user, for the audit trail
            source: Origin of the change, for the audit trail

        Returns:
            The asset's new stored amount

        Raises:
            AssetNotFoundError: If the owning asset does not exist
            ValidationError: If an update moves the transaction between assets
        """
        asset_id = _event_asset_id(event)
        delta = self.delta_for(event)

        if not self.conn.in_transaction:
            raise RuntimeError("BalanceReconciler.apply() requires an open write transaction")

        return self._add_to_balance(asset_id, delta, user_id, source, type(event).__name__)

    def revalue(self, asset_id: int, new_amount: Decimal, user_id: str = None) -> Decimal:
        """
        Set an asset's stored amount from an explicit valuation.

        The baseline (initial_amount) moves by the same delta, so the
        amount still equals the baseline plus the signed sum of the
        existing transactions.

        Returns:
            The delta that was applied
        """
        if not self.conn.in_transaction:
            raise RuntimeError("BalanceReconciler.revalue() requires an open write transaction")

        row = self._read_asset(asset_id)
        old_amount = Decimal(str(row["amount"]))
        old_initial = Decimal(str(row["initial_amount"]))
        delta = to_money(new_amount) - old_amount
        new_initial = old_initial + delta

        self.conn.execute(
            """
            UPDATE assets
            SET amount = ?, initial_amount = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ?
            """,
            (str(to_money(new_amount)), str(to_money(new_initial)), asset_id),
        )

        AuditLogger(self.conn, user_id=user_id, source="valuation").log_update(
            table_name="assets",
            record_id=asset_id,
            old_values={"amount": str(old_amount), "initial_amount": str(old_initial)},
            new_values={"amount": str(to_money(new_amount)), "initial_amount": str(to_money(new_initial))},
        )

        logger.info(f"Asset {asset_id} revalued: {old_amount} -> {to_money(new_amount)}")
        return delta

    def _read_asset(self, asset_id: int) -> sqlite3.Row:
        row = self.conn.execute(
            "SELECT id, amount, initial_amount FROM assets WHERE id = ?",
            (asset_id,),
        ).fetchone()
        if row is None:
            raise AssetNotFoundError(asset_id)
        return row

    def _add_to_balance(
        self,
        asset_id: int,
        delta: Decimal,
        user_id: str,
        source: str,
        event_name: str,
    ) -> Decimal:
        row = self._read_asset(asset_id)
        old_amount = Decimal(str(row["amount"]))

        if delta == 0:
            return old_amount

        new_amount = to_money(old_amount + delta)
        self.conn.execute(
            "UPDATE assets SET amount = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (str(new_amount), asset_id),
        )

        AuditLogger(self.conn, user_id=user_id, source=source).log_update(
            table_name="assets",
            record_id=asset_id,
            old_values={"amount": str(old_amount)},
            new_values={"amount": str(new_amount), "delta": str(delta), "event": event_name},
        )

        logger.debug(f"Asset {asset_id} balance {old_amount} -> {new_amount} ({event_name}, delta={delta})")
        return new_amount
