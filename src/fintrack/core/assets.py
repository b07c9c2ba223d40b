"""
Asset lifecycle for fintrack.

Assets are created with an opening balance, looked up within one
organization, and revalued through explicit valuation entries. The stored
amount is otherwise changed only by BalanceReconciler.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional
import sqlite3

from fintrack.core.audit import AuditLogger
from fintrack.core.balance import BalanceReconciler
from fintrack.core.database import atomic
from fintrack.core.exceptions import AssetNotFoundError, ValidationError
from fintrack.core.models import Asset, AssetType, Valuation, to_money
from fintrack.core.security import check_organization, require_user_context

logger = logging.getLogger(__name__)


def normalize_currency(currency: str) -> str:
    """Validate and upper-case an ISO 4217 currency code."""
    code = (currency or "").strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise ValidationError(f"Invalid currency code: {currency!r}", field="currency")
    return code


class AssetService:
    """
    Create, fetch and revalue assets.

    Usage:
        service = AssetService(conn)
        asset = service.create(
            user_id="user-1",
            organization_id="org-1",
            name="Everyday account",
            currency="AUD",
            amount=Decimal("1000"),
        )
        service.add_valuation(asset.id, Decimal("1200"), "user-1", "org-1")
    """

    def __init__(self, db_connection: sqlite3.Connection, reconciler: BalanceReconciler = None):
        self.conn = db_connection
        self.reconciler = reconciler or BalanceReconciler(db_connection)

    @require_user_context
    def create(
        self,
        user_id: str,
        organization_id: str,
        name: str,
        currency: str,
        amount: Decimal = Decimal("0"),
        asset_type: AssetType = AssetType.CASH,
        country: str = None,
        family_id: str = None,
        data_source: str = "MANUAL",
    ) -> Asset:
        """
        Create an asset owned by the user, or by a family when family_id is given.

        Args:
            user_id: Acting user (owner unless family_id is set)
            organization_id: Owning organization
            name: Display name
            currency: ISO 4217 code
            amount: Opening balance, also recorded as the initial amount
            asset_type: AssetType
            country: Optional country code
            family_id: Family owner; the asset is then not owned by the user
            data_source: Where the asset came from (MANUAL, BANK_SYNC, ...)

        Returns:
            The created Asset

        Raises:
            ValidationError: If name or currency is invalid
        """
        if not name or not name.strip():
            raise ValidationError("Asset name is required", field="name")
        currency = normalize_currency(currency)
        if isinstance(asset_type, str):
            asset_type = AssetType(asset_type.upper())
        opening = to_money(amount)
        owner_user = None if family_id else user_id

        with atomic(self.conn):
            cursor = self.conn.execute(
                """
                INSERT INTO assets
                (name, asset_type, country, currency, amount, initial_amount,
                 user_id, family_id, organization_id, data_source)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    name.strip(),
                    asset_type.value,
                    country,
                    currency,
                    str(opening),
                    str(opening),
                    owner_user,
                    family_id,
                    organization_id,
                    data_source,
                ),
            )
            asset_id = cursor.lastrowid
            AuditLogger(self.conn, user_id=user_id, source="manual").log_insert(
                table_name="assets",
                record_id=asset_id,
                new_values={"name": name.strip(), "currency": currency, "amount": str(opening)},
            )

        logger.info(f"Created asset {asset_id} ({currency} {opening}) in org {organization_id}")
        return self.get(asset_id, organization_id)

    def find(self, asset_id: int) -> Optional[Asset]:
        """Fetch an asset by id without organization scoping."""
        row = self.conn.execute("SELECT * FROM assets WHERE id = ?", (asset_id,)).fetchone()
        return Asset.from_row(row) if row else None

    def get(self, asset_id: int, organization_id: str) -> Asset:
        """
        Fetch an asset the caller's organization owns.

        Raises:
            AssetNotFoundError: If the asset does not exist
            ForbiddenError: If it belongs to another organization
        """
        asset = self.find(asset_id)
        if asset is None:
            raise AssetNotFoundError(asset_id)
        check_organization(asset.organization_id, organization_id, what=f"asset {asset_id}")
        return asset

    def list(self, organization_id: str, user_id: str = None) -> List[Asset]:
        """List an organization's assets, optionally only those a user owns."""
        sql = "SELECT * FROM assets WHERE organization_id = ?"
        params = [organization_id]
        if user_id:
            sql += " AND user_id = ?"
            params.append(user_id)
        sql += " ORDER BY name, id"
        return [Asset.from_row(row) for row in self.conn.execute(sql, params).fetchall()]

    @require_user_context
    def add_valuation(
        self,
        asset_id: int,
        value: Decimal,
        user_id: str,
        organization_id: str,
        valuation_date: date = None,
        source: str = "MANUAL",
    ) -> Valuation:
        """
        Record an explicit valuation and set the asset's amount to it.

        Args:
            asset_id: Asset to revalue
            value: New value in the asset's currency
            user_id: Acting user
            organization_id: Caller's organization
            valuation_date: Date of the valuation (default: today)
            source: Where the value came from

        Returns:
            The stored Valuation
        """
        asset = self.get(asset_id, organization_id)
        valuation_date = valuation_date or date.today()
        value = to_money(value)

        with atomic(self.conn):
            cursor = self.conn.execute(
                """
                INSERT INTO valuations (asset_id, value, currency, source, date)
                VALUES (?, ?, ?, ?, ?)
                """,
                (asset_id, str(value), asset.currency, source, valuation_date.isoformat()),
            )
            valuation_id = cursor.lastrowid
            self.reconciler.revalue(asset_id, value, user_id=user_id)

        row = self.conn.execute("SELECT * FROM valuations WHERE id = ?", (valuation_id,)).fetchone()
        return Valuation.from_row(row)

    def list_valuations(self, asset_id: int, organization_id: str) -> List[Valuation]:
        """Valuation history for an asset, newest first."""
        self.get(asset_id, organization_id)
        cursor = self.conn.execute(
            "SELECT * FROM valuations WHERE asset_id = ? ORDER BY date DESC, id DESC",
            (asset_id,),
        )
        return [Valuation.from_row(row) for row in cursor.fetchall()]
