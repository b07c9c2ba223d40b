"""
Core data models for fintrack.

Dataclasses for assets, transactions, valuations and import history, with
row converters for the SQLite schema in fintrack.core.database.
"""

import json
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Optional
import sqlite3


# Rounding precision for stored money amounts
MONEY_PRECISION = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Convert a value to a Decimal rounded to cents."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(MONEY_PRECISION, rounding=ROUND_HALF_UP)


def _parse_date(value: Any) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


class TransactionType(Enum):
    """Direction of a ledger entry relative to its asset."""

    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    TRANSFER = "TRANSFER"


class AssetType(Enum):
    """Kinds of assets a user or family can track."""

    CASH = "CASH"
    PROPERTY = "PROPERTY"
    VEHICLE = "VEHICLE"
    INVESTMENT = "INVESTMENT"
    CRYPTO = "CRYPTO"
    SUPERANNUATION = "SUPERANNUATION"
    SOCIAL_INSURANCE = "SOCIAL_INSURANCE"
    DEBT = "DEBT"
    OTHER = "OTHER"


class ImportStatus(Enum):
    """Lifecycle of an import job. COMPLETED and FAILED are terminal."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ImportStatus.PROCESSING


@dataclass
class Asset:
    """A tracked asset with its materialized running balance."""

    id: int
    name: str
    currency: str
    amount: Decimal
    initial_amount: Decimal
    organization_id: str
    asset_type: AssetType = AssetType.CASH
    country: Optional[str] = None
    user_id: Optional[str] = None
    family_id: Optional[str] = None
    data_source: str = "MANUAL"

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Asset":
        """Create Asset from database row."""
        return cls(
            id=row["id"],
            name=row["name"],
            currency=row["currency"],
            amount=Decimal(str(row["amount"])),
            initial_amount=Decimal(str(row["initial_amount"])),
            organization_id=row["organization_id"],
            asset_type=AssetType(row["asset_type"]),
            country=row["country"],
            user_id=row["user_id"],
            family_id=row["family_id"],
            data_source=row["data_source"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.asset_type.value,
            "country": self.country,
            "currency": self.currency,
            "amount": str(self.amount),
            "initialAmount": str(self.initial_amount),
            "userId": self.user_id,
            "familyId": self.family_id,
            "organizationId": self.organization_id,
            "dataSource": self.data_source,
        }


@dataclass
class Transaction:
    """
    A single ledger entry on one asset.

    The amount is stored non-negative; the sign is implied by the type.
    """

    id: Optional[int]
    type: TransactionType
    amount: Decimal
    currency: str
    date: date
    category: str
    asset_id: int
    user_id: str
    organization_id: str
    description: Optional[str] = None
    import_history_id: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Transaction":
        """Create Transaction from database row."""
        return cls(
            id=row["id"],
            type=TransactionType(row["type"]),
            amount=Decimal(str(row["amount"])),
            currency=row["currency"],
            date=_parse_date(row["date"]),
            category=row["category"],
            asset_id=row["asset_id"],
            user_id=row["user_id"],
            organization_id=row["organization_id"],
            description=row["description"],
            import_history_id=row["import_history_id"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "amount": str(self.amount),
            "currency": self.currency,
            "date": self.date.isoformat(),
            "category": self.category,
            "description": self.description,
            "assetId": self.asset_id,
            "userId": self.user_id,
            "organizationId": self.organization_id,
            "importHistoryId": self.import_history_id,
            "metadata": self.metadata,
        }


@dataclass
class Valuation:
    """An explicit point-in-time value for an asset."""

    id: int
    asset_id: int
    value: Decimal
    currency: str
    date: date
    source: str = "MANUAL"

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Valuation":
        return cls(
            id=row["id"],
            asset_id=row["asset_id"],
            value=Decimal(str(row["value"])),
            currency=row["currency"],
            date=_parse_date(row["date"]),
            source=row["source"],
        )


@dataclass
class ImportRowError:
    """One rejected row of an import job."""

    row: Optional[int]
    error: str
    data: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"row": self.row, "error": self.error}
        if self.data is not None:
            result["data"] = self.data
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImportRowError":
        return cls(row=data.get("row"), error=data.get("error", ""), data=data.get("data"))


@dataclass
class ImportHistory:
    """Audit record of one import job."""

    id: int
    type: str
    status: ImportStatus
    user_id: str
    organization_id: str
    asset_id: Optional[int] = None
    file_name: Optional[str] = None
    total_rows: int = 0
    successful_rows: int = 0
    failed_rows: int = 0
    skipped_rows: int = 0
    mapping: Optional[Dict[str, Any]] = None
    errors: List[ImportRowError] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ImportHistory":
        """Create ImportHistory from database row."""
        errors = json.loads(row["errors"]) if row["errors"] else []
        return cls(
            id=row["id"],
            type=row["type"],
            status=ImportStatus(row["status"]),
            user_id=row["user_id"],
            organization_id=row["organization_id"],
            asset_id=row["asset_id"],
            file_name=row["file_name"],
            total_rows=row["total_rows"],
            successful_rows=row["successful_rows"],
            failed_rows=row["failed_rows"],
            skipped_rows=row["skipped_rows"],
            mapping=json.loads(row["mapping"]) if row["mapping"] else None,
            errors=[ImportRowError.from_dict(e) for e in errors],
            started_at=_parse_timestamp(row["started_at"]),
            completed_at=_parse_timestamp(row["completed_at"]),
            created_at=_parse_timestamp(row["created_at"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "fileName": self.file_name,
            "status": self.status.value,
            "totalRows": self.total_rows,
            "successfulRows": self.successful_rows,
            "failedRows": self.failed_rows,
            "skippedRows": self.skipped_rows,
            "mapping": self.mapping,
            "errors": [e.to_dict() for e in self.errors],
            "assetId": self.asset_id,
            "userId": self.user_id,
            "organizationId": self.organization_id,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }
