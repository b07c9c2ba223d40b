"""
Core module - Foundation components for fintrack.

Provides:
- DatabaseManager: SQLite schema and connection management
- atomic: Write-transaction helper shared by every mutating service
- BalanceReconciler: Single writer of asset balances
- AssetService: Asset creation, lookup and valuation
- TransactionService: Transaction create/update/delete with balance deltas
- AuditLogger: Change audit logging
- Security: User context enforcement
- Settings: Configuration loading
"""

from fintrack.core.database import DatabaseManager, atomic, connect, get_connection
from fintrack.core.audit import AuditLogger, AuditLogEntry
from fintrack.core.security import require_user_context, check_organization
from fintrack.core.config import Settings, RateSettings, ImportSettings, load_settings
from fintrack.core.balance import (
    BalanceReconciler,
    TransactionCreated,
    TransactionUpdated,
    TransactionDeleted,
    balance_delta,
    signed_amount,
)
from fintrack.core.assets import AssetService, normalize_currency
from fintrack.core.transaction_service import TransactionService
from fintrack.core.exceptions import (
    FintrackError,
    DatabaseError,
    PersistenceConflictError,
    ValidationError,
    UserContextError,
    MalformedSourceError,
    RowRejectedError,
    AssetNotFoundError,
    ForbiddenError,
    TransactionNotFoundError,
    ImportNotFoundError,
    RateProviderError,
    RatesUnavailableError,
)
from fintrack.core.models import (
    Asset,
    AssetType,
    Transaction,
    TransactionType,
    Valuation,
    ImportHistory,
    ImportRowError,
    ImportStatus,
    to_money,
)

__all__ = [
    # Database & Infrastructure
    "DatabaseManager",
    "atomic",
    "connect",
    "get_connection",
    "AuditLogger",
    "AuditLogEntry",
    "require_user_context",
    "check_organization",
    "Settings",
    "RateSettings",
    "ImportSettings",
    "load_settings",
    # Balances
    "BalanceReconciler",
    "TransactionCreated",
    "TransactionUpdated",
    "TransactionDeleted",
    "balance_delta",
    "signed_amount",
    # Services
    "AssetService",
    "normalize_currency",
    "TransactionService",
    # Exceptions
    "FintrackError",
    "DatabaseError",
    "PersistenceConflictError",
    "ValidationError",
    "UserContextError",
    "MalformedSourceError",
    "RowRejectedError",
    "AssetNotFoundError",
    "ForbiddenError",
    "TransactionNotFoundError",
    "ImportNotFoundError",
    "RateProviderError",
    "RatesUnavailableError",
    # Models
    "Asset",
    "AssetType",
    "Transaction",
    "TransactionType",
    "Valuation",
    "ImportHistory",
    "ImportRowError",
    "ImportStatus",
    "to_money",
]
