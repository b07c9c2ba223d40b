"""
Custom exceptions for the fintrack core module.

All fintrack-specific exceptions inherit from FintrackError for easy catching.
"""


class FintrackError(Exception):
    """Base exception for all fintrack errors."""

    def __init__(self, message: str, code: str = None):
        super().__init__(message)
        self.message = message
        self.code = code


class DatabaseError(FintrackError):
    """Database operation errors."""

    def __init__(self, message: str, code: str = "DB_ERROR"):
        super().__init__(message, code)


class PersistenceConflictError(DatabaseError):
    """
    Raised when a write could not acquire the database lock.

    The unit of work must be re-run from a fresh read, never discarded.
    """

    def __init__(self, message: str = "Concurrent write conflict", code: str = "PERSISTENCE_CONFLICT"):
        super().__init__(message, code)


class ValidationError(FintrackError):
    """Data validation errors."""

    def __init__(self, message: str, field: str = None, code: str = "VALIDATION_ERROR"):
        super().__init__(message, code)
        self.field = field


class UserContextError(FintrackError):
    """Raised when user or organization context is missing."""

    def __init__(self, message: str = "User context required", code: str = "USER_CONTEXT_ERROR"):
        super().__init__(message, code)


class MalformedSourceError(FintrackError):
    """Raised when an uploaded file cannot be read as a table."""

    def __init__(self, message: str, code: str = "MALFORMED_SOURCE"):
        super().__init__(message, code)


class RowRejectedError(FintrackError):
    """Raised when a single imported row fails validation."""

    def __init__(self, reason: str, code: str = "ROW_REJECTED"):
        super().__init__(reason, code)
        self.reason = reason


class AssetNotFoundError(FintrackError):
    """Raised when an asset is not found."""

    def __init__(self, asset_id, code: str = "ASSET_NOT_FOUND"):
        super().__init__(f"Asset not found: {asset_id}", code)
        self.asset_id = asset_id


class ForbiddenError(FintrackError):
    """Raised when the caller may not act on a record."""

    def __init__(self, message: str = "Access denied", code: str = "FORBIDDEN"):
        super().__init__(message, code)


class TransactionNotFoundError(FintrackError):
    """Raised when a transaction is not found."""

    def __init__(self, transaction_id, code: str = "TRANSACTION_NOT_FOUND"):
        super().__init__(f"Transaction not found: {transaction_id}", code)
        self.transaction_id = transaction_id


class ImportNotFoundError(FintrackError):
    """Raised when an import history record is not found."""

    def __init__(self, import_id, code: str = "IMPORT_NOT_FOUND"):
        super().__init__(f"Import not found: {import_id}", code)
        self.import_id = import_id


class RateProviderError(FintrackError):
    """Raised when the external rate provider call fails or returns garbage."""

    def __init__(self, message: str, base_currency: str = None, code: str = "RATE_PROVIDER_ERROR"):
        super().__init__(message, code)
        self.base_currency = base_currency


class RatesUnavailableError(FintrackError):
    """Raised when no live or cached exchange rates can be served."""

    def __init__(
        self,
        base_currency: str,
        target_currency: str = None,
        message: str = None,
        code: str = "RATES_UNAVAILABLE"
    ):
        if message is None:
            if target_currency:
                message = f"Exchange rate not available for {base_currency} to {target_currency}"
            else:
                message = (
                    f"Failed to fetch exchange rates for {base_currency} "
                    f"and no cached rates available"
                )
        super().__init__(message, code)
        self.base_currency = base_currency
        self.target_currency = target_currency
