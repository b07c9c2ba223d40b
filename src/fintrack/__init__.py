"""fintrack - transaction ingestion and multi-currency ledger core."""

__version__ = "0.1.0"
