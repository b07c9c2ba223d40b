"""Services module for fintrack business logic.

Provides services for:
- Imports: Preview and commit of CSV/Excel bank exports
- Currency: Exchange rate fetching, caching and conversion
- Budget: Multi-currency budget summaries in one reporting currency
"""

from .imports import ImportService, ImportOptions, ImportResult, UploadedFile, ImportHistoryStore
from .currency import ExchangeRateCache, ExchangeRateProvider
from .budget_service import (
    BudgetConversionAggregator,
    BudgetItem,
    BudgetSummary,
    ConvertedBudgetItem,
)

__all__ = [
    # Imports
    "ImportService",
    "ImportOptions",
    "ImportResult",
    "UploadedFile",
    "ImportHistoryStore",
    # Currency
    "ExchangeRateCache",
    "ExchangeRateProvider",
    # Budget
    "BudgetConversionAggregator",
    "BudgetItem",
    "BudgetSummary",
    "ConvertedBudgetItem",
]
