"""
Budget conversion service.

Expresses a budget whose line items are in several currencies in one
reporting currency: per-item converted amounts, native totals per currency,
the converted total and what is left of the converted monthly income.

Results are derived and never persisted. No rounding is applied; rounding
is a presentation concern.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from fintrack.services.currency.rate_cache import ExchangeRateCache

logger = logging.getLogger(__name__)

DEFAULT_REPORTING_CURRENCY = "AUD"


def _to_decimal(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


@dataclass
class BudgetItem:
    """One native-currency budget line."""

    amount: Decimal
    currency: str
    category: str
    name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BudgetItem":
        return cls(
            amount=_to_decimal(data["amount"]),
            currency=str(data["currency"]).upper(),
            category=data.get("category", "Other"),
            name=data.get("name"),
        )


@dataclass
class ConvertedBudgetItem:
    """A budget line with its conversion into the reporting currency."""

    item: BudgetItem
    converted_amount: Decimal
    converted_currency: str
    exchange_rate: float

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "category": self.item.category,
            "amount": str(self.item.amount),
            "nativeAmount": str(self.item.amount),
            "nativeCurrency": self.item.currency,
            "convertedAmount": str(self.converted_amount),
            "convertedCurrency": self.converted_currency,
            "exchangeRate": self.exchange_rate,
        }
        if self.item.name:
            result["name"] = self.item.name
        return result


@dataclass
class BudgetSummary:
    """Aggregate view of a budget in one reporting currency."""

    items: List[ConvertedBudgetItem]
    total_native: Dict[str, Decimal]
    total_converted: Decimal
    total_currency: str
    monthly_income: Decimal
    income_currency: str
    monthly_income_converted: Decimal
    remaining: Decimal
    budget: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        budget = dict(self.budget)
        budget.update({
            "monthlyIncome": str(self.monthly_income),
            "incomeCurrency": self.income_currency,
            "monthlyIncomeConverted": str(self.monthly_income_converted),
        })
        return {
            "budget": budget,
            "items": [item.to_dict() for item in self.items],
            "totalNative": {code: str(total) for code, total in self.total_native.items()},
            "totalConverted": str(self.total_converted),
            "totalCurrency": self.total_currency,
            "remaining": str(self.remaining),
        }


class BudgetConversionAggregator:
    """
    Convert budget items and income into one reporting currency.

    Usage:
        aggregator = BudgetConversionAggregator(rate_cache)
        summary = aggregator.summarize(
            items=[BudgetItem(Decimal("500"), "AUD", "Rent"),
                   BudgetItem(Decimal("300000"), "MNT", "Family")],
            monthly_income=Decimal("5000"),
            income_currency="AUD",
            reporting_currency="AUD",
        )
        summary.remaining
    """

    def __init__(self, rate_cache: ExchangeRateCache):
        self.rates = rate_cache

    def summarize(
        self,
        items: Iterable[BudgetItem],
        monthly_income: Decimal,
        income_currency: str,
        reporting_currency: str = DEFAULT_REPORTING_CURRENCY,
        budget: Dict[str, Any] = None,
    ) -> BudgetSummary:
        """
        Build the budget summary.

        Each distinct (currency, reporting currency) pair is looked up once.

        Raises:
            RatesUnavailableError: If any needed rate cannot be served
        """
        target = reporting_currency.upper()
        pair_rates: Dict[Tuple[str, str], float] = {}

        def rate_for(currency: str) -> float:
            pair = (currency.upper(), target)
            if pair not in pair_rates:
                pair_rates[pair] = self.rates.get_rate(pair[0], target)
            return pair_rates[pair]

        converted_items = []
        total_native: Dict[str, Decimal] = {}
        total_converted = Decimal("0")

        for item in items:
            rate = rate_for(item.currency)
            converted = _to_decimal(item.amount) * Decimal(repr(rate))
            converted_items.append(ConvertedBudgetItem(item, converted, target, rate))

            code = item.currency.upper()
            total_native[code] = total_native.get(code, Decimal("0")) + _to_decimal(item.amount)
            total_converted += converted

        income = _to_decimal(monthly_income)
        income_converted = income * Decimal(repr(rate_for(income_currency)))

        logger.debug(
            f"Budget summarized in {target}: {len(converted_items)} items, "
            f"{len(pair_rates)} rate lookups"
        )

        return BudgetSummary(
            items=converted_items,
            total_native=total_native,
            total_converted=total_converted,
            total_currency=target,
            monthly_income=income,
            income_currency=income_currency.upper(),
            monthly_income_converted=income_converted,
            remaining=income_converted - total_converted,
            budget=budget or {},
        )
