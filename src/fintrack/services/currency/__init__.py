"""Currency services module.

Provides exchange rates for presenting multi-currency amounts in one
reporting currency. Rates come from an open.exchangerate-api.com compatible
API and are cached per base currency and day.
"""

from .rate_provider import ExchangeRateProvider, DEFAULT_API_URL
from .rate_cache import ExchangeRateCache, SUPPORTED_CURRENCIES, cache_key, utc_now

__all__ = [
    "ExchangeRateProvider",
    "ExchangeRateCache",
    "DEFAULT_API_URL",
    "SUPPORTED_CURRENCIES",
    "cache_key",
    "utc_now",
]
