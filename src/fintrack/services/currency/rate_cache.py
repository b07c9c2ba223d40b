"""Day-keyed exchange rate cache with yesterday fallback.

Rate tables are cached per (base currency, calendar day) under the key
"exchange_rates:{BASE}:{YYYY-MM-DD}" with a 24 hour time to live. The day is
taken from the cache's own UTC clock.

Lookup order for get_rates(base):
1. Today's entry, if present and not expired
2. A live fetch from the provider, stored as today's entry
3. If the fetch fails: yesterday's entry for the same base
4. Otherwise RatesUnavailableError; a rate is never invented

Entries are written once and never modified. Concurrent misses on one key
share a single provider fetch.
"""

import json
import logging
import threading
from collections import OrderedDict
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union
import sqlite3

from fintrack.core.database import atomic
from fintrack.core.exceptions import RateProviderError, RatesUnavailableError
from fintrack.services.currency.rate_provider import ExchangeRateProvider

logger = logging.getLogger(__name__)

CACHE_PREFIX = "exchange_rates"
DEFAULT_TTL_HOURS = 24

SUPPORTED_CURRENCIES = ["AUD", "MNT", "USD", "EUR", "GBP", "JPY", "CNY", "KRW", "THB", "VND"]

Clock = Callable[[], datetime]
AmountItem = Union[Tuple[Any, str], Dict[str, Any]]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def cache_key(base_currency: str, day: date) -> str:
    """Cache key for one base currency on one calendar day."""
    return f"{CACHE_PREFIX}:{base_currency.upper()}:{day.isoformat()}"


def _as_utc(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _to_decimal(amount: Any) -> Decimal:
    return amount if isinstance(amount, Decimal) else Decimal(str(amount))


class ExchangeRateCache:
    """
    Exchange rates with caching, fallback and conversion helpers.

    Usage:
        cache = ExchangeRateCache(conn, ExchangeRateProvider())

        cache.get_rate("MNT", "AUD")               # 0.000416
        cache.convert(Decimal("1000000"), "MNT", "AUD")
        cache.convert_many([(100, "USD"), (50, "AUD")], "AUD")
    """

    def __init__(
        self,
        db_connection: sqlite3.Connection,
        provider: ExchangeRateProvider = None,
        clock: Clock = None,
        ttl_hours: int = DEFAULT_TTL_HOURS,
        supported_currencies: List[str] = None,
    ):
        """
        Initialize the cache.

        Args:
            db_connection: SQLite database connection holding exchange_rate_cache
            provider: Source of live rate tables
            clock: Returns the current aware UTC datetime (injectable for tests)
            ttl_hours: Lifetime of a cache entry
            supported_currencies: Base currencies warmed by refresh_rates()
        """
        self.conn = db_connection
        self.provider = provider or ExchangeRateProvider()
        self.clock = clock or utc_now
        self.ttl = timedelta(hours=ttl_hours)
        self.supported_currencies = list(supported_currencies or SUPPORTED_CURRENCIES)

        self._key_locks: Dict[str, threading.Lock] = {}
        self._key_locks_guard = threading.Lock()

    def _now(self) -> datetime:
        now = self.clock()
        return now if now.tzinfo else now.replace(tzinfo=timezone.utc)

    def _lock_for(self, key: str) -> threading.Lock:
        with self._key_locks_guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[key] = lock
            return lock

    def _read(self, key: str, now: datetime = None) -> Optional[Dict[str, float]]:
        """Stored table for a key; when now is given, expired entries count as missing."""
        row = self.conn.execute(
            "SELECT payload, expires_at FROM exchange_rate_cache WHERE cache_key = ?",
            (key,),
        ).fetchone()
        if row is None:
            return None
        if now is not None and _as_utc(row["expires_at"]) <= now:
            return None
        return json.loads(row["payload"])

    def _write(self, key: str, base: str, day: date, rates: Dict[str, float], now: datetime) -> None:
        with atomic(self.conn):
            self.conn.execute(
                """
                INSERT OR IGNORE INTO exchange_rate_cache
                (cache_key, base_currency, rate_day, payload, created_at, expires_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (key, base, day.isoformat(), json.dumps(rates), now.isoformat(), (now + self.ttl).isoformat()),
            )

    def get_rates(self, base_currency: str) -> Dict[str, float]:
        """
        Full rate table for a base currency.

        Raises:
            RatesUnavailableError: If the fetch fails and yesterday is not cached either
        """
        base = base_currency.upper()
        now = self._now()
        today = now.date()
        key = cache_key(base, today)

        cached = self._read(key, now)
        if cached is not None:
            logger.debug(f"Rate cache hit for {key}")
            return cached

        with self._lock_for(key):
            # Another caller may have fetched while this one waited
            cached = self._read(key, now)
            if cached is not None:
                return cached

            try:
                rates = self.provider.fetch_rates(base)
            except RateProviderError as e:
                logger.error(f"Error fetching exchange rates for {base}: {e}")
                yesterday_key = cache_key(base, today - timedelta(days=1))
                fallback = self._read(yesterday_key)
                if fallback is not None:
                    logger.warning(f"Using yesterday's exchange rates for {base} as fallback")
                    return fallback
                raise RatesUnavailableError(base) from e

            self._write(key, base, today, rates, now)
            return rates

    def get_rate(self, from_currency: str, to_currency: str) -> float:
        """
        Multiplicative rate from one currency to another (1.0 for the same currency).

        Raises:
            RatesUnavailableError: If no table is available or it lacks to_currency
        """
        source = from_currency.upper()
        target = to_currency.upper()
        if source == target:
            return 1.0

        rates = self.get_rates(source)
        rate = rates.get(target)
        if rate is None:
            raise RatesUnavailableError(source, target)
        return rate

    def convert(self, amount: Any, from_currency: str, to_currency: str) -> Decimal:
        """amount x rate, unrounded."""
        rate = self.get_rate(from_currency, to_currency)
        return _to_decimal(amount) * Decimal(repr(rate))

    def convert_many(self, items: Iterable[AmountItem], to_currency: str) -> Decimal:
        """
        Sum of many amounts converted into one currency.

        Items are (amount, currency) pairs or {"amount", "currency"} dicts.
        Each distinct source currency is looked up once.
        """
        totals: "OrderedDict[str, Decimal]" = OrderedDict()
        for item in items:
            if isinstance(item, dict):
                amount, currency = item["amount"], item["currency"]
            else:
                amount, currency = item
            code = currency.upper()
            totals[code] = totals.get(code, Decimal("0")) + _to_decimal(amount)

        total = Decimal("0")
        for code, native_total in totals.items():
            total += native_total * Decimal(repr(self.get_rate(code, to_currency)))
        return total

    def get_conversion_details(self, amount: Any, from_currency: str, to_currency: str) -> Dict[str, Any]:
        """Converted amount together with the rate that produced it."""
        rate = self.get_rate(from_currency, to_currency)
        return {
            "convertedAmount": _to_decimal(amount) * Decimal(repr(rate)),
            "exchangeRate": rate,
        }

    def refresh_rates(self, currencies: List[str] = None) -> Dict[str, bool]:
        """
        Warm today's entry for each base currency.

        Returns:
            {currency: True if rates are now available}
        """
        results = {}
        logger.info("Starting exchange rate refresh")
        for currency in currencies or self.supported_currencies:
            try:
                self.get_rates(currency)
                results[currency.upper()] = True
                logger.info(f"Refreshed rates for {currency}")
            except RatesUnavailableError as e:
                results[currency.upper()] = False
                logger.error(f"Failed to refresh rates for {currency}: {e}")
        logger.info("Exchange rate refresh complete")
        return results

    def get_cache_info(self, base_currency: str) -> Dict[str, Any]:
        """Whether today's entry exists for a base, how old it is, and its table."""
        base = base_currency.upper()
        now = self._now()
        row = self.conn.execute(
            "SELECT payload, created_at, expires_at FROM exchange_rate_cache WHERE cache_key = ?",
            (cache_key(base, now.date()),),
        ).fetchone()
        if row is None or _as_utc(row["expires_at"]) <= now:
            return {"cached": False}

        age_hours = int((now - _as_utc(row["created_at"])).total_seconds() // 3600)
        return {
            "cached": True,
            "ageHours": age_hours,
            "age": f"{age_hours} hours ago",
            "rates": json.loads(row["payload"]),
        }
