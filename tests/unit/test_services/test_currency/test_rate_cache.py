"""
Unit tests for ExchangeRateCache.

Uses the fixed clock and fake provider from conftest; the clock decides the
calendar day a cache entry belongs to.
"""

import threading
import time
from datetime import datetime
from decimal import Decimal

import pytest

from conftest import FakeRateProvider, SAMPLE_RATES
from fintrack.core.exceptions import RatesUnavailableError
from fintrack.services.currency.rate_cache import ExchangeRateCache, cache_key


def cache_keys(conn):
    return [row["cache_key"] for row in conn.execute("SELECT cache_key FROM exchange_rate_cache ORDER BY cache_key")]


class TestGetRates:
    """Tests for cache hits, misses and fallback."""

    def test_cache_key_format(self):
        assert cache_key("aud", datetime(2025, 1, 15).date()) == "exchange_rates:AUD:2025-01-15"

    def test_miss_fetches_and_stores(self, rate_cache, rate_provider, db_connection):
        assert rate_cache.get_rates("aud") == SAMPLE_RATES["AUD"]
        assert rate_provider.calls == ["AUD"]
        assert cache_keys(db_connection) == ["exchange_rates:AUD:2025-01-15"]

    def test_hit_does_not_fetch(self, rate_cache, rate_provider, clock):
        rate_cache.get_rates("AUD")
        clock.advance(hours=10)
        rate_cache.get_rates("AUD")
        assert rate_provider.calls == ["AUD"]

    def test_new_day_fetches_again(self, rate_cache, rate_provider, db_connection, clock):
        rate_cache.get_rates("AUD")
        clock.advance(days=1)
        rate_cache.get_rates("AUD")

        assert rate_provider.calls == ["AUD", "AUD"]
        assert cache_keys(db_connection) == [
            "exchange_rates:AUD:2025-01-15",
            "exchange_rates:AUD:2025-01-16",
        ]

    def test_falls_back_to_yesterday(self, rate_cache, rate_provider, db_connection, clock):
        rate_cache.get_rates("AUD")
        clock.advance(days=1)
        rate_provider.fail = True

        assert rate_cache.get_rates("AUD") == SAMPLE_RATES["AUD"]
        assert cache_keys(db_connection) == ["exchange_rates:AUD:2025-01-15"]
        assert rate_cache.get_cache_info("AUD") == {"cached": False}

    def test_older_entries_are_not_used(self, rate_cache, rate_provider, clock):
        rate_cache.get_rates("AUD")
        clock.advance(days=2)
        rate_provider.fail = True

        with pytest.raises(RatesUnavailableError) as exc_info:
            rate_cache.get_rates("AUD")
        assert exc_info.value.base_currency == "AUD"

    def test_unavailable_without_cache(self, rate_cache, rate_provider):
        rate_provider.fail = True
        with pytest.raises(RatesUnavailableError, match="no cached rates"):
            rate_cache.get_rates("USD")

    def test_expired_entry_is_refetched(self, db_connection, rate_provider, clock):
        cache = ExchangeRateCache(db_connection, rate_provider, clock=clock, ttl_hours=1)
        cache.get_rates("AUD")
        clock.advance(hours=2)
        cache.get_rates("AUD")
        assert rate_provider.calls == ["AUD", "AUD"]

    def test_naive_clock_is_treated_as_utc(self, db_connection, rate_provider):
        cache = ExchangeRateCache(db_connection, rate_provider, clock=lambda: datetime(2025, 3, 1, 23, 30))
        cache.get_rates("USD")
        assert cache_keys(db_connection) == ["exchange_rates:USD:2025-03-01"]

    def test_concurrent_misses_share_one_fetch(self, db_connection, clock):
        class SlowProvider(FakeRateProvider):
            def fetch_rates(self, base_currency):
                time.sleep(0.05)
                return super().fetch_rates(base_currency)

        provider = SlowProvider()
        cache = ExchangeRateCache(db_connection, provider, clock=clock)
        results = []

        def worker():
            results.append(cache.get_rates("USD"))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert provider.calls == ["USD"]
        assert results == [SAMPLE_RATES["USD"]] * 8


class TestConversion:
    """Tests for rate lookups and conversions."""

    def test_same_currency_needs_no_rates(self, rate_cache, rate_provider):
        assert rate_cache.get_rate("aud", "AUD") == 1.0
        assert rate_cache.convert(Decimal("12.34"), "NZD", "nzd") == Decimal("12.34")
        assert rate_provider.calls == []

    def test_get_rate(self, rate_cache):
        assert rate_cache.get_rate("MNT", "AUD") == 0.0004
        assert rate_cache.get_rate("usd", "aud") == 1.6

    def test_missing_target(self, rate_cache):
        with pytest.raises(RatesUnavailableError) as exc_info:
            rate_cache.get_rate("MNT", "EUR")
        assert exc_info.value.target_currency == "EUR"
        assert "MNT to EUR" in exc_info.value.message

    def test_convert_is_unrounded(self, rate_cache):
        assert rate_cache.convert(Decimal("1000000"), "MNT", "AUD") == Decimal("400")
        assert rate_cache.convert("0.01", "AUD", "USD") == Decimal("0.00625")

    @pytest.mark.parametrize("source,target", [
        ("AUD", "USD"),
        ("USD", "AUD"),
        ("AUD", "MNT"),
        ("MNT", "USD"),
    ])
    @pytest.mark.parametrize("amount", ["0.01", "12.34", "1000000"])
    def test_round_trip_returns_original_amount(self, rate_cache, source, target, amount):
        original = Decimal(amount)
        there = rate_cache.convert(original, source, target)
        back = rate_cache.convert(there, target, source)

        assert abs(back - original) <= original * Decimal("1e-9")

    def test_convert_many_groups_by_currency(self, rate_cache, rate_provider):
        total = rate_cache.convert_many(
            [
                (100, "USD"),
                {"amount": "50", "currency": "aud"},
                (Decimal("1000000"), "MNT"),
                (20, "usd"),
            ],
            "AUD",
        )
        assert total == Decimal("642")
        assert rate_provider.calls == ["USD", "MNT"]

    def test_convert_many_empty(self, rate_cache):
        assert rate_cache.convert_many([], "AUD") == Decimal("0")

    def test_conversion_details(self, rate_cache):
        details = rate_cache.get_conversion_details(100, "USD", "AUD")
        assert details == {"convertedAmount": Decimal("160"), "exchangeRate": 1.6}


class TestRefreshAndInfo:
    """Tests for refresh_rates and get_cache_info."""

    def test_refresh_reports_per_currency(self, rate_cache):
        assert rate_cache.refresh_rates(["aud", "XXX"]) == {"AUD": True, "XXX": False}

    def test_refresh_defaults_to_supported(self, db_connection, rate_provider, clock):
        cache = ExchangeRateCache(db_connection, rate_provider, clock=clock, supported_currencies=["AUD", "USD"])
        assert cache.refresh_rates() == {"AUD": True, "USD": True}
        assert rate_provider.calls == ["AUD", "USD"]

    def test_cache_info(self, rate_cache, clock):
        assert rate_cache.get_cache_info("MNT") == {"cached": False}

        rate_cache.get_rates("MNT")
        clock.advance(hours=3, minutes=20)

        assert rate_cache.get_cache_info("mnt") == {
            "cached": True,
            "ageHours": 3,
            "age": "3 hours ago",
            "rates": SAMPLE_RATES["MNT"],
        }
