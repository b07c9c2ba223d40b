"""
Shared pytest fixtures for fintrack tests.

Provides database connections, sample assets, a fixed clock and a fake
exchange rate provider.
"""

import io
import pytest
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

from openpyxl import Workbook

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from fintrack.core.database import DatabaseManager
from fintrack.core.assets import AssetService
from fintrack.core.exceptions import RateProviderError
from fintrack.core.transaction_service import TransactionService
from fintrack.services.currency.rate_cache import ExchangeRateCache


USER_ID = "user-1"
ORG_ID = "org-1"
OTHER_ORG_ID = "org-2"

# Consistent tables: rate(B, A) == 1 / rate(A, B)
SAMPLE_RATES = {
    "AUD": {"AUD": 1.0, "USD": 0.625, "MNT": 2500.0, "EUR": 0.5},
    "USD": {"USD": 1.0, "AUD": 1.6, "MNT": 4000.0, "EUR": 0.8},
    "MNT": {"MNT": 1.0, "AUD": 0.0004, "USD": 0.00025},
}


class FixedClock:
    """Injectable UTC clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeRateProvider:
    """In-memory stand-in for ExchangeRateProvider that records calls."""

    def __init__(self, tables=None):
        self.tables = {k: dict(v) for k, v in (tables or SAMPLE_RATES).items()}
        self.fail = False
        self.calls = []

    def fetch_rates(self, base_currency: str):
        self.calls.append(base_currency)
        if self.fail:
            raise RateProviderError("provider unavailable", base_currency)
        if base_currency not in self.tables:
            raise RateProviderError(f"unknown base {base_currency}", base_currency)
        return dict(self.tables[base_currency])


@pytest.fixture
def db_manager():
    """Provide a fresh DatabaseManager instance for each test."""
    # Reset singleton to ensure clean state
    DatabaseManager.reset_instance()
    manager = DatabaseManager()
    yield manager
    # Cleanup
    manager.close()
    DatabaseManager.reset_instance()


@pytest.fixture
def db_connection(db_manager):
    """Provide an initialized in-memory database connection."""
    conn = db_manager.init(":memory:")
    yield conn
    # Connection is closed by db_manager fixture


@pytest.fixture
def asset_service(db_connection):
    return AssetService(db_connection)


@pytest.fixture
def transaction_service(db_connection):
    return TransactionService(db_connection, retry_delay=0)


@pytest.fixture
def sample_asset(asset_service):
    """An AUD cash asset with an opening balance of 1000."""
    return asset_service.create(
        user_id=USER_ID,
        organization_id=ORG_ID,
        name="Everyday Account",
        currency="AUD",
        amount=Decimal("1000"),
    )


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def rate_provider():
    return FakeRateProvider()


@pytest.fixture
def rate_cache(db_connection, rate_provider, clock):
    return ExchangeRateCache(db_connection, rate_provider, clock=clock)


def asset_amount(conn, asset_id) -> Decimal:
    """Stored balance of an asset, read straight from the table."""
    row = conn.execute("SELECT amount FROM assets WHERE id = ?", (asset_id,)).fetchone()
    return Decimal(row["amount"])


def make_csv(*lines: str) -> bytes:
    return ("\n".join(lines) + "\n").encode("utf-8")


def make_xlsx(sheets) -> bytes:
    """Build an .xlsx workbook in memory from {sheet name: [row, ...]}."""
    workbook = Workbook()
    workbook.remove(workbook.active)
    for name, rows in sheets.items():
        sheet = workbook.create_sheet(name)
        for row in rows:
            sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()
