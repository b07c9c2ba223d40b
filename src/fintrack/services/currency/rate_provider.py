"""Exchange rate provider over HTTP.

Fetches the full rate table for one base currency from an
open.exchangerate-api.com compatible endpoint:

    GET {api_url}/latest/{BASE}  ->  {"rates": {"USD": 0.66, ...}, ...}

Every failure mode (timeout, transport error, non-2xx status, malformed
body) is raised as RateProviderError so callers can fall back uniformly.
"""

import logging
import math
from typing import Dict, Optional

import httpx

from fintrack.core.exceptions import RateProviderError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://open.exchangerate-api.com/v6"
DEFAULT_TIMEOUT_SECONDS = 5.0


def _parse_rates(payload, base_currency: str) -> Dict[str, float]:
    """Validate a provider response body and return {CODE: rate}."""
    if not isinstance(payload, dict) or not isinstance(payload.get("rates"), dict):
        raise RateProviderError("Invalid response from exchange rate API", base_currency)

    rates = {}
    for code, value in payload["rates"].items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise RateProviderError(f"Invalid rate for {code}: {value!r}", base_currency)
        if not math.isfinite(value) or value <= 0:
            raise RateProviderError(f"Invalid rate for {code}: {value!r}", base_currency)
        rates[str(code).upper()] = float(value)

    if not rates:
        raise RateProviderError("Exchange rate API returned an empty rate table", base_currency)
    return rates


class ExchangeRateProvider:
    """
    Client for the external rate API.

    Usage:
        provider = ExchangeRateProvider(timeout=5.0)
        rates = provider.fetch_rates("AUD")   # {"USD": 0.66, "MNT": 2270.5, ...}
    """

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[httpx.Client] = None,
    ):
        """
        Initialize provider.

        Args:
            api_url: Base URL of the rate API (without /latest)
            timeout: Request timeout in seconds
            client: Shared httpx client; a short-lived one is used per call when None
        """
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    def _get(self, url: str) -> httpx.Response:
        if self._client is not None:
            return self._client.get(url, timeout=self.timeout)
        with httpx.Client(timeout=self.timeout) as client:
            return client.get(url)

    def fetch_rates(self, base_currency: str) -> Dict[str, float]:
        """
        Fetch the rate table for a base currency.

        Args:
            base_currency: ISO 4217 code

        Returns:
            {currency code: units of that currency per 1 base unit}

        Raises:
            RateProviderError: On timeout, HTTP error or malformed response
        """
        base = base_currency.upper()
        url = f"{self.api_url}/latest/{base}"

        try:
            response = self._get(url)
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as e:
            raise RateProviderError(f"Timed out fetching rates for {base} after {self.timeout}s", base) from e
        except httpx.HTTPStatusError as e:
            raise RateProviderError(
                f"Rate API returned HTTP {e.response.status_code} for {base}", base
            ) from e
        except httpx.HTTPError as e:
            raise RateProviderError(f"Rate API request failed for {base}: {e}", base) from e
        except ValueError as e:
            raise RateProviderError(f"Rate API returned invalid JSON for {base}", base) from e

        rates = _parse_rates(payload, base)
        logger.info(f"Fetched {len(rates)} exchange rates for {base}")
        return rates

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
