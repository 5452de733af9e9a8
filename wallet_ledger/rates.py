"""
Exchange Rate Source Module

REST client for the currency rate service used by balance reads.
A rate lookup either yields a positive Decimal rate or raises
ConversionUnavailableError; it never falls back to a guessed rate.
"""

import time
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, Optional

import httpx

from .errors import ConversionUnavailableError, LedgerError
from .logging_config import get_logger
from .money import BASE_CURRENCY, to_decimal

logger = get_logger("wallet.rates")


class RateSource(ABC):
    """Provider of base-to-target exchange rates"""

    @abstractmethod
    def get_rate(self, base: str, target: str) -> Decimal:
        """
        Rate such that ``amount_in_base * rate == amount_in_target``

        Raises:
            ConversionUnavailableError: If no usable rate can be obtained
        """
        pass

    def close(self) -> None:
        pass


class CurrencyApiRateSource(RateSource):
    """REST client for currencyapi.com style latest-rate endpoints"""

    def __init__(
        self,
        url: str = "https://api.currencyapi.com/v3/latest",
        api_key: Optional[str] = None,
        timeout: float = 2.0  # Balance reads must not hang on a slow rate service
    ):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self._client = httpx.Client(timeout=timeout)

    def get_rate(self, base: str, target: str) -> Decimal:
        params = {"base_currency": base, "currencies": target}
        if self.api_key:
            params["apikey"] = self.api_key

        start = time.time()
        try:
            response = self._client.get(self.url, params=params)
        except httpx.HTTPError as e:
            logger.error(f"Rate source unreachable: {e}")
            raise ConversionUnavailableError(f"Rate source unreachable: {e}") from e

        latency_ms = (time.time() - start) * 1000

        if response.status_code != 200:
            logger.warning(f"Rate source returned {response.status_code}: {response.text}")
            raise ConversionUnavailableError(f"Rate source returned {response.status_code}")

        try:
            # Reply shape: {"data": {"USD": {"code": "USD", "value": 0.012}}}
            value = response.json()["data"][target]["value"]
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Malformed rate reply for {base}->{target}: {e}")
            raise ConversionUnavailableError(f"No rate available for {target}") from e

        rate = _checked_rate(value, target)
        logger.debug(f"Rate {base}->{target} = {rate} ({latency_ms:.1f}ms)")
        return rate

    def close(self):
        """Close the HTTP client"""
        self._client.close()


class StaticRateSource(RateSource):
    """Fixed rate table for testing and offline use"""

    def __init__(self, rates: Optional[Dict[str, object]] = None, base: str = BASE_CURRENCY):
        self.base = base
        self.rates = dict(rates or {})
        self.calls = 0

    def get_rate(self, base: str, target: str) -> Decimal:
        self.calls += 1
        if base != self.base or target not in self.rates:
            raise ConversionUnavailableError(f"No rate available for {target}")
        return _checked_rate(self.rates[target], target)


def _checked_rate(value, target: str) -> Decimal:
    """Coerce a reply value to a usable rate"""
    try:
        rate = to_decimal(value)
    except LedgerError as e:
        raise ConversionUnavailableError(f"Invalid rate for {target}") from e

    if rate <= 0:
        logger.warning(f"Non-positive rate for {target}: {rate}")
        raise ConversionUnavailableError(f"Invalid rate for {target}")
    return rate
