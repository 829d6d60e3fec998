"""Exchange-rate lookup against a third-party rates API."""
import logging
from typing import Dict, Optional

import httpx

import settings
from errors import DependencyError
from pricing import money

logger = logging.getLogger(__name__)


class RateClient:
    def __init__(self, base_url: str = settings.CURRENCY_API_URL, timeout: float = settings.CURRENCY_TIMEOUT,
                 transport: Optional[httpx.BaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def rates(self, base: str = "USD") -> Dict[str, float]:
        """Return the rate table for ``base``; raises DependencyError when the service fails."""
        base = base.upper()
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.get(f"{self.base_url}/{base}")
                response.raise_for_status()
                return response.json()["rates"]
        except (httpx.HTTPError, ValueError, KeyError) as e:
            raise DependencyError("currency", str(e) or type(e).__name__) from e

    def convert(self, amount: float, from_currency: str, to_currency: str) -> float:
        """Convert ``amount``, falling back to the unconverted amount on any failure."""
        from_currency = from_currency.upper()
        to_currency = to_currency.upper()
        if from_currency == to_currency:
            return amount
        try:
            rate = self.rates(from_currency).get(to_currency)
        except DependencyError as e:
            logger.error("Currency conversion error: %s", e)
            return amount
        if rate is None:
            logger.warning("No %s rate for %s; returning unconverted amount", to_currency, from_currency)
            return amount
        try:
            return money(amount * float(rate))
        except (TypeError, ValueError):
            logger.warning("Malformed %s rate %r; returning unconverted amount", to_currency, rate)
            return amount


_rate_client: Optional[RateClient] = None


def get_rate_client() -> RateClient:
    global _rate_client
    if _rate_client is None:
        _rate_client = RateClient()
    return _rate_client
