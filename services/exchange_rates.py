"""
Currency conversion for listing prices.

USD is identity and AED uses its fixed peg; every other currency is looked
up from the Frankfurter API and cached per currency and date. Lookups never
fail a listing: an unavailable rate leaves the USD fields empty.
"""

import logging
from datetime import date
from typing import Dict, Optional, Tuple

import httpx

from core.config import settings
from core.exceptions import ExchangeRateError

logger = logging.getLogger(__name__)

AED_PER_USD = 3.6725


class ExchangeRateService:
    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, base_url: Optional[str] = None):
        self.http_client = http_client
        self.base_url = (base_url or settings.EXCHANGE_RATE_API_URL).rstrip("/")
        self._cache: Dict[str, float] = {}

    async def _fetch_rate(self, code: str, on_date: date) -> float:
        url = f"{self.base_url}/{on_date.isoformat()}"
        params = {"from": code, "to": "USD"}
        try:
            if self.http_client is not None:
                response = await self.http_client.get(url, params=params, timeout=settings.EXCHANGE_RATE_TIMEOUT_SECONDS)
            else:
                async with httpx.AsyncClient(timeout=settings.EXCHANGE_RATE_TIMEOUT_SECONDS) as client:
                    response = await client.get(url, params=params)
            response.raise_for_status()
            return float(response.json()["rates"]["USD"])
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            raise ExchangeRateError(
                f"Exchange rate lookup failed for {code}",
                context={"currency": code, "date": on_date.isoformat(), "url": url},
                original_exception=e
            )

    async def get_rate_to_usd(self, currency: Optional[str], on_date: Optional[date] = None) -> Optional[float]:
        """Units of USD per one unit of ``currency``; None when unknown."""
        if not currency:
            return None
        code = currency.strip().upper()
        if code == "USD":
            return 1.0
        if code == "AED":
            return 1.0 / AED_PER_USD

        on_date = on_date or date.today()
        cache_key = f"{code}:{on_date.isoformat()}"
        if cache_key in self._cache:
            return self._cache[cache_key]

        try:
            rate = await self._fetch_rate(code, on_date)
        except ExchangeRateError as e:
            logger.warning(str(e))
            return None

        self._cache[cache_key] = rate
        return rate

    async def convert(
        self,
        price: Optional[float],
        currency: Optional[str],
        on_date: Optional[date] = None,
    ) -> Tuple[Optional[float], Optional[float]]:
        """Return (exchange_rate_to_usd, price_usd) for a price."""
        if price is None or not currency:
            return None, None
        rate = await self.get_rate_to_usd(currency, on_date)
        if rate is None:
            return None, None
        return rate, round(price * rate, 4)
