"""ExchangeRate-API provider.

Endpoint: https://v6.exchangerate-api.com/v6/{KEY}/latest/USD
Rate Limit: 1500 requests/month (free tier)

A single USD-based rates table serves every pair. The table is kept in memory
for 60 seconds; cross rates are ``(1 / rate[base]) * rate[quote]``.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from ..PriceSample import PriceSample, sample_from_float
from .base import BaseProvider, ProviderConfigError, ProviderError

logger = logging.getLogger(__name__)

RATES_TTL_SECONDS = 60.0


@dataclass
class RatesTable:
    """USD-based conversion rates and their publication time."""

    rates: dict[str, float]
    updated_at: int
    expires_at: float


class ExchangeRateProvider(BaseProvider):
    """FX rates table keyed on USD."""

    name = "exchange-rate"
    BASE_URL = "https://v6.exchangerate-api.com/v6"
    DECIMALS = 6

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._table: RatesTable | None = None

    async def _load_rates(self) -> RatesTable:
        if not self.has_api_key:
            raise ProviderConfigError("Missing EXCHANGERATE_API_KEY")

        if self._table is not None and time.time() < self._table.expires_at:
            return self._table

        response = await self._get(f"{self.BASE_URL}/{self.api_key}/latest/USD")
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(f"ExchangeRate payload is not JSON: {e}") from e

        if data.get("result") and data["result"] != "success":
            raise ProviderError(f"ExchangeRate API returned {data['result']}")
        rates = data.get("conversion_rates")
        if not rates:
            raise ProviderError("ExchangeRate payload missing conversion_rates")

        self._table = RatesTable(
            rates=rates,
            updated_at=int(data.get("time_last_update_unix") or time.time()),
            expires_at=time.time() + RATES_TTL_SECONDS,
        )
        return self._table

    async def get(self, symbol: str, *, prefer_close: bool = False) -> PriceSample | None:
        """Compute a cross rate from the USD table.

        :param symbol: Six-letter pair (e.g., "EURUSD").
        :param prefer_close: Ignored.
        :returns: PriceSample with 6 decimals, or None if a leg is missing.
        """
        upper = symbol.upper()
        if len(upper) != 6:
            return None

        cached = self._cached(upper)
        if cached is not None:
            return cached

        table = await self._load_rates()
        base_rate = table.rates.get(upper[:3])
        quote_rate = table.rates.get(upper[3:])
        if not base_rate or not quote_rate:
            return None

        rate = (1 / base_rate) * quote_rate
        if not rate > 0:
            return None

        sample = sample_from_float(upper, rate, self.DECIMALS, table.updated_at, source="rates")
        self._store(upper, sample)
        return sample
