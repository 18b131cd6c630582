"""GoldAPI provider for spot gold.

Endpoint: https://www.goldapi.io/api/XAU/USD
Rate Limit: Depends on plan (API key required)
"""

from __future__ import annotations

import logging
import time

from ..PriceSample import PriceSample, sample_from_float
from .base import BaseProvider, ProviderConfigError

logger = logging.getLogger(__name__)


class GoldPriceProvider(BaseProvider):
    """Gold-specific feed. Only serves XAUUSD."""

    name = "gold-price"
    URL = "https://www.goldapi.io/api/XAU/USD"
    DECIMALS = 4

    async def get(self, symbol: str, *, prefer_close: bool = False) -> PriceSample | None:
        """Fetch the spot gold price.

        :param symbol: Must be "XAUUSD"; anything else returns None.
        :param prefer_close: Ignored.
        :returns: PriceSample with 4 decimals, or None.
        :raises ProviderConfigError: If no API key is configured.
        """
        upper = symbol.upper()
        if upper != "XAUUSD":
            return None

        cached = self._cached(upper)
        if cached is not None:
            return cached

        if not self.has_api_key:
            raise ProviderConfigError("Missing GOLD_API_KEY")
        token = self.api_key if self.api_key.startswith("Bearer ") else f"Bearer {self.api_key}"

        response = await self._get(
            self.URL,
            headers={"x-access-token": token, "User-Agent": "NavFeeder"},
        )
        try:
            data = response.json()
            price = float(data.get("price") or 0)
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning(f"[gold-price] Failed to parse response: {e}")
            return None

        if price <= 0:
            return None

        timestamp = int(data.get("timestamp") or time.time())
        sample = sample_from_float(upper, price, self.DECIMALS, timestamp, source="goldapi")
        self._store(upper, sample)
        return sample
