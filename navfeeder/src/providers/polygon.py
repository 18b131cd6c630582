"""Polygon.io last-quote provider for FX pairs.

Endpoint: https://api.polygon.io/v1/last_quote/currencies/{BASE}/{QUOTE}
Rate Limit: Depends on plan (API key required)
"""

from __future__ import annotations

import logging
import re
import time

from ..PriceSample import PriceSample, sample_from_float
from .base import BaseProvider, ProviderConfigError

logger = logging.getLogger(__name__)

SYMBOL_PATTERN = re.compile(r"^[A-Z]{6}$")


class PolygonProvider(BaseProvider):
    """Secondary FX feed. Uses the ask price, falling back to the bid."""

    name = "polygon"
    BASE_URL = "https://api.polygon.io/v1/last_quote/currencies"
    DEFAULT_TIMEOUT = 5.0
    DECIMALS = 8

    async def get(self, symbol: str, *, prefer_close: bool = False) -> PriceSample | None:
        """Fetch the last FX quote.

        :param symbol: Six-letter pair (e.g., "EURUSD").
        :param prefer_close: Ignored; Polygon has no close fallback.
        :returns: PriceSample or None when the pair is unsupported or empty.
        :raises ProviderConfigError: If no API key is configured.
        """
        upper = symbol.upper()
        if not SYMBOL_PATTERN.match(upper):
            return None
        if not self.has_api_key:
            raise ProviderConfigError("Polygon API key missing")

        base, quote = upper[:3], upper[3:]
        response = await self._get(
            f"{self.BASE_URL}/{base}/{quote}",
            params={"apiKey": self.api_key},
            headers={"Accept": "application/json"},
        )

        try:
            last = response.json().get("last") or {}
            raw_price = last.get("ask")
            if raw_price is None:
                raw_price = last.get("bid")
            price = float(raw_price)
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning(f"[polygon] Failed to parse response for {upper}: {e}")
            return None

        if not price > 0:
            return None

        raw_ts = last.get("timestamp") or last.get("updated")
        if isinstance(raw_ts, (int, float)) and raw_ts > 0:
            timestamp = int(raw_ts // 1000)
        else:
            timestamp = int(time.time())

        return sample_from_float(upper, price, self.DECIMALS, timestamp, source="polygon")
