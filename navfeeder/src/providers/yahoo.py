"""Yahoo Finance chart API provider.

Endpoint: https://query1.finance.yahoo.com/v8/finance/chart/{TICKER}
Rate Limit: Unpublished (no key required)

The live ``regularMarketPrice`` is used when present. When it is missing, or
the caller asks for close prices, the most recent positive close of the chart
series is used instead and the sample is flagged degraded.
"""

from __future__ import annotations

import logging
import math
import time
from urllib.parse import quote

from ..PriceSample import PriceSample, sample_from_float
from .base import BaseProvider

logger = logging.getLogger(__name__)

# Canonical asset symbols mapped to Yahoo tickers.
YAHOO_TICKERS: dict[str, str] = {
    "XAUUSD": "GC=F",
    "BTCUSD": "BTC-USD",
    "ETHUSD": "ETH-USD",
    "EURUSD": "EURUSD=X",
    "GBPUSD": "GBPUSD=X",
    "CHFUSD": "CHFUSD=X",
    "JPYUSD": "JPYUSD=X",
    "CNYUSD": "CNYUSD=X",
    "KRWUSD": "KRWUSD=X",
    "SGDUSD": "SGDUSD=X",
    "NOKUSD": "NOKUSD=X",
    "SEKUSD": "SEKUSD=X",
}


def _is_positive(value: object) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
        and value > 0
    )


def extract_chart_price(payload: dict, prefer_close: bool = False) -> tuple[float, int | None, str] | None:
    """Pick a price out of a chart API payload.

    :param payload: Decoded JSON body.
    :param prefer_close: Use the last close even if a live price exists.
    :returns: Tuple of (price, timestamp or None, source label), or None.
    """
    results = (payload.get("chart") or {}).get("result") or []
    if not results:
        return None
    result = results[0] or {}
    meta = result.get("meta") or {}

    price = meta.get("regularMarketPrice")
    market_time = meta.get("regularMarketTime")
    timestamp = int(market_time) if _is_positive(market_time) else None
    source = "regular"

    if not _is_positive(price) or prefer_close:
        timestamps = result.get("timestamp") or []
        quotes = (result.get("indicators") or {}).get("quote") or [{}]
        closes = (quotes[0] or {}).get("close") or []
        for i in range(len(closes) - 1, -1, -1):
            if _is_positive(closes[i]):
                price = closes[i]
                source = "close"
                if i < len(timestamps) and _is_positive(timestamps[i]):
                    timestamp = int(timestamps[i])
                break

    if not _is_positive(price):
        return None
    return float(price), timestamp, source


class YahooProvider(BaseProvider):
    """Primary market-data feed backed by the Yahoo chart API."""

    name = "yahoo"
    BASE_URL = "https://query1.finance.yahoo.com/v8/finance/chart"
    DECIMALS = 8

    async def get(self, symbol: str, *, prefer_close: bool = False) -> PriceSample | None:
        """Fetch a price from Yahoo.

        :param symbol: Canonical symbol (e.g., "EURUSD").
        :param prefer_close: Use the last close price (degraded).
        :returns: PriceSample or None if no ticker or price is available.
        """
        upper = symbol.upper()
        ticker = YAHOO_TICKERS.get(upper)
        if ticker is None:
            logger.debug(f"[yahoo] No ticker configured for {upper}")
            return None

        cached = self._cached(upper)
        if cached is not None and (not prefer_close or cached.source == "close"):
            return cached

        response = await self._get(
            f"{self.BASE_URL}/{quote(ticker, safe='')}",
            headers={"User-Agent": "NavFeeder/1.0", "Accept": "application/json"},
        )
        try:
            extracted = extract_chart_price(response.json(), prefer_close)
        except (ValueError, TypeError, AttributeError, IndexError) as e:
            logger.warning(f"[yahoo] Failed to parse response for {ticker}: {e}")
            return None

        if extracted is None:
            logger.warning(f"[yahoo] No usable price for {ticker}")
            return None

        price, timestamp, source = extracted
        sample = sample_from_float(
            upper,
            price,
            self.DECIMALS,
            timestamp or int(time.time()),
            degraded=source == "close",
            source=source,
        )
        self._store(upper, sample)
        logger.debug(f"[yahoo] {upper} = {price} ({source})")
        return sample
