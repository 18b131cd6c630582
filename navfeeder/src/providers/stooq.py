"""Stooq CSV quote provider.

Endpoint: https://stooq.com/q/l/?s={symbol}&f=sd2t2ohlcv&h=&e=csv
Rate Limit: Unpublished (no key required)
"""

from __future__ import annotations

import csv
import io
import logging
import time
from datetime import datetime, timezone

from ..PriceSample import PriceSample, parse_price
from .base import BaseProvider

logger = logging.getLogger(__name__)

NO_DATA = "N/D"


def parse_quote_csv(symbol: str, text: str) -> PriceSample | None:
    """Parse a Stooq CSV response (header row + one data row).

    Columns: Symbol, Date, Time, Open, High, Low, Close, Volume.

    :param symbol: Symbol the sample is reported under.
    :param text: Raw CSV body.
    :returns: PriceSample or None for "N/D" and malformed rows.
    """
    rows = list(csv.reader(io.StringIO(text.strip())))
    if len(rows) < 2 or len(rows[1]) < 7:
        return None
    row = rows[1]

    close = row[6].strip()
    if not close or close == NO_DATA:
        return None
    try:
        value, decimals = parse_price(close)
    except ValueError:
        logger.warning(f"[stooq] Unparseable close for {symbol}: {close!r}")
        return None

    timestamp = int(time.time())
    date, clock = row[1].strip(), row[2].strip()
    if date and clock and NO_DATA not in (date, clock):
        try:
            parsed = datetime.strptime(f"{date}T{clock}", "%Y-%m-%dT%H:%M:%S")
            timestamp = int(parsed.replace(tzinfo=timezone.utc).timestamp())
        except ValueError:
            pass

    return PriceSample(
        symbol=symbol,
        value=value,
        decimals=decimals,
        timestamp=timestamp,
        source="csv",
    )


class StooqProvider(BaseProvider):
    """CSV quote feed. Uses the close column of the latest row."""

    name = "stooq"
    BASE_URL = "https://stooq.com/q/l/"

    async def get(self, symbol: str, *, prefer_close: bool = False) -> PriceSample | None:
        """Fetch the latest quote row.

        :param symbol: Stooq symbol (e.g., "EURUSD").
        :param prefer_close: Ignored; Stooq always reports the close column.
        :returns: PriceSample or None if the feed has no data.
        """
        upper = symbol.upper()
        cached = self._cached(upper)
        if cached is not None:
            return cached

        response = await self._get(
            self.BASE_URL,
            params={"s": upper.lower(), "f": "sd2t2ohlcv", "h": "", "e": "csv"},
            headers={"User-Agent": "Mozilla/5.0 (NavFeeder)"},
        )
        sample = parse_quote_csv(upper, response.text)
        if sample is not None:
            self._store(upper, sample)
        return sample
