"""Last-known-good replay provider.

Never touches the network. The fallback chain only consults it for assets
whose fetch override enables ``use_last_known``.
"""

from __future__ import annotations

import logging

from ..PriceSample import PriceSample
from .base import BaseProvider, ProviderConfigError

logger = logging.getLogger(__name__)


class CacheProvider(BaseProvider):
    """Replays the last known good sample, always flagged degraded."""

    name = "cache"

    async def get(self, symbol: str, *, prefer_close: bool = False) -> PriceSample | None:
        if self.cache is None:
            raise ProviderConfigError("Cache provider requires a PriceCache")
        sample = self.cache.last_known(symbol)
        if sample is None:
            return None
        logger.warning(f"[DEGRADED] {symbol.upper()} using cached price {sample.as_float()}")
        return PriceSample(
            symbol=symbol.upper(),
            value=sample.value,
            decimals=sample.decimals,
            timestamp=sample.timestamp,
            degraded=True,
            source="cache",
        )

