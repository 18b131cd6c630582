"""
Price providers for FX and bullion sources.

Provider kinds form a closed set. Every kind maps to exactly one builder, and
a kind without a builder fails at import time rather than at fetch time.

Usage:
    from navfeeder.src.providers import ProviderKind, ProviderSpec, create_provider

    provider = create_provider(ProviderSpec(ProviderKind.STOOQ))
    sample = await provider.get("EURUSD")

    # For providers requiring API keys
    provider = create_provider(ProviderSpec(ProviderKind.GOLD_PRICE, api_key="..."))
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum

import httpx

from ..PriceCache import PriceCache
from ..PriceSample import PriceSample
from .base import (
    BaseProvider,
    ProviderConfigError,
    ProviderError,
    ProviderHTTPError,
    is_retryable_status,
)
from .cache import CacheProvider
from .exchange_rate import ExchangeRateProvider
from .gold_price import GoldPriceProvider
from .mock import MockProvider
from .polygon import PolygonProvider
from .stooq import StooqProvider
from .yahoo import YAHOO_TICKERS, YahooProvider


class ProviderKind(str, Enum):
    """Closed set of price provider kinds."""

    YAHOO = "yahoo"
    POLYGON = "polygon"
    EXCHANGE_RATE = "exchange-rate"
    STOOQ = "stooq"
    GOLD_PRICE = "gold-price"
    CACHE = "cache"
    MOCK = "mock"

    @classmethod
    def parse(cls, name: str) -> ProviderKind:
        """Look up a kind by its wire name (case-insensitive).

        :raises ValueError: If the name is not a known provider kind.
        """
        try:
            return cls(name.strip().lower())
        except ValueError:
            available = ", ".join(kind.value for kind in cls)
            raise ValueError(f"Unknown provider '{name}'. Available: {available}") from None


# Environment variables holding each kind's API key, in lookup order.
API_KEY_ENV_VARS: dict[ProviderKind, tuple[str, ...]] = {
    ProviderKind.POLYGON: ("POLYGON_API_KEY",),
    ProviderKind.EXCHANGE_RATE: ("EXCHANGERATE_API_KEY",),
    ProviderKind.GOLD_PRICE: ("GOLD_API_KEY",),
}


@dataclass(frozen=True)
class ProviderSpec:
    """Everything needed to build one provider instance.

    :ivar kind: Provider kind.
    :ivar api_key: API key for authenticated sources.
    :ivar timeout: Request timeout override in seconds.
    :ivar samples: Static samples (mock kind only).
    :ivar label: Name override (mock kind only).
    """

    kind: ProviderKind
    api_key: str | None = None
    timeout: float | None = None
    samples: Mapping[str, PriceSample | None] | None = None
    label: str | None = None


_Builder = Callable[[ProviderSpec, PriceCache | None, httpx.AsyncClient | None], BaseProvider]


def _http_builder(cls: type[BaseProvider]) -> _Builder:
    def build(spec: ProviderSpec, cache: PriceCache | None, client: httpx.AsyncClient | None) -> BaseProvider:
        return cls(api_key=spec.api_key, timeout=spec.timeout, client=client, cache=cache)

    return build


_BUILDERS: dict[ProviderKind, _Builder] = {
    ProviderKind.YAHOO: _http_builder(YahooProvider),
    ProviderKind.POLYGON: _http_builder(PolygonProvider),
    ProviderKind.EXCHANGE_RATE: _http_builder(ExchangeRateProvider),
    ProviderKind.STOOQ: _http_builder(StooqProvider),
    ProviderKind.GOLD_PRICE: _http_builder(GoldPriceProvider),
    ProviderKind.CACHE: lambda spec, cache, client: CacheProvider(cache=cache),
    ProviderKind.MOCK: lambda spec, cache, client: MockProvider(spec.samples, label=spec.label),
}

_missing = [kind.value for kind in ProviderKind if kind not in _BUILDERS]
if _missing:
    raise RuntimeError(f"Provider kinds without a builder: {', '.join(_missing)}")


def create_provider(
    spec: ProviderSpec,
    cache: PriceCache | None = None,
    client: httpx.AsyncClient | None = None,
) -> BaseProvider:
    """Build a provider instance.

    :param spec: Provider kind and settings.
    :param cache: Shared sample cache (required for the cache kind).
    :param client: HTTP client override (tests use ``httpx.MockTransport``).
    :returns: Provider instance.
    """
    return _BUILDERS[spec.kind](spec, cache, client)


__all__ = [
    "API_KEY_ENV_VARS",
    "BaseProvider",
    "CacheProvider",
    "ExchangeRateProvider",
    "GoldPriceProvider",
    "MockProvider",
    "PolygonProvider",
    "ProviderConfigError",
    "ProviderError",
    "ProviderHTTPError",
    "ProviderKind",
    "ProviderSpec",
    "StooqProvider",
    "YAHOO_TICKERS",
    "YahooProvider",
    "create_provider",
    "is_retryable_status",
]
