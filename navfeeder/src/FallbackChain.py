"""FallbackChain: Resolve one asset price from an ordered provider list.

Providers are tried in priority order and the first non-null sample wins.
A winner that is not the primary provider, or a sample that is already
degraded (close price, cache replay), is returned flagged ``degraded=True``.
When every provider comes back empty the asset is skipped, never failed.

Everything observable about a resolution (prices, fallbacks, skips, provider
errors) is recorded on a :class:`CycleEvents` collector passed in by the
caller, which the monitor turns into per-cycle statistics.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field

from .AssetFeeds import AssetFeed
from .FeederContext import FeederContext
from .PriceSample import PriceSample
from .providers import ProviderError, ProviderKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PriceEvent:
    """A sample accepted for an asset."""

    asset_key: str
    provider: str
    value: float
    source: str
    degraded: bool
    timestamp: int


@dataclass(frozen=True)
class SkipEvent:
    """An asset for which no provider returned a price."""

    asset_key: str
    reason: str


@dataclass(frozen=True)
class FallbackEvent:
    """A price served by a non-primary provider."""

    asset_key: str
    provider: str


@dataclass(frozen=True)
class ProviderErrorEvent:
    """A provider that raised while resolving an asset."""

    asset_key: str
    provider: str
    error: str


@dataclass
class CycleEvents:
    """Collects chain events for one cycle.

    :ivar prices: Accepted samples, one per resolved asset.
    :ivar skips: Assets with no price.
    :ivar fallbacks: Assets served by a non-primary provider.
    :ivar errors: Provider exceptions (the chain moved on after each).
    """

    prices: list[PriceEvent] = field(default_factory=list)
    skips: list[SkipEvent] = field(default_factory=list)
    fallbacks: list[FallbackEvent] = field(default_factory=list)
    errors: list[ProviderErrorEvent] = field(default_factory=list)

    def by_provider(self) -> dict[str, int]:
        """Count accepted prices per provider."""
        return dict(Counter(event.provider for event in self.prices))

    def used_provider(self, asset_key: str) -> str | None:
        """Return the provider that served ``asset_key`` this cycle, if any."""
        for event in reversed(self.prices):
            if event.asset_key == asset_key:
                return event.provider
        return None

    @property
    def fallback_count(self) -> int:
        return len(self.fallbacks)


@dataclass(frozen=True)
class ChainResult:
    """The winning sample of a fallback chain.

    :ivar sample: Sample, re-flagged degraded when appropriate.
    :ivar provider: Name of the provider that produced it.
    :ivar fallback: True if the provider was not first in the chain.
    """

    sample: PriceSample
    provider: str
    fallback: bool


async def resolve_price(
    feed: AssetFeed,
    context: FeederContext,
    events: CycleEvents | None = None,
) -> ChainResult | None:
    """Resolve a price for one asset by walking its provider chain.

    :param feed: Asset and ordered provider list.
    :param context: Providers, caches and fetch overrides.
    :param events: Optional collector for cycle statistics.
    :returns: ChainResult, or None if the asset must be skipped.
    """
    events = events if events is not None else CycleEvents()
    key = feed.asset_key

    if not feed.providers:
        logger.warning(f"[SKIPPED] {key}: no providers configured")
        events.skips.append(SkipEvent(key, "no-providers"))
        return None

    override = context.get_fetch_override(key, feed.symbol)
    last_error = "unavailable"

    for index, kind in enumerate(feed.providers):
        name = kind.value
        if kind is ProviderKind.CACHE and not override.use_last_known:
            last_error = "cache fallback disabled"
            logger.debug(f"[FALLBACK→{name}] {key}: {last_error}")
            continue

        try:
            provider = context.providers.get(kind)
            sample = await provider.get(feed.symbol, prefer_close=override.force_close)
        except ProviderError as e:
            last_error = str(e)
            logger.warning(f"[FALLBACK→{name}] {key} failed: {e}")
            events.errors.append(ProviderErrorEvent(key, name, last_error))
            continue
        except Exception as e:  # Misbehaving provider must not abort the chain
            last_error = f"{type(e).__name__}: {e}"
            logger.warning(f"[FALLBACK→{name}] {key} failed: {last_error}")
            events.errors.append(ProviderErrorEvent(key, name, last_error))
            continue

        if sample is None:
            last_error = f"{name} returned no data"
            logger.debug(f"[FALLBACK→{name}] {key}: no data")
            continue

        fallback = index > 0
        if fallback or sample.degraded:
            sample = sample.as_degraded()
        if fallback:
            logger.info(f"[FALLBACK:USED] {key} → {name}")
            events.fallbacks.append(FallbackEvent(key, name))

        if kind is not ProviderKind.CACHE:
            context.cache.remember_last_good([key, feed.symbol], sample)

        events.prices.append(
            PriceEvent(
                asset_key=key,
                provider=name,
                value=sample.as_float(),
                source=sample.source,
                degraded=sample.degraded,
                timestamp=sample.timestamp,
            )
        )
        logger.debug(f"[PROVIDER:{name.upper()}] {key} = {sample.as_float()}")
        return ChainResult(sample=sample, provider=name, fallback=fallback)

    logger.warning(f"[SKIPPED] {key}: {last_error}")
    events.skips.append(SkipEvent(key, last_error))
    return None
