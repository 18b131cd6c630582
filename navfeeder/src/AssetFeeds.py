"""Asset universe: logical asset keys, lookup symbols and provider chains.

Each feed names the providers to try, in priority order. The first provider
in the list is the primary; a price from any later provider is a fallback
and is reported as degraded.
"""

from __future__ import annotations

from dataclasses import dataclass

from .providers import ProviderKind


@dataclass(frozen=True)
class AssetFeed:
    """Provider chain configuration for one logical asset.

    :ivar asset_key: Logical asset key committed on-chain (e.g., "XAUUSD").
    :ivar symbol: Symbol passed to every provider in the chain.
    :ivar providers: Ordered provider kinds; the first is the primary.
    """

    asset_key: str
    symbol: str
    providers: tuple[ProviderKind, ...]

    @property
    def provider_names(self) -> list[str]:
        return [kind.value for kind in self.providers]


_FX_CHAIN = (
    ProviderKind.YAHOO,
    ProviderKind.POLYGON,
    ProviderKind.EXCHANGE_RATE,
    ProviderKind.CACHE,
)

_MAJOR_FX_CHAIN = (
    ProviderKind.YAHOO,
    ProviderKind.EXCHANGE_RATE,
    ProviderKind.STOOQ,
    ProviderKind.POLYGON,
    ProviderKind.CACHE,
)

_GOLD_CHAIN = (
    ProviderKind.YAHOO,
    ProviderKind.GOLD_PRICE,
    ProviderKind.POLYGON,
    ProviderKind.STOOQ,
    ProviderKind.CACHE,
)

ASSET_FEEDS: dict[str, AssetFeed] = {
    feed.asset_key: feed
    for feed in (
        AssetFeed("EURUSD", "EURUSD", _MAJOR_FX_CHAIN),
        AssetFeed("GBPUSD", "GBPUSD", _MAJOR_FX_CHAIN),
        AssetFeed("CHFUSD", "CHFUSD", _FX_CHAIN),
        AssetFeed("JPYUSD", "JPYUSD", _FX_CHAIN),
        AssetFeed("NOKUSD", "NOKUSD", _FX_CHAIN),
        AssetFeed("SEKUSD", "SEKUSD", _FX_CHAIN),
        AssetFeed("CNYUSD", "CNYUSD", _FX_CHAIN),
        AssetFeed("SGDUSD", "SGDUSD", _FX_CHAIN),
        AssetFeed("KRWUSD", "KRWUSD", _FX_CHAIN),
        AssetFeed("XAUUSD", "XAUUSD", _GOLD_CHAIN),
    )
}

# Human-friendly names mapped to canonical asset keys.
ASSET_ALIASES: dict[str, str] = {
    "GOLD": "XAUUSD",
    "EURO": "EURUSD",
}

# Symbols the monitor polls and cross-checks by default.
MONITORED_SYMBOLS: tuple[str, ...] = ("CHFUSD", "JPYUSD", "NOKUSD", "SEKUSD", "CNYUSD", "XAUUSD")


def canonical_key(symbol: str) -> str:
    """Map a symbol or alias to its canonical upper-case asset key."""
    upper = symbol.strip().upper()
    return ASSET_ALIASES.get(upper, upper)


def resolve_asset_feed(symbol: str) -> AssetFeed | None:
    """Look up the feed for a symbol or alias.

    :param symbol: Asset key or alias (case-insensitive).
    :returns: AssetFeed, or None if the asset is not configured.
    """
    return ASSET_FEEDS.get(canonical_key(symbol))


def resolve_targets(symbols: list[str] | None = None) -> list[AssetFeed]:
    """Resolve an explicit symbol list (or the whole universe) to feeds.

    Unknown symbols get an empty provider chain; the feeder reports them as
    skipped instead of failing the batch.

    :param symbols: Requested symbols, or None for every configured asset.
    :returns: Feeds in request order, de-duplicated by asset key.
    """
    if symbols is None:
        return list(ASSET_FEEDS.values())

    targets: list[AssetFeed] = []
    seen: set[str] = set()
    for symbol in symbols:
        key = canonical_key(symbol)
        if not key or key in seen:
            continue
        seen.add(key)
        targets.append(ASSET_FEEDS.get(key) or AssetFeed(key, key, ()))
    return targets


def list_asset_keys() -> list[str]:
    return sorted(ASSET_FEEDS)
