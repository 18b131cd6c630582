"""FeederContext: Per-daemon provider instances, caches and fetch overrides.

Everything the fallback chain mutates between cycles lives here, so two
daemons (or two tests) in the same process never share state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import httpx

from .PriceCache import PriceCache
from .providers import BaseProvider, ProviderKind, ProviderSpec, create_provider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchOverride:
    """Per-asset fetch mode set by the monitor.

    :ivar force_close: Ask providers for close prices instead of live quotes.
    :ivar use_last_known: Allow the cache provider to replay the last good price.
    """

    force_close: bool = False
    use_last_known: bool = False

    @property
    def is_empty(self) -> bool:
        return not (self.force_close or self.use_last_known)


NO_OVERRIDE = FetchOverride()


def normalize_provider_name(name: str) -> str:
    """Normalize "EXCHANGE_RATE" / "exchange-rate" style names."""
    return name.strip().lower().replace("_", "-")


class ProviderRegistry:
    """Lazily builds and caches one provider instance per name.

    Explicit registrations take precedence over built providers, which is how
    dry runs and tests swap in static samples for a given provider slot.

    :ivar api_keys: Provider name to API key.
    :ivar cache: Sample cache handed to every built provider.
    """

    def __init__(
        self,
        api_keys: dict[str, str] | None = None,
        cache: PriceCache | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        self.api_keys = {normalize_provider_name(k): v for k, v in (api_keys or {}).items()}
        self.cache = cache
        self._client = client
        self._timeout = timeout
        self._providers: dict[str, BaseProvider] = {}

    def register(self, name: str, provider: BaseProvider) -> None:
        """Install a provider instance under ``name``, replacing any existing one."""
        self._providers[normalize_provider_name(name)] = provider

    def get(self, name: str | ProviderKind) -> BaseProvider:
        """Get (or build) the provider for a name.

        :param name: Provider name or kind.
        :returns: Provider instance.
        :raises ValueError: If the name is not a known provider kind.
        """
        key = name.value if isinstance(name, ProviderKind) else normalize_provider_name(name)
        provider = self._providers.get(key)
        if provider is None:
            kind = ProviderKind.parse(key)
            provider = create_provider(
                ProviderSpec(kind=kind, api_key=self.api_keys.get(key), timeout=self._timeout),
                cache=self.cache,
                client=self._client,
            )
            self._providers[key] = provider
            logger.debug(f"Created provider {provider!r}")
        return provider

    def names(self) -> list[str]:
        return sorted(self._providers)


@dataclass
class FeederContext:
    """Shared mutable state of one feeder/monitor instance.

    :ivar cache: Sample TTL cache and last-known-good map.
    :ivar providers: Provider registry.
    :ivar overrides: Asset key to fetch override.
    """

    cache: PriceCache = field(default_factory=PriceCache)
    providers: ProviderRegistry | None = None
    overrides: dict[str, FetchOverride] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.providers is None:
            self.providers = ProviderRegistry(cache=self.cache)
        elif self.providers.cache is None:
            self.providers.cache = self.cache

    @classmethod
    def create(
        cls,
        api_keys: dict[str, str] | None = None,
        cache_path: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> FeederContext:
        """Build a context with a fresh cache and provider registry."""
        cache = PriceCache(cache_path)
        registry = ProviderRegistry(api_keys=api_keys, cache=cache, client=client, timeout=timeout)
        return cls(cache=cache, providers=registry)

    def set_fetch_override(self, asset_key: str, override: FetchOverride | None) -> None:
        """Set or clear (None / empty override) the fetch mode for an asset."""
        key = asset_key.upper()
        if override is None or override.is_empty:
            self.overrides.pop(key, None)
            return
        self.overrides[key] = override

    def get_fetch_override(self, *keys: str) -> FetchOverride:
        """Return the override of the first matching key, or an empty one."""
        for key in keys:
            override = self.overrides.get(key.upper())
            if override is not None:
                return override
        return NO_OVERRIDE

    def clear_fetch_overrides(self) -> None:
        self.overrides.clear()
