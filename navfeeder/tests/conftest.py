"""Shared fixtures: feeder contexts wired to in-memory providers."""

import pytest

from navfeeder.src.FeederContext import FeederContext
from navfeeder.src.OracleContract import OnChainPrice, OracleClient, OracleTransactionError
from navfeeder.src.PriceSample import NormalizedQuote
from navfeeder.src.providers import MockProvider, ProviderKind

NETWORK_KINDS = [kind for kind in ProviderKind if kind not in (ProviderKind.CACHE, ProviderKind.MOCK)]


class FakeOracle(OracleClient):
    """In-memory oracle; assets in ``fail`` revert on write."""

    def __init__(self, chain_time: int = 1_700_000_000, batch: bool = False, fail=()) -> None:
        self.chain_time = chain_time
        self.batch = batch
        self.fail = set(fail)
        self.stored: dict[bytes, OnChainPrice] = {}
        self.writes: list[str] = []

    @property
    def supports_batch(self) -> bool:
        return self.batch

    @property
    def address(self) -> str:
        return "0x0000000000000000000000000000000000000001"

    def get_price_data(self, asset_id: bytes) -> OnChainPrice | None:
        return self.stored.get(asset_id)

    def _write(self, quote: NormalizedQuote) -> None:
        self.stored[quote.asset_id] = OnChainPrice(quote.value, quote.timestamp, quote.decimals, quote.degraded)
        self.writes.append(quote.asset_key)

    def update_price(self, quote: NormalizedQuote) -> str:
        if quote.asset_key in self.fail:
            raise OracleTransactionError(f"updatePrice({quote.asset_key}) reverted")
        self._write(quote)
        return f"0x{len(self.writes):064x}"

    def update_price_batch(self, quotes: list[NormalizedQuote]) -> str:
        if any(q.asset_key in self.fail for q in quotes):
            raise OracleTransactionError("updatePriceBatch reverted")
        for quote in quotes:
            self._write(quote)
        return f"0x{len(self.writes):064x}"

    def latest_timestamp(self) -> int:
        return self.chain_time


@pytest.fixture
def fake_oracle():
    """Factory for in-memory oracles."""
    return FakeOracle


@pytest.fixture
def make_context():
    """Build a FeederContext whose network providers are all mocks.

    Usage: ``make_context(yahoo={"EURUSD": sample}, **{"exchange-rate": {...}})``.
    Providers not named serve no data, so nothing ever hits the network.
    Pass ``cache_path`` to back the price cache with a file.
    """

    def build(cache_path=None, **samples_by_provider) -> FeederContext:
        context = FeederContext.create(cache_path=cache_path) if cache_path else FeederContext()
        for kind in NETWORK_KINDS:
            samples = samples_by_provider.get(kind.value.replace("-", "_")) or samples_by_provider.get(kind.value)
            context.providers.register(kind.value, MockProvider(samples, label=kind.value))
        return context

    return build
