"""PriceFeeder: Turn provider samples into a committable oracle batch.

For every target asset the feeder walks the provider chain, sanitizes the
sample timestamp, rescales the price to 18 decimals and accumulates the
result. A failing asset is recorded as skipped and never aborts the batch,
so ``updated + skipped == total`` holds for every summary.

When committing, a batch-capable oracle receives every quote in one
transaction; otherwise quotes are written one by one and the assets whose
write failed are reported together in a :class:`CommitError`.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from .AssetFeeds import AssetFeed, resolve_targets
from .CrossChecker import CrossChecker, CrossCheckOutcome
from .FallbackChain import CycleEvents, resolve_price
from .FeederContext import FeederContext
from .OracleContract import OracleClient
from .PriceSample import NormalizedQuote, PriceSample, compute_asset_id, normalize_to_18

logger = logging.getLogger(__name__)

# Max seconds a timestamp may run ahead of the latest block.
CHAIN_CLOCK_SKEW = 60

STATUS_UPDATED = "updated"
STATUS_SKIPPED = "skipped"


class FeederError(Exception):
    """Cycle-fatal feeder failure (bad configuration, no oracle for commit)."""

    pass


class CommitError(FeederError):
    """Raised when one or more on-chain writes failed.

    :ivar asset_keys: Assets whose write failed.
    :ivar summary: The already computed summary, unchanged by the failure.
    """

    def __init__(self, asset_keys: list[str], summary: FeederSummary, message: str):
        self.asset_keys = asset_keys
        self.summary = summary
        super().__init__(f"Commit failed for {', '.join(asset_keys)}: {message}")


@dataclass
class FeederAssetResult:
    """Per-asset outcome of a feeder run."""

    asset_key: str
    symbol: str
    provider: str | None
    status: str
    fallback: bool = False
    degraded: bool = False
    message: str | None = None
    price: int | None = None
    timestamp: int | None = None


@dataclass
class FeederSummary:
    """Aggregate outcome of a feeder run.

    :ivar total: Number of target assets.
    :ivar updated: Assets with a harvested quote.
    :ivar degraded: Harvested quotes flagged degraded.
    :ivar skipped: Assets without a quote.
    :ivar dry_run: True if nothing was committed on purpose.
    :ivar results: Per-asset results in target order.
    :ivar harvested: Normalized quotes ready for commit.
    :ivar tx_hashes: Hashes of confirmed oracle transactions.
    :ivar checker_alerts: Cross-check outcomes that breached their threshold.
    """

    total: int
    dry_run: bool
    updated: int = 0
    degraded: int = 0
    skipped: int = 0
    results: list[FeederAssetResult] = field(default_factory=list)
    harvested: list[NormalizedQuote] = field(default_factory=list)
    tx_hashes: list[str] = field(default_factory=list)
    checker_alerts: list[CrossCheckOutcome] = field(default_factory=list)

    def format(self) -> str:
        dry = " (dry-run)" if self.dry_run else ""
        return (
            f"Processed {self.total} assets → updated: {self.updated}{dry}, "
            f"degraded: {self.degraded}, skipped: {self.skipped}"
        )


def parse_force_timestamp(value: str | int | None) -> str | int | None:
    """Validate a ``force_timestamp`` option ("now" or unix seconds).

    :raises FeederError: If the value is neither.
    """
    if value is None or value == "":
        return None
    if isinstance(value, int):
        return value
    if value.strip().lower() == "now":
        return "now"
    try:
        return int(value)
    except ValueError:
        raise FeederError(f"Invalid force timestamp {value!r}; expected 'now' or unix seconds") from None


class PriceFeeder:
    """Harvests one quote per asset and optionally commits them on-chain.

    :ivar context: Providers, caches and fetch overrides.
    :ivar oracle: Oracle client, required for commits.
    :ivar checker: Optional cross-checker run on every harvested price.
    """

    def __init__(
        self,
        context: FeederContext,
        oracle: OracleClient | None = None,
        checker: CrossChecker | None = None,
    ) -> None:
        self.context = context
        self.oracle = oracle
        self.checker = checker

    async def run(
        self,
        symbols: list[str] | None = None,
        *,
        commit: bool = False,
        force_timestamp: str | int | None = None,
        events: CycleEvents | None = None,
    ) -> FeederSummary:
        """Run one feeder pass.

        :param symbols: Assets to process; None means the whole universe.
        :param commit: Submit harvested quotes to the oracle.
        :param force_timestamp: "now" or unix seconds overriding sample times.
        :param events: Collector for fallback-chain events.
        :returns: FeederSummary.
        :raises FeederError: On an empty target list or commit without oracle.
        :raises CommitError: If any on-chain write failed.
        """
        forced = parse_force_timestamp(force_timestamp)
        targets = resolve_targets(symbols)
        if not targets:
            raise FeederError("No symbols provided and no default asset map available")
        if commit and self.oracle is None:
            raise FeederError("Oracle contract not available for commit")

        events = events if events is not None else CycleEvents()
        summary = FeederSummary(total=len(targets), dry_run=not commit)
        allowed_now = self._allowed_now()

        for target in targets:
            try:
                await self._harvest(target, summary, events, allowed_now, forced)
            except Exception as e:
                logger.warning(f"Failed to fetch {target.asset_key}: {e}")
                summary.results.append(
                    FeederAssetResult(
                        asset_key=target.asset_key,
                        symbol=target.symbol,
                        provider=target.provider_names[0] if target.providers else None,
                        status=STATUS_SKIPPED,
                        message=str(e),
                    )
                )
                summary.skipped += 1

        if self.checker is not None:
            await self._cross_check(summary)

        logger.info(summary.format())

        if commit and summary.harvested:
            self._commit(summary)
        return summary

    def _allowed_now(self) -> int:
        wall_clock = int(time.time())
        if self.oracle is None:
            return wall_clock
        try:
            return min(wall_clock, self.oracle.latest_timestamp() + CHAIN_CLOCK_SKEW)
        except Exception as e:
            logger.warning(f"Unable to read latest block timestamp, using wall clock: {e}")
            return wall_clock

    def _sanitize_timestamp(
        self,
        sample: PriceSample,
        asset_id: bytes,
        allowed_now: int,
        forced: str | int | None,
    ) -> int:
        if forced == "now":
            ts = allowed_now
        elif forced is not None:
            ts = int(forced)
        else:
            ts = int(sample.timestamp or allowed_now)
        ts = min(max(ts, 0), allowed_now)

        if self.oracle is not None:
            last = self.oracle.get_price_data(asset_id)
            if last is not None and last.updated_at and ts <= last.updated_at:
                ts = last.updated_at + 1
        return ts

    async def _harvest(
        self,
        target: AssetFeed,
        summary: FeederSummary,
        events: CycleEvents,
        allowed_now: int,
        forced: str | int | None,
    ) -> None:
        resolved = await resolve_price(target, self.context, events)
        if resolved is None:
            logger.warning(f"No data returned for {target.asset_key} ({target.symbol}), skipping")
            summary.results.append(
                FeederAssetResult(
                    asset_key=target.asset_key,
                    symbol=target.symbol,
                    provider=target.provider_names[0] if target.providers else None,
                    status=STATUS_SKIPPED,
                    message="no-data",
                )
            )
            summary.skipped += 1
            return

        sample = resolved.sample
        asset_id = compute_asset_id(target.asset_key)
        timestamp = self._sanitize_timestamp(sample, asset_id, allowed_now, forced)
        quote = NormalizedQuote(
            asset_key=target.asset_key,
            symbol=target.symbol,
            asset_id=asset_id,
            value=normalize_to_18(sample.value, sample.decimals),
            timestamp=timestamp,
            degraded=sample.degraded,
            provider=resolved.provider,
            fallback=resolved.fallback,
        )

        summary.harvested.append(quote)
        summary.results.append(
            FeederAssetResult(
                asset_key=target.asset_key,
                symbol=target.symbol,
                provider=resolved.provider,
                status=STATUS_UPDATED,
                fallback=resolved.fallback,
                degraded=quote.degraded,
                price=quote.value,
                timestamp=timestamp,
            )
        )
        summary.updated += 1
        if quote.degraded:
            summary.degraded += 1

    async def _cross_check(self, summary: FeederSummary) -> None:
        for quote in summary.harvested:
            outcome = await self.checker.check(quote.symbol, quote.value / 10**quote.decimals)
            if outcome.alert is not None:
                summary.checker_alerts.append(outcome)

    def _commit(self, summary: FeederSummary) -> None:
        oracle = self.oracle
        quotes = summary.harvested
        logger.info(
            f"[COMMIT] Preparing on-chain update for {len(quotes)} assets using oracle at {oracle.address}"
        )

        if oracle.supports_batch:
            try:
                summary.tx_hashes.append(oracle.update_price_batch(quotes))
            except Exception as e:
                logger.error(f"[COMMIT] revert updatePriceBatch: {e}")
                raise CommitError([q.asset_key for q in quotes], summary, str(e)) from e
            return

        failed: list[str] = []
        last_error: Exception | None = None
        for quote in quotes:
            try:
                summary.tx_hashes.append(oracle.update_price(quote))
            except Exception as e:
                logger.error(
                    f"[COMMIT] revert updatePrice {quote.asset_key} "
                    f"(price={quote.value}, ts={quote.timestamp}, degraded={quote.degraded}): {e}"
                )
                failed.append(quote.asset_key)
                last_error = e

        if failed:
            raise CommitError(failed, summary, str(last_error)) from last_error
