"""InverseSanity: Cross-check a watch-list of symbols end to end.

For each symbol the provider price is resolved through the regular fallback
chain and then compared against the reference. Outcomes computed earlier in
the same cycle for the same provider price are reused.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field

from .AssetFeeds import AssetFeed, resolve_asset_feed
from .CrossChecker import CrossChecker, CrossCheckOutcome, threshold_for
from .FallbackChain import CycleEvents, resolve_price
from .FeederContext import FeederContext

logger = logging.getLogger(__name__)

PROVIDER_UNAVAILABLE = "provider unavailable"


@dataclass
class InverseCheckOutcome(CrossCheckOutcome):
    """Cross-check outcome enriched with the provider that served the price.

    :ivar provider: Provider name, or None if no provider had data.
    :ivar provider_source: Provider source label (e.g. "regular", "close").
    :ivar provider_timestamp: Sample timestamp.
    """

    provider: str | None = None
    provider_source: str | None = None
    provider_timestamp: int | None = None


@dataclass
class InverseCheckReport:
    """All outcomes of a watch-list run and the subset that needs attention."""

    results: list[InverseCheckOutcome] = field(default_factory=list)

    @property
    def alerts(self) -> list[InverseCheckOutcome]:
        return [item for item in self.results if not item.ok or item.alert is not None]

    @property
    def tested(self) -> int:
        return len(self.results)


def _unavailable(symbol: str, error: str) -> InverseCheckOutcome:
    return InverseCheckOutcome(
        symbol=symbol,
        ok=False,
        provider_price=math.nan,
        threshold=threshold_for(symbol),
        error=error,
    )


async def check_symbol(
    symbol: str,
    context: FeederContext,
    checker: CrossChecker,
    events: CycleEvents | None = None,
) -> InverseCheckOutcome:
    """Fetch one symbol through its chain and cross-check the result."""
    upper = symbol.upper()
    feed = resolve_asset_feed(upper) or AssetFeed(upper, upper, ())
    result = await resolve_price(feed, context, events)
    if result is None:
        return _unavailable(upper, PROVIDER_UNAVAILABLE)

    outcome = await checker.check(feed.symbol, result.sample.as_float())
    return InverseCheckOutcome(
        **vars(outcome),
        provider=result.provider,
        provider_source=result.sample.source,
        provider_timestamp=result.sample.timestamp,
    )


async def run_inverse_checks(
    symbols: list[str],
    context: FeederContext,
    checker: CrossChecker,
    events: CycleEvents | None = None,
) -> InverseCheckReport:
    """Run the watch-list check sequentially.

    :param symbols: Symbols to check.
    :param context: Feeder context for the fallback chain.
    :param checker: Cross-checker (its cycle cache is reused).
    :param events: Optional collector for chain events.
    :returns: InverseCheckReport.
    """
    report = InverseCheckReport()
    for symbol in symbols:
        report.results.append(await check_symbol(symbol, context, checker, events))

    if report.alerts:
        logger.warning(
            f"[CHECKER:INVERSE] {len(report.alerts)}/{report.tested} symbols need attention: "
            f"{', '.join(item.symbol for item in report.alerts)}"
        )
    return report
