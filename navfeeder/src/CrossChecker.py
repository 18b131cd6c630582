"""CrossChecker: Validate provider prices against an independent reference.

The reference is the Google Finance quote page. A pair is resolved by trying,
in order, the straight slug (``EURUSD``), the dashed slug (``EUR-USD``), an
override pattern for instruments quoted as futures (gold), and finally the
inverted pair (``USDCNY`` / ``USD-CNY``) whose reciprocal is used.

Extraction is done by pure functions on the fetched markup so parsing can be
exercised without the network:

.. code-block:: python

    >>> markup = '["EUR / USD",1,null,[1.0842,0.001]]'
    >>> extract_forex_price(markup, "EUR", "USD")
    1.0842

Each outcome is cached per cycle by ``(symbol, provider_price)``. Alerts
(differences above the threshold) accumulate until drained by the monitor.
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from urllib.parse import quote as url_quote

import httpx

logger = logging.getLogger(__name__)

FOREX_SYMBOL_PATTERN = re.compile(r"^[A-Z]{6}$")

# Max allowed difference in percent.
FX_THRESHOLD = 1.0
BULLION_THRESHOLD = 1.5

UNSUPPORTED_SYMBOL = "unsupported symbol"
PRICE_NOT_FOUND = "price not found"


@dataclass(frozen=True)
class SymbolOverride:
    """Reference instrument for a symbol not quoted as a currency pair."""

    futures_symbol: str
    exchange: str
    label: str
    tag: str


SYMBOL_OVERRIDES: dict[str, SymbolOverride] = {
    "XAUUSD": SymbolOverride(futures_symbol="GCW00", exchange="COMEX", label="Gold", tag="XAU"),
}

MarkupFetcher = Callable[[str], Awaitable[str]]


@dataclass
class CrossCheckOutcome:
    """Result of checking one provider price against the reference.

    :ivar symbol: Upper-case pair symbol.
    :ivar ok: True only if a reference was found and the diff is within threshold.
    :ivar provider_price: Price reported by the feeder's provider.
    :ivar reference_price: Reference price, or None if unresolved.
    :ivar diff_pct: Absolute difference in percent of the reference.
    :ivar threshold: Allowed difference in percent.
    :ivar resolution_path: "straight", "dashed", "inverse" or "override-<TAG>".
    :ivar inverse_used: True if the reference came from the inverted pair.
    :ivar inverse_symbol: Letters of the inverted slug that matched.
    :ivar alert: Alert message when the threshold was breached.
    :ivar error: Reason the check could not be completed.
    """

    symbol: str
    ok: bool
    provider_price: float
    threshold: float
    reference_price: float | None = None
    diff_pct: float | None = None
    resolution_path: str | None = None
    inverse_used: bool = False
    inverse_symbol: str | None = None
    alert: str | None = None
    error: str | None = None


def _parse_number(raw: str) -> float | None:
    try:
        value = float(raw.replace(",", ""))
    except ValueError:
        return None
    return value if math.isfinite(value) and value > 0 else None


def extract_forex_price(markup: str, base: str, quote: str) -> float | None:
    """Extract a ``BASE / QUOTE`` rate from quote-page markup.

    :param markup: Raw page body.
    :param base: Base currency (e.g., "EUR").
    :param quote: Quote currency (e.g., "USD").
    :returns: Positive price, or None if the pattern is absent.
    """
    pattern = re.compile(
        rf'"{re.escape(base)}\s*/\s*{re.escape(quote)}"\s*,\s*\d+\s*,\s*null\s*,\s*\[\s*(-?[\d.,]+?)\s*(?:,|\])',
        re.IGNORECASE,
    )
    match = pattern.search(markup)
    if not match:
        return None
    return _parse_number(match.group(1))


def extract_override_price(markup: str, symbol: str) -> float | None:
    """Extract the reference price of an override instrument.

    :param markup: Raw page body.
    :param symbol: Symbol with an entry in SYMBOL_OVERRIDES.
    :returns: Positive price, or None if the symbol has no override or no match.
    """
    override = SYMBOL_OVERRIDES.get(symbol.upper())
    if override is None:
        return None
    pattern = re.compile(
        rf'\["{re.escape(override.futures_symbol)}"\s*,\s*"{re.escape(override.exchange)}"\]\s*,\s*'
        rf'"{re.escape(override.label)}"\s*,\s*4\s*,\s*"USD"\s*,\s*\[\s*(-?[\d.,]+?)\s*(?:,|\])',
        re.IGNORECASE,
    )
    match = pattern.search(markup)
    if not match:
        return None
    return _parse_number(match.group(1))


def threshold_for(symbol: str) -> float:
    """Return the allowed difference in percent for a symbol."""
    return BULLION_THRESHOLD if symbol.upper() in SYMBOL_OVERRIDES else FX_THRESHOLD


class GoogleMarkupFetcher:
    """Fetches Google Finance quote pages.

    Two attempts per page; HTTP 429 and 503 are retried after 250 ms.

    :ivar client: HTTP client (defaults to a private one).
    """

    BASE_URL = "https://www.google.com/finance/quote"
    ATTEMPTS = 2
    BASE_DELAY = 0.25
    HEADERS = {
        "User-Agent": (
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36"
        ),
        "Accept": "text/html",
    }

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = 10.0) -> None:
        self.client = client
        self.timeout = timeout

    def build_url(self, slug: str) -> str:
        suffix = "" if (":" in slug or "-" in slug) else ":CURRENCY"
        return f"{self.BASE_URL}/{url_quote(slug, safe='-')}{suffix}"

    async def __call__(self, slug: str) -> str:
        if self.client is None:
            self.client = httpx.AsyncClient(follow_redirects=True)

        url = self.build_url(slug)
        for attempt in range(self.ATTEMPTS):
            response = await self.client.get(
                url,
                params={"hl": "en", "gl": "US"},
                headers=self.HEADERS,
                timeout=self.timeout,
            )
            if response.is_success:
                return response.text
            if response.status_code in (429, 503) and attempt < self.ATTEMPTS - 1:
                await asyncio.sleep(self.BASE_DELAY * 2**attempt)
                continue
            response.raise_for_status()
        raise httpx.HTTPError(f"Quote page request failed: {url}")

    async def aclose(self) -> None:
        if self.client is not None and not self.client.is_closed:
            await self.client.aclose()


@dataclass
class _Resolution:
    price: float | None = None
    path: str | None = None
    slug: str | None = None
    last_error: str | None = None
    markups: list[str] = field(default_factory=list)


class CrossChecker:
    """Cross-checks provider prices and collects alerts.

    :ivar fetch_markup: Async callable returning page markup for a slug.
    """

    def __init__(self, fetch_markup: MarkupFetcher | None = None) -> None:
        self.fetch_markup: MarkupFetcher = fetch_markup or GoogleMarkupFetcher()
        self._cycle_results: dict[tuple[str, float], CrossCheckOutcome] = {}
        self._latest: dict[str, CrossCheckOutcome] = {}
        self._alerts: list[CrossCheckOutcome] = []

    def reset_cycle(self) -> None:
        """Forget this cycle's outcomes so the next cycle re-fetches."""
        self._cycle_results.clear()

    def drain_alerts(self) -> list[CrossCheckOutcome]:
        """Return and clear the alerts collected since the last drain."""
        alerts, self._alerts = self._alerts, []
        return alerts

    @property
    def pending_alerts(self) -> int:
        return len(self._alerts)

    def last_outcome(self, symbol: str) -> CrossCheckOutcome | None:
        return self._latest.get(symbol.upper())

    async def aclose(self) -> None:
        """Close the markup fetcher if it owns a client."""
        close = getattr(self.fetch_markup, "aclose", None)
        if close is not None:
            await close()

    async def _try_slugs(self, slugs: list[str], base: str, quote: str) -> _Resolution:
        resolution = _Resolution()
        for slug in slugs:
            try:
                markup = await self.fetch_markup(slug)
            except Exception as e:
                resolution.last_error = f"{type(e).__name__}: {e}"
                logger.debug(f"[CHECKER] fetch {slug} failed: {resolution.last_error}")
                continue
            resolution.markups.append(markup)
            price = extract_forex_price(markup, base, quote)
            if price is not None:
                resolution.price = price
                resolution.slug = slug
                resolution.path = "dashed" if "-" in slug else "straight"
                return resolution
        return resolution

    async def check(self, symbol: str, provider_price: float) -> CrossCheckOutcome:
        """Check a provider price against the reference.

        :param symbol: Six-letter pair (e.g., "EURUSD", "XAUUSD").
        :param provider_price: Price reported by the provider.
        :returns: CrossCheckOutcome (never raises for lookup failures).
        """
        upper = symbol.upper()
        cache_key = (upper, provider_price)
        cached = self._cycle_results.get(cache_key)
        if cached is not None:
            logger.debug(f"[CHECKER:CACHED] {upper} @ {provider_price}")
            return cached

        outcome = await self._check(upper, provider_price)
        self._cycle_results[cache_key] = outcome
        self._latest[upper] = outcome
        return outcome

    async def _check(self, upper: str, provider_price: float) -> CrossCheckOutcome:
        outcome = CrossCheckOutcome(
            symbol=upper,
            ok=False,
            provider_price=provider_price,
            threshold=threshold_for(upper),
        )
        if not FOREX_SYMBOL_PATTERN.match(upper):
            outcome.error = UNSUPPORTED_SYMBOL
            return outcome

        base, quote = upper[:3], upper[3:]
        direct = await self._try_slugs([f"{base}{quote}", f"{base}-{quote}"], base, quote)
        reference = direct.price
        if reference is not None:
            outcome.resolution_path = direct.path
            if direct.path == "dashed":
                logger.info(f"[CHECKER:DASHED] {upper} via {direct.slug} = {reference:.6f}")

        if reference is None and upper in SYMBOL_OVERRIDES:
            for markup in direct.markups:
                reference = extract_override_price(markup, upper)
                if reference is not None:
                    outcome.resolution_path = f"override-{SYMBOL_OVERRIDES[upper].tag}"
                    logger.info(f"[CHECKER:OVERRIDE] {upper} = {reference:.6f}")
                    break

        if reference is None:
            inverse = await self._try_slugs([f"{quote}{base}", f"{quote}-{base}"], quote, base)
            if inverse.price is not None:
                reference = 1 / inverse.price
                outcome.resolution_path = "inverse"
                outcome.inverse_used = True
                outcome.inverse_symbol = re.sub(r"[^A-Z]", "", inverse.slug.upper())
                logger.info(f"[CHECKER:INVERSE] {upper} via {inverse.slug} = {reference:.6f}")
            elif direct.last_error or inverse.last_error:
                logger.debug(f"[CHECKER] {upper} last fetch error: {inverse.last_error or direct.last_error}")

        if reference is None:
            outcome.error = PRICE_NOT_FOUND
            logger.warning(f"[CHECKER:MISS] {upper} (no match)")
            return outcome

        outcome.reference_price = reference
        outcome.diff_pct = abs(provider_price - reference) / reference * 100
        if outcome.diff_pct <= outcome.threshold:
            outcome.ok = True
        else:
            outcome.alert = (
                f"[ALERT] {upper} diff {outcome.diff_pct:.2f}% "
                f"(provider {provider_price} vs reference {reference})"
            )
            logger.warning(outcome.alert)
            self._alerts.append(replace(outcome))
        return outcome
