"""PriceSample: Fixed-point price observations and 18-decimal normalization.

Providers return prices as integers scaled by a provider-specific number of
decimals. Before anything is aggregated or committed on-chain the value is
rescaled to the canonical 18 decimals:

.. code-block:: python

    >>> sample = PriceSample("EURUSD", 1_234_500, 6, 1_700_000_000)
    >>> normalize_to_18(sample.value, sample.decimals)
    1234500000000000000
    >>> parse_price("1.2345")
    (12345, 4)
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import ROUND_DOWN, Decimal, InvalidOperation

from web3 import Web3

# Canonical precision for everything committed on-chain.
NUM_DECIMALS = 18


@dataclass(frozen=True)
class PriceSample:
    """A single price observation returned by a provider.

    :ivar symbol: Lookup symbol the provider was queried with (e.g. "EURUSD").
    :ivar value: Price as a non-negative integer scaled by ``10**decimals``.
    :ivar decimals: Number of decimals encoded in ``value``.
    :ivar timestamp: Unix seconds of the observation.
    :ivar degraded: True for close prices, cache replays and fallback wins.
    :ivar source: Provider-defined label kept for audit (e.g. "regular", "close").
    """

    symbol: str
    value: int
    decimals: int
    timestamp: int
    degraded: bool = False
    source: str = "regular"

    def __post_init__(self) -> None:
        if self.value < 0:
            raise ValueError(f"Price value must be non-negative, got {self.value}")
        if self.decimals < 0:
            raise ValueError(f"Decimals must be non-negative, got {self.decimals}")

    def as_float(self) -> float:
        """Return the price as a float (for logging and cross-checks)."""
        return self.value / (10 ** self.decimals)

    def as_degraded(self) -> PriceSample:
        """Return a copy flagged as degraded."""
        if self.degraded:
            return self
        return replace(self, degraded=True)


@dataclass(frozen=True)
class NormalizedQuote:
    """A PriceSample rescaled to 18 decimals and keyed by on-chain asset id.

    :ivar asset_key: Logical asset key (upper-case, e.g. "XAUUSD").
    :ivar symbol: Lookup symbol used to fetch the price.
    :ivar asset_id: keccak256 of the asset key, as committed on-chain.
    :ivar value: Price scaled by ``10**18``.
    :ivar timestamp: Sanitized unix seconds.
    :ivar degraded: Degraded flag carried over from the sample.
    :ivar provider: Name of the provider that produced the sample.
    :ivar fallback: True if the provider was not first in the chain.
    """

    asset_key: str
    symbol: str
    asset_id: bytes
    value: int
    timestamp: int
    degraded: bool
    provider: str
    fallback: bool = False

    @property
    def decimals(self) -> int:
        """Normalized quotes always carry 18 decimals."""
        return NUM_DECIMALS


def infer_decimals(raw: str) -> int:
    """Infer the number of decimals from a decimal string, capped at 18.

    :param raw: Decimal string such as "1.2345".
    :returns: Length of the fractional part (max 18).
    """
    _, _, fractional = raw.strip().partition(".")
    return min(len(fractional), NUM_DECIMALS)


def parse_price(raw: str, decimals: int | None = None) -> tuple[int, int]:
    """Convert a decimal string into a fixed-point integer.

    Extra fractional digits beyond ``decimals`` are truncated.

    :param raw: Decimal string (e.g. "1.2345").
    :param decimals: Target decimals; inferred from ``raw`` when omitted.
    :returns: Tuple of (amount, decimals).
    :raises ValueError: If the string is not a finite non-negative number.
    """
    text = raw.strip()
    target = infer_decimals(text) if decimals is None else decimals
    try:
        number = Decimal(text)
    except InvalidOperation as e:
        raise ValueError(f"Invalid price string: {raw!r}") from e
    if not number.is_finite() or number < 0:
        raise ValueError(f"Invalid price string: {raw!r}")

    scaled = (number * (Decimal(10) ** target)).quantize(Decimal(1), rounding=ROUND_DOWN)
    return int(scaled), target


def sample_from_float(
    symbol: str,
    price: float,
    decimals: int,
    timestamp: int,
    *,
    degraded: bool = False,
    source: str = "regular",
) -> PriceSample:
    """Build a PriceSample from a float price rounded to ``decimals`` places."""
    amount, _ = parse_price(f"{price:.{decimals}f}", decimals)
    return PriceSample(
        symbol=symbol,
        value=amount,
        decimals=decimals,
        timestamp=timestamp,
        degraded=degraded,
        source=source,
    )


def normalize_to_18(value: int, decimals: int) -> int:
    """Rescale a fixed-point value to 18 decimals.

    Scaling up is exact; scaling down truncates toward zero.

    :param value: Fixed-point integer.
    :param decimals: Decimals encoded in ``value``.
    :returns: Value scaled by ``10**18``.
    """
    if decimals == NUM_DECIMALS:
        return value
    if decimals > NUM_DECIMALS:
        return value // (10 ** (decimals - NUM_DECIMALS))
    return value * (10 ** (NUM_DECIMALS - decimals))


def compute_asset_id(asset_key: str) -> bytes:
    """Compute the on-chain asset id as keccak256 of the upper-case key.

    .. code-block:: python

        >>> len(compute_asset_id("XAUUSD"))
        32
    """
    return bytes(Web3.keccak(text=asset_key.upper()))
