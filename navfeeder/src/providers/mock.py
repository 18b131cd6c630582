"""Static in-memory provider for dry runs and tests."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping

from ..PriceSample import PriceSample
from .base import BaseProvider


class MockProvider(BaseProvider):
    """Serves fixed samples keyed by upper-case symbol.

    :ivar samples: Symbol to sample (None means "no data").
    :ivar delay: Optional artificial latency in seconds.
    """

    name = "mock"

    def __init__(
        self,
        samples: Mapping[str, PriceSample | None] | None = None,
        *,
        label: str | None = None,
        delay: float = 0.0,
    ):
        super().__init__()
        if label:
            self.name = label
        self.samples = {key.upper(): value for key, value in (samples or {}).items()}
        self.delay = delay
        self.calls: list[str] = []

    async def get(self, symbol: str, *, prefer_close: bool = False) -> PriceSample | None:
        upper = symbol.upper()
        self.calls.append(upper)
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.samples.get(upper)
