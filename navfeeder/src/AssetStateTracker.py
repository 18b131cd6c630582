"""AssetStateTracker: Per-asset circuit breaker for the monitor daemon.

Every asset moves through a small state machine, updated once per cycle:

- an update resets the skip counter and leaves the retry queue;
- a skip bumps the counter and puts the asset on the retry queue, which is
  polled exclusively on the next cycle;
- more than ``force_close_after`` consecutive skips switches the asset to
  close prices with the last-known-good cache as a final fallback;
- an on-chain commit error pauses the asset for ``pause_seconds``.

.. code-block:: python

    >>> tracker = AssetStateTracker(["EURUSD", "XAUUSD"])
    >>> tracker.select_targets()
    ['EURUSD', 'XAUUSD']
    >>> tracker.record_skip("EURUSD")
    False
    >>> tracker.select_targets()
    ['EURUSD']
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from .FeederContext import FetchOverride

logger = logging.getLogger(__name__)


@dataclass
class AssetState:
    """Tracks the health of a single asset.

    :ivar consecutive_skips: Cycles in a row without a price.
    :ivar force_close: Fetch close prices and allow cache replay.
    :ivar paused_until: Unix timestamp when a commit pause ends.
    :ivar total_skips: Skips since tracking began.
    :ivar total_updates: Updates since tracking began.
    """

    consecutive_skips: int = 0
    force_close: bool = False
    paused_until: float | None = None
    total_skips: int = 0
    total_updates: int = 0

    def is_paused(self, now: float) -> bool:
        return self.paused_until is not None and now < self.paused_until


class AssetStateTracker:
    """Tracks per-asset skip counters, pauses and the retry queue.

    :ivar assets: Asset universe in polling order.
    :ivar force_close_after: Skips tolerated before forcing close prices.
    :ivar pause_seconds: Pause applied after a commit error.
    """

    DEFAULT_FORCE_CLOSE_AFTER = 3
    DEFAULT_PAUSE_SECONDS = 3600  # 1 hour

    def __init__(
        self,
        assets: list[str],
        force_close_after: int = DEFAULT_FORCE_CLOSE_AFTER,
        pause_seconds: float = DEFAULT_PAUSE_SECONDS,
    ) -> None:
        self.assets = [a.upper() for a in assets]
        self.force_close_after = force_close_after
        self.pause_seconds = pause_seconds
        self._state: dict[str, AssetState] = {a: AssetState() for a in self.assets}
        self._retry_queue: list[str] = []

    def _get(self, asset: str) -> AssetState:
        key = asset.upper()
        if key not in self._state:
            self._state[key] = AssetState()
            self.assets.append(key)
        return self._state[key]

    def _leave_retry_queue(self, key: str) -> None:
        if key in self._retry_queue:
            self._retry_queue.remove(key)

    def record_success(self, asset: str) -> None:
        """Record an update, clearing the skip counter and forced close mode."""
        state = self._get(asset)
        state.consecutive_skips = 0
        state.force_close = False
        state.total_updates += 1
        self._leave_retry_queue(asset.upper())

    def record_skip(self, asset: str) -> bool:
        """Record a skip and queue the asset for retry.

        :param asset: Asset key.
        :returns: True if this skip switched the asset to forced close mode.
        """
        key = asset.upper()
        state = self._get(key)
        state.consecutive_skips += 1
        state.total_skips += 1
        if key not in self._retry_queue:
            self._retry_queue.append(key)

        if state.consecutive_skips > self.force_close_after and not state.force_close:
            state.force_close = True
            logger.warning(
                f"[ALERT] {key} skipped {state.consecutive_skips} cycles in a row, "
                f"forcing close prices with cache fallback"
            )
            return True
        return False

    def record_commit_error(self, asset: str) -> float:
        """Pause an asset after an on-chain commit error.

        :param asset: Asset key.
        :returns: Unix timestamp when the pause ends.
        """
        key = asset.upper()
        state = self._get(key)
        state.paused_until = time.time() + self.pause_seconds
        state.consecutive_skips = 0
        state.force_close = False
        self._leave_retry_queue(key)
        logger.warning(f"[ALERT] {key} paused for {self.pause_seconds:g}s after commit error")
        return state.paused_until

    def requeue(self, assets: list[str]) -> None:
        """Put assets on the retry queue without touching their counters."""
        for asset in assets:
            key = asset.upper()
            self._get(key)
            if key not in self._retry_queue:
                self._retry_queue.append(key)

    def release_expired(self) -> list[str]:
        """Clear elapsed pauses.

        :returns: Assets that re-entered the polling pool.
        """
        now = time.time()
        resumed = []
        for key, state in self._state.items():
            if state.paused_until is not None and now >= state.paused_until:
                state.paused_until = None
                resumed.append(key)
                logger.info(f"{key} pause elapsed, back in the polling pool")
        return resumed

    def select_targets(self) -> list[str]:
        """Pick the assets to poll this cycle.

        The retry queue (minus paused assets) is polled exclusively when it is
        non-empty; otherwise every non-paused asset is polled.

        :returns: Asset keys, possibly empty if everything is paused.
        """
        now = time.time()
        queued = [a for a in self._retry_queue if not self._state[a].is_paused(now)]
        if queued:
            return queued
        return [a for a in self.assets if not self._state[a].is_paused(now)]

    def next_resume_at(self) -> float | None:
        """Return the earliest pause end among paused assets."""
        now = time.time()
        ends = [s.paused_until for s in self._state.values() if s.is_paused(now)]
        return min(ends) if ends else None

    def fetch_override(self, asset: str) -> FetchOverride:
        """Return the fetch mode implied by the asset's state."""
        state = self._get(asset)
        return FetchOverride(force_close=state.force_close, use_last_known=state.force_close)

    def get_state(self, asset: str) -> AssetState | None:
        return self._state.get(asset.upper())

    def is_paused(self, asset: str) -> bool:
        state = self._state.get(asset.upper())
        return state is not None and state.is_paused(time.time())

    @property
    def retry_queue(self) -> list[str]:
        return list(self._retry_queue)

    def reset_all(self) -> None:
        """Reset every asset to its initial state."""
        self._state = {a: AssetState() for a in self.assets}
        self._retry_queue = []
