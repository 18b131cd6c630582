"""Price cache for last-known-good samples.

Two stores live here:

- a short-TTL cache keyed by ``(provider, symbol)`` so repeated lookups within
  a cycle do not hit the network again, optionally mirrored to a JSON file;
- a last-known-good map keyed by asset aliases, replayed by the cache provider
  when the monitor forces a degraded read. It is stored in the same file under
  ``LAST_KNOWN_KEY`` so a restarted daemon can still fall back to it.

Writes are last-writer-wins. Every access path runs on one event loop so
there are never concurrent writers.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass
from pathlib import Path

from .PriceSample import PriceSample

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60.0
DEFAULT_CACHE_FILE = ".cache/prices.json"

# Top-level file key holding the last-known-good map.
LAST_KNOWN_KEY = "lastKnownGood"


@dataclass
class CacheEntry:
    """A cached sample and its expiry (unix seconds)."""

    sample: PriceSample
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


def cache_key(provider_name: str, symbol: str) -> str:
    """Build the cache key for a provider/symbol pair."""
    return f"{provider_name}::{symbol.upper()}"


class PriceCache:
    """TTL cache of provider samples plus a last-known-good price map.

    :ivar path: Optional JSON file mirroring both stores.
    :ivar ttl: Default time-to-live in seconds.
    """

    def __init__(self, path: str | Path | None = None, ttl: float = DEFAULT_TTL_SECONDS) -> None:
        self.path = Path(path) if path else None
        self.ttl = ttl
        self._entries: dict[str, CacheEntry] = {}
        self._last_good: dict[str, PriceSample] = {}
        self._disk_loaded = False

    def get(self, provider_name: str, symbol: str) -> PriceSample | None:
        """Return a fresh cached sample, or None if missing or expired."""
        self._load_disk()
        key = cache_key(provider_name, symbol)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(time.time()):
            del self._entries[key]
            self._persist()
            return None
        return entry.sample

    def set(
        self,
        provider_name: str,
        symbol: str,
        sample: PriceSample,
        ttl: float | None = None,
    ) -> None:
        """Store a sample for ``ttl`` seconds (default: cache TTL)."""
        self._load_disk()
        expires_at = time.time() + (self.ttl if ttl is None else ttl)
        self._entries[cache_key(provider_name, symbol)] = CacheEntry(sample, expires_at)
        self._persist()

    def clear(self) -> None:
        """Drop every TTL entry (the last-known-good map is kept)."""
        self._load_disk()
        self._entries.clear()
        self._persist()

    def remember_last_good(self, keys: list[str], sample: PriceSample) -> None:
        """Record a sample as last known good under every alias in ``keys``."""
        self._load_disk()
        for key in keys:
            self._last_good[key.upper()] = sample
        self._persist()

    def last_known(self, *keys: str) -> PriceSample | None:
        """Return the last-known-good sample for the first matching alias."""
        self._load_disk()
        for key in keys:
            sample = self._last_good.get(key.upper())
            if sample is not None:
                return sample
        return None

    def _load_disk(self) -> None:
        if self._disk_loaded:
            return
        self._disk_loaded = True
        if self.path is None or not self.path.exists():
            return

        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
            now = time.time()
            for alias, raw in (payload.pop(LAST_KNOWN_KEY, None) or {}).items():
                self._last_good[alias] = _load_sample(raw)
            for key, raw in payload.items():
                entry = CacheEntry(_load_sample(raw["sample"]), float(raw["expires_at"]))
                if not entry.is_expired(now):
                    self._entries[key] = entry
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Failed to load cache file {self.path}: {e}")

    def _persist(self) -> None:
        if self.path is None:
            return
        now = time.time()
        payload: dict = {}
        for key, entry in self._entries.items():
            if entry.is_expired(now):
                continue
            payload[key] = {"sample": _dump_sample(entry.sample), "expires_at": entry.expires_at}
        if self._last_good:
            payload[LAST_KNOWN_KEY] = {alias: _dump_sample(s) for alias, s in self._last_good.items()}

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as e:
            logger.warning(f"Failed to write cache file {self.path}: {e}")


def _dump_sample(sample: PriceSample) -> dict:
    fields = asdict(sample)
    # Serialize as string so big integers survive any JSON reader.
    fields["value"] = str(sample.value)
    return fields


def _load_sample(raw: dict) -> PriceSample:
    fields = dict(raw)
    fields["value"] = int(fields["value"])
    return PriceSample(**fields)
