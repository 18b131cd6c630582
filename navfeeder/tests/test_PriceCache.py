"""Unit tests for PriceCache."""

import json
from unittest.mock import patch

from navfeeder.src.PriceCache import LAST_KNOWN_KEY, PriceCache, cache_key
from navfeeder.src.PriceSample import PriceSample


def make_sample(value: int = 1_234_500) -> PriceSample:
    return PriceSample("EURUSD", value, 6, 1_700_000_000)


class TestTtlCache:
    """Test the per-provider TTL cache."""

    def test_cache_key(self) -> None:
        """Keys combine provider and upper-case symbol."""
        assert cache_key("yahoo", "eurusd") == "yahoo::EURUSD"

    @patch("navfeeder.src.PriceCache.time.time")
    def test_hit_within_ttl(self, mock_time) -> None:
        """A sample is served until its TTL elapses."""
        mock_time.return_value = 1000.0
        cache = PriceCache(ttl=60)
        cache.set("yahoo", "EURUSD", make_sample())

        mock_time.return_value = 1059.0
        assert cache.get("yahoo", "eurusd") == make_sample()

    @patch("navfeeder.src.PriceCache.time.time")
    def test_expired_entry_dropped(self, mock_time) -> None:
        """Expired entries read as missing."""
        mock_time.return_value = 1000.0
        cache = PriceCache(ttl=60)
        cache.set("yahoo", "EURUSD", make_sample())

        mock_time.return_value = 1061.0
        assert cache.get("yahoo", "EURUSD") is None

    def test_providers_isolated(self) -> None:
        """Entries are per provider."""
        cache = PriceCache()
        cache.set("yahoo", "EURUSD", make_sample())
        assert cache.get("stooq", "EURUSD") is None

    def test_clear_keeps_last_good(self) -> None:
        """clear() drops TTL entries but not the last-known-good map."""
        cache = PriceCache()
        cache.set("yahoo", "EURUSD", make_sample())
        cache.remember_last_good(["EURUSD"], make_sample(7))
        cache.clear()
        assert cache.get("yahoo", "EURUSD") is None
        assert cache.last_known("EURUSD").value == 7


class TestLastKnownGood:
    """Test the last-known-good map."""

    def test_aliases(self) -> None:
        """A sample is reachable under every alias it was stored with."""
        cache = PriceCache()
        cache.remember_last_good(["GOLD", "xauusd"], make_sample(5))
        assert cache.last_known("XAUUSD").value == 5
        assert cache.last_known("gold").value == 5

    def test_first_match_wins(self) -> None:
        """last_known returns the first alias with a sample."""
        cache = PriceCache()
        cache.remember_last_good(["B"], make_sample(2))
        assert cache.last_known("A", "B").value == 2
        assert cache.last_known("A") is None


class TestDiskMirror:
    """Test the optional JSON file."""

    def test_round_trip_through_file(self, tmp_path) -> None:
        """A new cache instance reloads unexpired entries from disk."""
        path = tmp_path / "cache.json"
        PriceCache(path).set("yahoo", "EURUSD", make_sample(10**30))

        stored = json.loads(path.read_text())
        assert stored["yahoo::EURUSD"]["sample"]["value"] == str(10**30)
        assert PriceCache(path).get("yahoo", "EURUSD").value == 10**30

    def test_last_known_reloaded(self, tmp_path) -> None:
        """Last-known-good prices are kept in the file and survive a restart."""
        path = tmp_path / "cache.json"
        PriceCache(path).remember_last_good(["GOLD", "XAUUSD"], make_sample(42))

        stored = json.loads(path.read_text())
        assert stored[LAST_KNOWN_KEY]["XAUUSD"]["value"] == "42"

        restarted = PriceCache(path)
        assert restarted.last_known("gold").value == 42
        assert restarted.get("yahoo", "XAUUSD") is None

    def test_ttl_write_keeps_last_known(self, tmp_path) -> None:
        """Writing a TTL entry does not drop last-known prices already on disk."""
        path = tmp_path / "cache.json"
        PriceCache(path).remember_last_good(["EURUSD"], make_sample(3))
        PriceCache(path).set("yahoo", "EURUSD", make_sample())

        assert PriceCache(path).last_known("EURUSD").value == 3

    def test_corrupt_file_ignored(self, tmp_path) -> None:
        """A corrupt file is logged and treated as empty."""
        path = tmp_path / "cache.json"
        path.write_text("{not json")
        assert PriceCache(path).get("yahoo", "EURUSD") is None
