"""Unit tests for PriceFeeder."""

from unittest.mock import patch

import pytest

from navfeeder.src.CrossChecker import CrossChecker
from navfeeder.src.OracleContract import OnChainPrice
from navfeeder.src.PriceFeeder import (
    STATUS_SKIPPED,
    STATUS_UPDATED,
    CommitError,
    FeederError,
    PriceFeeder,
    parse_force_timestamp,
)
from navfeeder.src.PriceSample import PriceSample, compute_asset_id

NOW = 1_700_000_000
EUR = PriceSample("EURUSD", 1_234_500, 6, NOW - 30)
GOLD = PriceSample("XAUUSD", 20_345_000, 4, NOW - 30)


class TestFeederSummary:
    """Test harvesting without commits."""

    async def test_fallback_sample_normalized(self, make_context) -> None:
        """Primary empty, fallback 1.2345@6: one degraded update at 18 decimals."""
        context = make_context(exchange_rate={"EURUSD": EUR})
        summary = await PriceFeeder(context).run(["EURUSD"])

        assert summary.total == 1
        assert summary.updated == 1
        assert summary.degraded == 1
        assert summary.skipped == 0
        assert summary.dry_run is True

        quote = summary.harvested[0]
        assert quote.value == 1234500000000000000
        assert quote.decimals == 18
        assert quote.asset_id == compute_asset_id("EURUSD")
        assert quote.provider == "exchange-rate"
        assert quote.fallback is True

    async def test_counts_add_up(self, make_context) -> None:
        """updated + skipped == total, unknown assets included."""
        context = make_context(yahoo={"EURUSD": EUR})
        summary = await PriceFeeder(context).run(["EURUSD", "XAUUSD", "ZARUSD"])

        assert summary.total == 3
        assert summary.updated + summary.skipped == summary.total
        assert [r.status for r in summary.results] == [STATUS_UPDATED, STATUS_SKIPPED, STATUS_SKIPPED]
        assert summary.results[1].message == "no-data"

    async def test_aliases_resolved(self, make_context) -> None:
        """Aliases map to their canonical asset."""
        context = make_context(yahoo={"XAUUSD": GOLD})
        summary = await PriceFeeder(context).run(["gold"])
        assert summary.results[0].asset_key == "XAUUSD"

    async def test_empty_target_list(self, make_context) -> None:
        """An empty symbol list is a configuration error."""
        with pytest.raises(FeederError, match="No symbols"):
            await PriceFeeder(make_context()).run([])

    async def test_commit_without_oracle(self, make_context) -> None:
        """Committing requires an oracle."""
        with pytest.raises(FeederError, match="Oracle contract not available"):
            await PriceFeeder(make_context()).run(["EURUSD"], commit=True)

    async def test_cross_check_alerts_collected(self, make_context) -> None:
        """Checker breaches end up in the summary."""

        async def markup(slug: str) -> str:
            return '["EUR / USD",1,null,[1.0,0.1]]'

        context = make_context(yahoo={"EURUSD": EUR})
        summary = await PriceFeeder(context, checker=CrossChecker(markup)).run(["EURUSD"])

        assert len(summary.checker_alerts) == 1
        assert summary.checker_alerts[0].symbol == "EURUSD"


class TestTimestamps:
    """Test timestamp sanitizing."""

    @patch("navfeeder.src.PriceFeeder.time.time")
    async def test_clamped_to_chain_time(self, mock_time, make_context, fake_oracle) -> None:
        """Future timestamps are clamped to min(wall clock, chain + 60)."""
        mock_time.return_value = NOW
        future = PriceSample("EURUSD", 1, 0, NOW + 1000)
        oracle = fake_oracle(chain_time=NOW - 1000)

        summary = await PriceFeeder(make_context(yahoo={"EURUSD": future}), oracle).run(["EURUSD"])
        assert summary.harvested[0].timestamp == NOW - 1000 + 60

    @patch("navfeeder.src.PriceFeeder.time.time")
    async def test_bumped_past_stored(self, mock_time, make_context, fake_oracle) -> None:
        """A timestamp not newer than the stored one becomes stored + 1."""
        mock_time.return_value = NOW
        oracle = fake_oracle(chain_time=NOW)
        oracle.stored[compute_asset_id("EURUSD")] = OnChainPrice(1, NOW, 18, False)

        summary = await PriceFeeder(make_context(yahoo={"EURUSD": EUR}), oracle).run(["EURUSD"])
        assert summary.harvested[0].timestamp == NOW + 1

    @patch("navfeeder.src.PriceFeeder.time.time")
    async def test_force_timestamp(self, mock_time, make_context) -> None:
        """force_timestamp overrides sample times."""
        mock_time.return_value = NOW
        context = make_context(yahoo={"EURUSD": EUR})

        summary = await PriceFeeder(context).run(["EURUSD"], force_timestamp="now")
        assert summary.harvested[0].timestamp == NOW

        summary = await PriceFeeder(context).run(["EURUSD"], force_timestamp=NOW - 500)
        assert summary.harvested[0].timestamp == NOW - 500

    def test_parse_force_timestamp(self) -> None:
        """Only 'now' and integers are accepted."""
        assert parse_force_timestamp(" NOW ") == "now"
        assert parse_force_timestamp("123") == 123
        assert parse_force_timestamp(None) is None
        with pytest.raises(FeederError, match="Invalid force timestamp"):
            parse_force_timestamp("yesterday")


class TestCommit:
    """Test on-chain commits."""

    async def test_per_asset_commit(self, make_context, fake_oracle) -> None:
        """Each quote is written and its tx hash recorded."""
        oracle = fake_oracle()
        context = make_context(yahoo={"EURUSD": EUR, "XAUUSD": GOLD})
        summary = await PriceFeeder(context, oracle).run(["EURUSD", "XAUUSD"], commit=True)

        assert summary.dry_run is False
        assert len(summary.tx_hashes) == 2
        assert oracle.writes == ["EURUSD", "XAUUSD"]

    async def test_batch_commit(self, make_context, fake_oracle) -> None:
        """Batch-capable oracles get one transaction."""
        oracle = fake_oracle(batch=True)
        context = make_context(yahoo={"EURUSD": EUR, "XAUUSD": GOLD})
        summary = await PriceFeeder(context, oracle).run(["EURUSD", "XAUUSD"], commit=True)

        assert len(summary.tx_hashes) == 1
        assert oracle.writes == ["EURUSD", "XAUUSD"]

    async def test_partial_commit_failure(self, make_context, fake_oracle) -> None:
        """Failed writes are reported together; the others still land."""
        oracle = fake_oracle(fail=["XAUUSD"])
        context = make_context(yahoo={"EURUSD": EUR, "XAUUSD": GOLD})

        with pytest.raises(CommitError) as exc_info:
            await PriceFeeder(context, oracle).run(["EURUSD", "XAUUSD"], commit=True)

        error = exc_info.value
        assert error.asset_keys == ["XAUUSD"]
        assert error.summary.updated == 2
        assert len(error.summary.tx_hashes) == 1
        assert oracle.writes == ["EURUSD"]

    async def test_batch_failure_names_every_asset(self, make_context, fake_oracle) -> None:
        """A reverted batch fails every asset in it."""
        oracle = fake_oracle(batch=True, fail=["XAUUSD"])
        context = make_context(yahoo={"EURUSD": EUR, "XAUUSD": GOLD})

        with pytest.raises(CommitError) as exc_info:
            await PriceFeeder(context, oracle).run(["EURUSD", "XAUUSD"], commit=True)

        assert exc_info.value.asset_keys == ["EURUSD", "XAUUSD"]
        assert oracle.writes == []
