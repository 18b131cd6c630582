"""Unit tests for AssetStateTracker."""

from unittest.mock import patch

from navfeeder.src.AssetStateTracker import AssetState, AssetStateTracker
from navfeeder.src.FeederContext import FetchOverride


class TestAssetStateTrackerInit:
    """Test AssetStateTracker initialization."""

    def test_init_with_assets(self) -> None:
        """Assets should be tracked upper-case from init."""
        tracker = AssetStateTracker(["eurusd", "XAUUSD"])
        assert tracker.assets == ["EURUSD", "XAUUSD"]
        assert tracker.get_state("EURUSD") == AssetState()

    def test_custom_thresholds(self) -> None:
        """Custom thresholds should be stored."""
        tracker = AssetStateTracker(["a"], force_close_after=5, pause_seconds=60)
        assert tracker.force_close_after == 5
        assert tracker.pause_seconds == 60

    def test_initial_targets(self) -> None:
        """Every asset is polled initially."""
        tracker = AssetStateTracker(["A", "B", "C"])
        assert tracker.select_targets() == ["A", "B", "C"]


class TestSkips:
    """Test skip recording and forced close mode."""

    def test_skip_joins_retry_queue(self) -> None:
        """A skipped asset is polled exclusively next cycle."""
        tracker = AssetStateTracker(["A", "B"])
        tracker.record_skip("B")

        assert tracker.retry_queue == ["B"]
        assert tracker.select_targets() == ["B"]

    def test_force_close_after_more_than_three(self) -> None:
        """force_close turns on at the fourth consecutive skip, not before."""
        tracker = AssetStateTracker(["A"])

        assert [tracker.record_skip("A") for _ in range(3)] == [False, False, False]
        assert tracker.get_state("A").force_close is False

        assert tracker.record_skip("A") is True
        assert tracker.get_state("A").force_close is True
        assert tracker.fetch_override("A") == FetchOverride(force_close=True, use_last_known=True)

        # Already forced: no second switch
        assert tracker.record_skip("A") is False

    def test_success_resets(self) -> None:
        """A success clears the counter, forced mode and the retry queue."""
        tracker = AssetStateTracker(["A", "B"])
        for _ in range(4):
            tracker.record_skip("A")

        tracker.record_success("A")
        state = tracker.get_state("A")

        assert state.consecutive_skips == 0
        assert state.force_close is False
        assert state.total_skips == 4
        assert state.total_updates == 1
        assert tracker.retry_queue == []
        assert tracker.fetch_override("A").is_empty

    def test_interleaved_skips_do_not_force(self) -> None:
        """Skips separated by a success never reach forced mode."""
        tracker = AssetStateTracker(["A"])
        for _ in range(3):
            tracker.record_skip("A")
        tracker.record_success("A")
        for _ in range(3):
            tracker.record_skip("A")

        assert tracker.get_state("A").force_close is False

    def test_requeue_keeps_counters(self) -> None:
        """requeue only touches the retry queue."""
        tracker = AssetStateTracker(["A", "B"])
        tracker.requeue(["A", "B", "A"])

        assert tracker.retry_queue == ["A", "B"]
        assert tracker.get_state("A").consecutive_skips == 0

    def test_unknown_asset_added(self) -> None:
        """Recording for an unknown asset starts tracking it."""
        tracker = AssetStateTracker(["A"])
        tracker.record_skip("z")
        assert "Z" in tracker.assets
        assert tracker.get_state("Z").consecutive_skips == 1


class TestPauses:
    """Test commit-error pauses."""

    @patch("navfeeder.src.AssetStateTracker.time.time")
    def test_paused_asset_never_selected(self, mock_time) -> None:
        """A paused asset is excluded from both the queue and the universe."""
        mock_time.return_value = 1000.0
        tracker = AssetStateTracker(["A", "B"], pause_seconds=3600)
        tracker.record_skip("A")

        until = tracker.record_commit_error("A")

        assert until == 4600.0
        assert tracker.is_paused("A") is True
        assert tracker.retry_queue == []
        assert tracker.select_targets() == ["B"]

        tracker.record_skip("B")
        assert tracker.select_targets() == ["B"]

    @patch("navfeeder.src.AssetStateTracker.time.time")
    def test_queue_of_paused_assets_falls_back_to_pool(self, mock_time) -> None:
        """A retry queue holding only paused assets yields the non-paused pool."""
        mock_time.return_value = 1000.0
        tracker = AssetStateTracker(["A", "B"])
        tracker.record_commit_error("A")
        tracker.requeue(["A"])

        assert tracker.select_targets() == ["B"]

    @patch("navfeeder.src.AssetStateTracker.time.time")
    def test_pause_elapses(self, mock_time) -> None:
        """After the pause the asset is released back to the pool."""
        mock_time.return_value = 1000.0
        tracker = AssetStateTracker(["A"], pause_seconds=60)
        tracker.record_commit_error("A")

        assert tracker.select_targets() == []
        assert tracker.next_resume_at() == 1060.0

        mock_time.return_value = 1060.0
        assert tracker.release_expired() == ["A"]
        assert tracker.get_state("A").paused_until is None
        assert tracker.select_targets() == ["A"]
        assert tracker.next_resume_at() is None

    @patch("navfeeder.src.AssetStateTracker.time.time")
    def test_commit_error_resets_counters(self, mock_time) -> None:
        """A commit error clears the skip counter and forced mode."""
        mock_time.return_value = 1000.0
        tracker = AssetStateTracker(["A"])
        for _ in range(4):
            tracker.record_skip("A")

        tracker.record_commit_error("A")
        state = tracker.get_state("A")

        assert state.consecutive_skips == 0
        assert state.force_close is False

    def test_reset_all(self) -> None:
        """reset_all clears every asset and the queue."""
        tracker = AssetStateTracker(["A", "B"])
        tracker.record_skip("A")
        tracker.record_commit_error("B")

        tracker.reset_all()

        assert tracker.retry_queue == []
        assert tracker.select_targets() == ["A", "B"]
