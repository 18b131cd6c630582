"""NavMonitor: The supervising daemon around the price feeder.

One cycle:

1. release elapsed pauses and select targets (retry queue first);
2. apply per-asset fetch overrides and run the feeder;
3. run the watch-list cross-check and, after commits, read prices back;
4. update the per-asset state machine from the cycle outcome;
5. evaluate alerts and the commit guard latch;
6. write the run/inverse reports, trigger E2E verification, notify.

A cycle-fatal feeder failure skips steps 3-6 (no report is written) and delays the
next cycle with exponential backoff.
"""

from __future__ import annotations

import asyncio
import logging
import random
import signal
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .AssetFeeds import MONITORED_SYMBOLS, resolve_asset_feed, resolve_targets
from .AssetStateTracker import AssetStateTracker
from .CrossChecker import CrossChecker
from .E2ERunner import E2ERunner, E2EResult
from .FallbackChain import CycleEvents
from .FeederContext import FeederContext
from .InverseSanity import InverseCheckReport, run_inverse_checks
from .Notifier import WebhookNotifier
from .PriceFeeder import STATUS_SKIPPED, STATUS_UPDATED, CommitError, FeederSummary, PriceFeeder
from .Reports import (
    INVERSE_REPORT_FILE,
    RUN_REPORT_FILE,
    ReportValidationError,
    ReportWriter,
    SymbolFeedInfo,
    average_diffs,
    build_inverse_report,
    build_run_report,
    format_archive_label,
    format_ts,
    provider_rates,
)
from .providers import BaseProvider

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 300.0
DEFAULT_MAX_CHECKER_ALERTS = 2
MAX_FALLBACK_RATIO = 0.25
STALE_AFTER_SECONDS = 30 * 60
MIN_PAUSED_WAIT_SECONDS = 5.0
MIN_BACKOFF_CAP_SECONDS = 3600.0

# On-chain read-back tolerances
DESYNC_MAX_TS_DELTA = 600
DESYNC_MAX_PRICE_RATIO = 0.01


@dataclass
class MonitorOptions:
    """Resolved daemon configuration.

    :ivar network: Network name, passed to E2E and the webhook.
    :ivar symbols: Asset universe; None means every configured asset.
    :ivar interval: Seconds between cycle starts.
    :ivar jitter: Max random deviation from the interval in seconds.
    :ivar commit: Commit prices on-chain.
    :ivar once: Run a single cycle and return.
    :ivar force_timestamp: "now" or unix seconds passed to the feeder.
    :ivar max_checker_alerts: Checker alerts tolerated before the guard trips.
    :ivar safe_mode: Disable commits and E2E unconditionally.
    :ivar monitored: Watch-list symbols for the inverse sanity run.
    """

    network: str | None = None
    symbols: list[str] | None = None
    interval: float = DEFAULT_INTERVAL_SECONDS
    jitter: float = 0.0
    commit: bool = False
    once: bool = False
    force_timestamp: str | int | None = None
    max_checker_alerts: int = DEFAULT_MAX_CHECKER_ALERTS
    safe_mode: bool = False
    monitored: tuple[str, ...] = MONITORED_SYMBOLS


@dataclass
class CycleOutcome:
    """What one successful cycle produced."""

    summary: FeederSummary
    inverse: InverseCheckReport
    label: str
    cycle_ms: float
    fallback_ratio: float
    checker_alerts: int
    by_provider: dict[str, int] = field(default_factory=dict)
    desynced: list[str] = field(default_factory=list)
    e2e: E2EResult | None = None
    webhook_payload: dict | None = None


def provider_order(symbols: tuple[str, ...] | list[str]) -> list[str]:
    """Distinct provider names across the symbols' chains, in chain order."""
    order: list[str] = []
    for symbol in symbols:
        feed = resolve_asset_feed(symbol)
        if feed is None:
            continue
        for name in feed.provider_names:
            if name not in order:
                order.append(name)
    return order


def backoff_delay(interval: float, failures: int) -> float:
    """Delay after ``failures`` consecutive cycle-fatal errors.

    :returns: ``interval * 2**(failures-1)`` capped at ``max(6*interval, 3600)``.
    """
    if failures <= 0:
        return interval
    cap = max(interval * 6, MIN_BACKOFF_CAP_SECONDS)
    return min(interval * 2 ** (failures - 1), cap)


class NavMonitor:
    """Runs feeder cycles on a schedule and supervises their outcome.

    :ivar options: Daemon configuration.
    :ivar context: Providers, caches and fetch overrides.
    :ivar feeder: Price feeder (its oracle is used for read-back).
    :ivar checker: Cross-checker shared by the feeder and watch-list run.
    :ivar tracker: Per-asset circuit breaker state.
    :ivar writer: Report writer.
    :ivar notifier: Operations webhook.
    :ivar e2e: End-to-end verification launcher.
    :ivar commit_blocked: Guard latch; only :meth:`reset_commit_guard` clears it.
    """

    def __init__(
        self,
        options: MonitorOptions,
        context: FeederContext,
        feeder: PriceFeeder,
        checker: CrossChecker,
        tracker: AssetStateTracker | None = None,
        writer: ReportWriter | None = None,
        notifier: WebhookNotifier | None = None,
        e2e: E2ERunner | None = None,
    ) -> None:
        self.options = options
        self.context = context
        self.feeder = feeder
        self.checker = checker
        self.tracker = tracker or AssetStateTracker([f.asset_key for f in resolve_targets(options.symbols)])
        self.writer = writer or ReportWriter()
        self.notifier = notifier or WebhookNotifier(None)
        self.e2e = e2e

        self.commit_blocked = False
        self.shutting_down = False
        self.consecutive_failures = 0
        self.no_update_streak = 0
        self.checker_breach_streak = 0
        self.guard_breach_streak = 0
        self._stop_event: asyncio.Event | None = None

    @property
    def commit_active(self) -> bool:
        """Check if this cycle may commit on-chain."""
        return self.options.commit and not self.options.safe_mode and not self.commit_blocked

    def reset_commit_guard(self) -> None:
        """Re-enable commits after the guard latch tripped."""
        if self.commit_blocked:
            logger.info("[MONITOR] commit guard reset, commits re-enabled")
        self.commit_blocked = False
        self.guard_breach_streak = 0

    def request_shutdown(self) -> None:
        if not self.shutting_down:
            logger.info("[MONITOR] shutdown requested, finishing current cycle")
        self.shutting_down = True
        if self._stop_event is not None:
            self._stop_event.set()

    def check_staleness(self) -> bool:
        """Log an alert if the last run report is older than 30 minutes.

        :returns: True if the monitor looks stale.
        """
        age = self.writer.last_run_age()
        if age is not None and age > STALE_AFTER_SECONDS:
            logger.warning("[ALERT] monitor stale (last run > 30 minutes ago)")
            return True
        return False

    async def run(self) -> None:
        """Run cycles until shutdown (or once, with ``options.once``).

        :raises Exception: The cycle error when running once.
        """
        self._stop_event = asyncio.Event()
        self._install_signal_handlers()
        self.check_staleness()
        logger.info(
            f"[MONITOR] starting (interval={self.options.interval:g}s, jitter={self.options.jitter:g}s, "
            f"commit={self.commit_active}, assets={len(self.tracker.assets)})"
        )

        try:
            while not self.shutting_down:
                started = time.monotonic()
                try:
                    outcome = await self.run_cycle()
                except Exception as e:
                    if self.options.once:
                        raise
                    self.consecutive_failures += 1
                    delay = backoff_delay(self.options.interval, self.consecutive_failures)
                    logger.error(
                        f"[MONITOR] cycle failed ({self.consecutive_failures} in a row): {e}; "
                        f"retrying in {delay:g}s"
                    )
                    await self._sleep(delay)
                    continue

                self.consecutive_failures = 0
                if self.options.once:
                    break

                if outcome is None:
                    delay = self._paused_wait()
                else:
                    delay = self._next_delay(time.monotonic() - started)
                logger.debug(f"[MONITOR] next cycle in {delay:.1f}s")
                await self._sleep(delay)
        finally:
            self._remove_signal_handlers()
            await self.checker.aclose()
            await BaseProvider.close_shared_client()
            logger.info("[MONITOR] stopped")

    async def run_cycle(self) -> CycleOutcome | None:
        """Run one monitor cycle.

        :returns: CycleOutcome, or None if every asset is paused.
        :raises Exception: Any cycle-fatal failure (state for the cycle's
            assets is limited to joining the retry queue).
        """
        started = time.monotonic()
        self.tracker.release_expired()
        targets = self.tracker.select_targets()
        if not targets:
            logger.warning("[MONITOR] all assets paused, waiting for the earliest resume")
            return None

        self.checker.reset_cycle()
        for key in targets:
            self.context.set_fetch_override(key, self.tracker.fetch_override(key))

        events = CycleEvents()
        commit = self.commit_active
        failed_commits: set[str] = set()
        try:
            summary = await self.feeder.run(
                targets,
                commit=commit,
                force_timestamp=self.options.force_timestamp,
                events=events,
            )
        except CommitError as e:
            summary = e.summary
            failed_commits = set(e.asset_keys)
        except Exception:
            self.tracker.requeue(targets)
            raise
        finally:
            self.context.clear_fetch_overrides()

        try:
            inverse = await run_inverse_checks(list(self.options.monitored), self.context, self.checker, CycleEvents())
            desynced = self._verify_onchain(summary, failed_commits) if commit and summary.tx_hashes else []
        finally:
            # State transitions apply once the cycle's checks are done.
            self._apply_results(summary, failed_commits)

        cycle_ms = round((time.monotonic() - started) * 1000, 1)
        fallback_used = sum(1 for r in summary.results if r.status == STATUS_UPDATED and r.fallback)
        fallback_ratio = round(fallback_used / summary.updated, 4) if summary.updated else 0.0
        checker_alerts = len(summary.checker_alerts) + len(inverse.alerts)
        drained = self.checker.drain_alerts()
        logger.debug(f"[MONITOR] drained {len(drained)} checker alert(s)")

        self._evaluate_alerts(summary, checker_alerts, fallback_ratio)

        outcome = CycleOutcome(
            summary=summary,
            inverse=inverse,
            label="",
            cycle_ms=cycle_ms,
            fallback_ratio=fallback_ratio,
            checker_alerts=checker_alerts,
            by_provider=events.by_provider(),
            desynced=desynced,
        )
        generated_at = datetime.now(timezone.utc)
        outcome.label = format_archive_label(generated_at)
        self._write_reports(outcome, generated_at)

        outcome.e2e = await self._maybe_run_e2e(summary, checker_alerts, outcome.label)
        outcome.webhook_payload = self.build_webhook_payload(outcome, generated_at)
        if self.notifier.enabled:
            await self.notifier.send(outcome.webhook_payload)

        self._log_summary(outcome)
        return outcome

    def _apply_results(self, summary: FeederSummary, failed_commits: set[str]) -> None:
        for result in summary.results:
            if result.asset_key in failed_commits:
                self.tracker.record_commit_error(result.asset_key)
                continue
            if result.status == STATUS_UPDATED:
                self.tracker.record_success(result.asset_key)
            elif result.status == STATUS_SKIPPED:
                self.tracker.record_skip(result.asset_key)

    def _verify_onchain(self, summary: FeederSummary, failed_commits: set[str]) -> list[str]:
        """Read committed prices back and flag desynced assets."""
        oracle = self.feeder.oracle
        desynced: list[str] = []
        for quote in summary.harvested:
            if quote.asset_key in failed_commits:
                continue
            try:
                stored = oracle.get_price_data(quote.asset_id)
            except Exception as e:
                logger.warning(f"[MONITOR] Unable to read back {quote.symbol}: {e}")
                continue

            if stored is None:
                logger.warning(f"[ALERT] On-chain desync for {quote.symbol}: no price stored")
                desynced.append(quote.symbol)
                continue

            ts_delta = abs(stored.updated_at - quote.timestamp)
            price_delta = abs(stored.price - quote.value)
            if ts_delta > DESYNC_MAX_TS_DELTA or price_delta > quote.value * DESYNC_MAX_PRICE_RATIO:
                logger.warning(
                    f"[ALERT] On-chain desync for {quote.symbol} "
                    f"(Δts={ts_delta}s, onchain={stored.price}, expected={quote.value})"
                )
                desynced.append(quote.symbol)
        return desynced

    def _evaluate_alerts(self, summary: FeederSummary, checker_alerts: int, fallback_ratio: float) -> None:
        if checker_alerts > 0:
            logger.warning(f"[ALERT] checkerAlerts={checker_alerts}")

        if summary.updated == 0:
            self.no_update_streak += 1
            if self.no_update_streak >= 2:
                logger.error("[ALERT] no updates twice in a row")
            else:
                logger.warning("[ALERT] no updates this cycle")
        else:
            self.no_update_streak = 0

        checker_breach = checker_alerts > self.options.max_checker_alerts
        if checker_breach:
            self.checker_breach_streak += 1
            logger.warning(
                f"[ALERT] checker alerts {checker_alerts} > {self.options.max_checker_alerts} "
                f"({self.checker_breach_streak} cycle(s) in a row)"
            )
        else:
            self.checker_breach_streak = 0

        if summary.updated > 0 and fallback_ratio > MAX_FALLBACK_RATIO:
            logger.warning(f"[ALERT] fallbackRatio={fallback_ratio} > {MAX_FALLBACK_RATIO}")

        breach = summary.updated == 0 or checker_breach
        if not breach:
            self.guard_breach_streak = 0
            return
        self.guard_breach_streak += 1

        if not self.options.commit or self.options.safe_mode:
            return
        reason = "no updates" if summary.updated == 0 else f"checker alerts {checker_alerts}"
        if not self.commit_blocked:
            self.commit_blocked = True
            logger.error(f"[ALERT] commit guard tripped ({reason}); commits disabled until reset")
        if self.guard_breach_streak >= 2:
            logger.critical(f"[ALERT] guard condition breached {self.guard_breach_streak} cycles in a row ({reason})")

    def _write_reports(self, outcome: CycleOutcome, generated_at: datetime) -> None:
        order = provider_order(self.options.monitored)
        monitored = []
        for symbol in self.options.monitored:
            feed = resolve_asset_feed(symbol)
            primary = feed.provider_names[0] if feed and feed.providers else "none"
            monitored.append(SymbolFeedInfo(symbol=symbol, primary=primary))

        try:
            self.writer.write(
                INVERSE_REPORT_FILE,
                build_inverse_report(outcome.inverse, generated_at),
                outcome.label,
                enforce_retention=False,
            )
            self.writer.write(
                RUN_REPORT_FILE,
                build_run_report(
                    outcome.summary,
                    outcome.inverse,
                    generated_at,
                    monitored=monitored,
                    provider_order=order,
                    by_provider=outcome.by_provider,
                    cycle_ms=outcome.cycle_ms,
                    fallback_ratio=outcome.fallback_ratio,
                ),
                outcome.label,
            )
        except (ReportValidationError, OSError) as e:
            logger.error(f"[MONITOR] Failed to write reports: {e}")

    async def _maybe_run_e2e(self, summary: FeederSummary, checker_alerts: int, label: str) -> E2EResult:
        commit = self.options.commit
        if self.options.safe_mode:
            return E2EResult.skipped("SAFE_MODE active", commit)
        if not commit:
            return E2EResult.skipped("commit disabled", commit)
        if self.commit_blocked:
            return E2EResult.skipped("commit blocked", commit)
        if summary.updated == 0:
            return E2EResult.skipped("no updates", commit)
        if checker_alerts > 0:
            return E2EResult.skipped("checker alerts present", commit)
        if self.e2e is None:
            return E2EResult.skipped("E2E command not configured", commit)
        return await self.e2e.run(self.options.network, label)

    def build_webhook_payload(self, outcome: CycleOutcome, generated_at: datetime) -> dict:
        summary = outcome.summary
        order = provider_order(self.options.monitored)
        payload: dict = {
            "ts": format_ts(generated_at),
            "network": self.options.network,
            "updated": summary.updated,
            "skipped": summary.skipped,
            "fallbackUsed": sum(1 for r in summary.results if r.status == STATUS_UPDATED and r.fallback),
            "checkerAlerts": outcome.checker_alerts,
            "inverseAlerts": len(outcome.inverse.alerts),
            "providerOrder": order,
            "byProvider": {name: outcome.by_provider.get(name, 0) for name in order},
            "providerRates": provider_rates(outcome.by_provider, order, outcome.cycle_ms),
            "fallbackRatio": outcome.fallback_ratio,
            "cycleMs": outcome.cycle_ms,
        }
        if outcome.e2e is not None:
            payload["e2e"] = outcome.e2e.to_payload()
        if summary.tx_hashes:
            payload["latestTx"] = summary.tx_hashes[-1]
        return payload

    def _log_summary(self, outcome: CycleOutcome) -> None:
        summary = outcome.summary
        avg_fx, avg_bullion = average_diffs(list(outcome.inverse.results))
        fallback_used = sum(1 for r in summary.results if r.status == STATUS_UPDATED and r.fallback)
        providers = ", ".join(f"{name}={count}" for name, count in sorted(outcome.by_provider.items()))
        logger.info(
            f"[SUMMARY] updated: {summary.updated}, checkerAlerts: {outcome.checker_alerts}, "
            f"fallbackUsed: {fallback_used}, fallbackRatio: {outcome.fallback_ratio}, "
            f"cycleMs: {outcome.cycle_ms}, avgDiffFx: {avg_fx:.4f}, avgDiffXAU: {avg_bullion:.4f}, "
            f"providers[{providers}]"
        )

    def _paused_wait(self) -> float:
        resume_at = self.tracker.next_resume_at()
        if resume_at is None:
            return self.options.interval
        return min(max(MIN_PAUSED_WAIT_SECONDS, resume_at - time.time()), self.options.interval)

    def _next_delay(self, elapsed: float) -> float:
        jitter = self.options.jitter
        base = self.options.interval + (random.uniform(-jitter, jitter) if jitter > 0 else 0.0)
        return max(0.0, base - elapsed)

    async def _sleep(self, delay: float) -> None:
        """Sleep for ``delay`` seconds, waking early on shutdown."""
        if self._stop_event is None or delay <= 0:
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Signal handler for {sig.name} not supported on this platform")

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass
