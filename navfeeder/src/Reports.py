"""Reports: Versioned run/inverse report schemas, validation and retention.

Two JSON documents are written after every successful cycle:

- ``last_run.json`` (schema ``run.v1``): feeder counts, per-symbol cross-check
  results, provider statistics and cycle timing;
- ``last_inverse.json`` (schema ``inverse.v1``): the watch-list check items,
  sorted by symbol.

Each file is also copied to ``archive/<YYYY-MM-DD_HH-MM-SS>/``. Labels sort
lexicographically in chronological order, so retention keeps the last N
directory names.
"""

from __future__ import annotations

import json
import logging
import math
import shutil
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from .CrossChecker import SYMBOL_OVERRIDES, CrossCheckOutcome
from .InverseSanity import InverseCheckOutcome, InverseCheckReport
from .PriceFeeder import STATUS_UPDATED, FeederSummary

logger = logging.getLogger(__name__)

RUN_SCHEMA = "run.v1"
INVERSE_SCHEMA = "inverse.v1"
RUN_REPORT_FILE = "last_run.json"
INVERSE_REPORT_FILE = "last_inverse.json"
ARCHIVE_DIR = "archive"
DEFAULT_MAX_SNAPSHOTS = 50

ALLOWED_PATHS = {"straight", "dashed", "inverse"}


class ReportValidationError(Exception):
    """Raised when a report payload does not match its schema."""

    pass


def format_archive_label(when: datetime) -> str:
    """Format a UTC archive directory label (``YYYY-MM-DD_HH-MM-SS``)."""
    return when.astimezone(timezone.utc).strftime("%Y-%m-%d_%H-%M-%S")


def format_ts(when: datetime) -> str:
    """Format an ISO-8601 UTC timestamp with millisecond precision."""
    return when.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _finite(value: float | None) -> float | None:
    if value is None or not math.isfinite(value):
        return None
    return value


def outcome_path(outcome: CrossCheckOutcome) -> str:
    """Return the resolution path to report for an outcome."""
    if outcome.resolution_path:
        return outcome.resolution_path
    if outcome.inverse_used:
        return "inverse"
    return "straight"


def average_diffs(outcomes: list[CrossCheckOutcome]) -> tuple[float, float]:
    """Average absolute diff for FX symbols and for bullion symbols.

    :returns: Tuple of (avg FX diff, avg bullion diff), 0 when empty.
    """
    fx: list[float] = []
    bullion: list[float] = []
    for outcome in outcomes:
        diff = _finite(outcome.diff_pct)
        if diff is None:
            continue
        (bullion if outcome.symbol in SYMBOL_OVERRIDES else fx).append(abs(diff))
    return (
        sum(fx) / len(fx) if fx else 0.0,
        sum(bullion) / len(bullion) if bullion else 0.0,
    )


def provider_rates(by_provider: dict[str, int], provider_order: list[str], cycle_ms: float) -> dict[str, float]:
    """Requests per second for each provider over the cycle (4 decimals)."""
    duration = cycle_ms / 1000 if cycle_ms > 0 else 1.0
    return {name: round(by_provider.get(name, 0) / duration, 4) for name in provider_order}


@dataclass(frozen=True)
class SymbolFeedInfo:
    """Primary provider of a monitored symbol, for the ``symbols`` section."""

    symbol: str
    primary: str


def build_inverse_report(report: InverseCheckReport, generated_at: datetime) -> dict:
    """Build an ``inverse.v1`` payload."""
    items = []
    for outcome in report.results:
        item: dict = {
            "symbol": outcome.symbol,
            "path": outcome_path(outcome),
            "provider": outcome.provider or "none",
            "providerPrice": _finite(outcome.provider_price) or 0,
            "ok": outcome.ok,
        }
        if _finite(outcome.reference_price) is not None:
            item["googlePrice"] = outcome.reference_price
        if _finite(outcome.diff_pct) is not None:
            item["diffPct"] = outcome.diff_pct
        if outcome.inverse_used:
            item["inverseUsed"] = True
        if outcome.inverse_symbol:
            item["inverseSymbol"] = outcome.inverse_symbol
        if outcome.error:
            item["error"] = outcome.error
        if _finite(outcome.threshold) is not None:
            item["threshold"] = outcome.threshold
        items.append(item)

    items.sort(key=lambda entry: entry["symbol"])
    return {
        "schema": INVERSE_SCHEMA,
        "ts": format_ts(generated_at),
        "alerts": [item.symbol for item in report.alerts],
        "tested": report.tested,
        "items": items,
    }


def build_run_report(
    summary: FeederSummary,
    inverse: InverseCheckReport,
    generated_at: datetime,
    *,
    monitored: list[SymbolFeedInfo],
    provider_order: list[str],
    by_provider: dict[str, int],
    cycle_ms: float,
    fallback_ratio: float,
) -> dict:
    """Build a ``run.v1`` payload.

    :param summary: Feeder summary of the cycle.
    :param inverse: Watch-list check report of the cycle.
    :param generated_at: Report time.
    :param monitored: Watch-list symbols and their primary providers.
    :param provider_order: Provider names in priority order.
    :param by_provider: Accepted prices per provider this cycle.
    :param cycle_ms: Cycle duration in milliseconds.
    :param fallback_ratio: Fallback wins over updates.
    :returns: Report payload.
    """
    outcomes: dict[str, InverseCheckOutcome] = {item.symbol: item for item in inverse.results}
    symbols: dict[str, dict] = {}
    for info in monitored:
        outcome = outcomes.get(info.symbol)
        if outcome is None:
            symbols[info.symbol] = {
                "provider": info.primary,
                "usedProvider": info.primary,
                "price": 0,
                "path": "straight",
                "ok": False,
            }
            continue

        entry: dict = {
            "provider": info.primary,
            "usedProvider": outcome.provider or info.primary,
            "price": _finite(outcome.provider_price) or 0,
            "path": outcome_path(outcome),
            "ok": outcome.ok,
        }
        if _finite(outcome.reference_price) is not None:
            entry["googlePrice"] = outcome.reference_price
        if _finite(outcome.diff_pct) is not None:
            entry["diffPct"] = outcome.diff_pct
        symbols[info.symbol] = entry

    avg_fx, avg_bullion = average_diffs(list(inverse.results))
    fallback_used = sum(1 for r in summary.results if r.status == STATUS_UPDATED and r.fallback)
    google_alerts = len(summary.checker_alerts)
    inverse_alerts = len(inverse.alerts)

    payload: dict = {
        "schema": RUN_SCHEMA,
        "ts": format_ts(generated_at),
        "updated": summary.updated,
        "skipped": summary.skipped,
        "fallbackUsed": fallback_used,
        "checkerAlerts": google_alerts + inverse_alerts,
        "googleAlerts": google_alerts,
        "inverseAlerts": inverse_alerts,
        "symbols": symbols,
        "providerOrder": list(provider_order),
        "byProvider": {name: by_provider.get(name, 0) for name in provider_order},
        "providerRates": provider_rates(by_provider, provider_order, cycle_ms),
        "cycleMs": cycle_ms,
        "fallbackRatio": fallback_ratio,
        "avgDiffFx": avg_fx,
        "avgDiffXAU": avg_bullion,
    }
    if summary.tx_hashes:
        payload["latestTx"] = summary.tx_hashes[-1]
    return payload


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _valid_path(value: object) -> bool:
    return isinstance(value, str) and (value in ALLOWED_PATHS or value.startswith("override-"))


def validate_inverse_report(payload: dict) -> str | None:
    """Validate an ``inverse.v1`` payload.

    :returns: None if valid, otherwise a description of the first problem.
    """
    if not isinstance(payload.get("ts"), str) or not payload["ts"]:
        return "missing ts string"
    if payload.get("schema") != INVERSE_SCHEMA:
        return f"schema must be {INVERSE_SCHEMA}"
    if not isinstance(payload.get("items"), list):
        return "items must be a list"

    for item in payload["items"]:
        if not isinstance(item, dict):
            return "invalid item shape"
        symbol = item.get("symbol")
        if not isinstance(symbol, str) or not symbol:
            return "item missing symbol"
        if not _valid_path(item.get("path")):
            return f"invalid path for {symbol}"
        if not _is_number(item.get("providerPrice")):
            return f"invalid providerPrice for {symbol}"
        for key in ("googlePrice", "diffPct"):
            if item.get(key) is not None and not _is_number(item[key]):
                return f"invalid {key} for {symbol}"
        if not isinstance(item.get("ok"), bool):
            return f"invalid ok flag for {symbol}"
    return None


def validate_run_report(payload: dict) -> str | None:
    """Validate a ``run.v1`` payload.

    :returns: None if valid, otherwise a description of the first problem.
    """
    if not isinstance(payload.get("ts"), str) or not payload["ts"]:
        return "missing ts string"
    if payload.get("schema") != RUN_SCHEMA:
        return f"schema must be {RUN_SCHEMA}"
    for key in ("updated", "skipped", "fallbackUsed", "checkerAlerts"):
        if not _is_number(payload.get(key)):
            return f"{key} must be a number"
    for key in ("fallbackRatio", "cycleMs", "avgDiffFx", "avgDiffXAU"):
        if key in payload and not _is_number(payload[key]):
            return f"{key} must be a number"

    symbols = payload.get("symbols")
    if not isinstance(symbols, dict):
        return "symbols must be an object"
    for symbol, entry in symbols.items():
        if not isinstance(entry, dict):
            return f"invalid entry for {symbol}"
        if not _valid_path(entry.get("path")):
            return f"invalid path for {symbol}"
        if not _is_number(entry.get("price")):
            return f"invalid price for {symbol}"
        if not isinstance(entry.get("ok"), bool):
            return f"invalid ok flag for {symbol}"

    order = payload.get("providerOrder")
    if not isinstance(order, list) or not all(isinstance(name, str) for name in order):
        return "providerOrder must be a list of names"
    if not isinstance(payload.get("byProvider"), dict):
        return "byProvider must be an object"
    rates = payload.get("providerRates")
    if rates is not None:
        if not isinstance(rates, dict):
            return "providerRates must be an object"
        for name in order:
            if name in rates and not _is_number(rates[name]):
                return f"invalid provider rate for {name}"
    return None


VALIDATORS = {
    RUN_REPORT_FILE: validate_run_report,
    INVERSE_REPORT_FILE: validate_inverse_report,
}


class ReportWriter:
    """Writes validated reports and prunes the archive.

    :ivar reports_dir: Root directory for ``last_*.json`` files.
    :ivar max_snapshots: Archive directories kept by retention.
    """

    def __init__(self, reports_dir: str | Path = "reports", max_snapshots: int = DEFAULT_MAX_SNAPSHOTS) -> None:
        self.reports_dir = Path(reports_dir)
        self.max_snapshots = max_snapshots

    @property
    def archive_dir(self) -> Path:
        return self.reports_dir / ARCHIVE_DIR

    def write(self, base_name: str, payload: dict, label: str, enforce_retention: bool = True) -> Path:
        """Validate and write a report plus its archive copy.

        :param base_name: File name (``last_run.json`` or ``last_inverse.json``).
        :param payload: Report payload.
        :param label: Archive directory label.
        :param enforce_retention: Prune the archive after writing.
        :returns: Path of the main report file.
        :raises ReportValidationError: If the payload fails validation.
        """
        validator = VALIDATORS.get(base_name)
        problem = validator(payload) if validator else None
        if problem:
            logger.error(f"[REPORT:INVALID] {base_name}: {problem}")
            raise ReportValidationError(f"{base_name}: {problem}")

        serialized = json.dumps(payload, indent=2) + "\n"
        self.reports_dir.mkdir(parents=True, exist_ok=True)
        target = self.reports_dir / base_name
        target.write_text(serialized, encoding="utf-8")

        snapshot_dir = self.archive_dir / label
        snapshot_dir.mkdir(parents=True, exist_ok=True)
        (snapshot_dir / base_name).write_text(serialized, encoding="utf-8")

        if enforce_retention:
            self.enforce_retention()
        return target

    def enforce_retention(self) -> int:
        """Delete the oldest archive directories beyond ``max_snapshots``.

        :returns: Number of directories removed.
        """
        if not self.archive_dir.exists():
            return 0
        directories = sorted(p.name for p in self.archive_dir.iterdir() if p.is_dir())
        excess = max(0, len(directories) - self.max_snapshots)
        for name in directories[:excess]:
            shutil.rmtree(self.archive_dir / name, ignore_errors=True)
        logger.info(f"[RETENTION] kept={len(directories) - excess} removed={excess}")
        return excess

    def last_run_age(self) -> float | None:
        """Seconds since the ``ts`` of the last run report, or None if unknown."""
        path = self.reports_dir / RUN_REPORT_FILE
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.error(f"Unable to inspect previous report {path}: {e}")
            return None

        ts = data.get("ts") if isinstance(data, dict) else None
        if not isinstance(ts, str):
            return None
        try:
            when = datetime.fromisoformat(ts.replace("Z", "+00:00"))
        except ValueError:
            return None
        return time.time() - when.timestamp()
