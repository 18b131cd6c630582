"""E2ERunner: Launch the downstream end-to-end verification CLI.

The verification tool is an external program configured by command line
(``E2E_COMMAND``). It is run with ``--commit --network <name> --label <label>``
(plus ``--mode`` when ``E2E_MODE`` is set) and is expected to leave a JSON
report at ``<reports>/e2e_quick.json`` with ``status``, ``commit``, ``error``
and ``params.{label,mode}``. Its exit code decides the status when the report
is missing.

A report left over from an earlier run is deleted before each launch so it
can never stand in for the current run.
"""

from __future__ import annotations

import asyncio
import json
import logging
import shlex
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

E2E_REPORT_FILE = "e2e_quick.json"
E2E_STATUSES = ("OK", "ERROR", "SKIPPED")


@dataclass
class E2EResult:
    """Outcome of an end-to-end verification run.

    :ivar status: "OK", "ERROR" or "SKIPPED".
    :ivar exit_code: Process exit code, None if not launched.
    :ivar commit: Whether the run was commit-enabled.
    :ivar label: Archive label the run reported under.
    :ivar report_path: Relative path of the run's report.
    :ivar mode: Verification mode reported by the tool.
    :ivar error: Failure or skip reason.
    """

    status: str
    exit_code: int | None = None
    commit: bool = True
    label: str | None = None
    report_path: str | None = None
    mode: str | None = None
    error: str | None = None

    @classmethod
    def skipped(cls, reason: str, commit: bool) -> E2EResult:
        return cls(status="SKIPPED", commit=commit, error=reason)

    def to_payload(self) -> dict:
        """Webhook representation (unset optional fields omitted)."""
        payload: dict = {"status": self.status, "commit": self.commit, "exitCode": self.exit_code}
        if self.report_path:
            payload["report"] = self.report_path
        if self.label:
            payload["label"] = self.label
        if self.mode:
            payload["mode"] = self.mode
        if self.error:
            payload["error"] = self.error
        return payload


class E2ERunner:
    """Runs the verification CLI as an async subprocess.

    :ivar command: Base command line, e.g. ``"npx ts-node scripts/e2e-quick.ts"``.
    :ivar reports_dir: Directory where the tool writes its report.
    :ivar mode: Optional ``--mode`` value.
    :ivar timeout: Seconds before the process is killed.
    """

    DEFAULT_TIMEOUT = 600.0

    def __init__(
        self,
        command: str | None,
        reports_dir: str | Path = "reports",
        mode: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.command = command
        self.reports_dir = Path(reports_dir)
        self.mode = mode
        self.timeout = timeout

    def build_args(self, network: str | None, label: str | None) -> list[str]:
        args = shlex.split(self.command or "") + ["--commit"]
        if network:
            args += ["--network", network]
        if label:
            args += ["--label", label]
        if self.mode:
            args += ["--mode", self.mode]
        return args

    async def run(self, network: str | None, label: str | None) -> E2EResult:
        """Launch the verification CLI and interpret its report.

        :param network: Network name passed through.
        :param label: Archive label of the cycle's reports.
        :returns: E2EResult (never raises for launch failures).
        """
        if not self.command:
            return E2EResult.skipped("E2E command not configured", commit=True)

        args = self.build_args(network, label)
        self._discard_previous_report()
        logger.info(f"[MONITOR] Launching E2E quick (label={label or 'auto'}, network={network or 'default'})")

        try:
            process = await asyncio.create_subprocess_exec(*args)
            exit_code = await asyncio.wait_for(process.wait(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.error(f"[MONITOR] E2E quick timed out after {self.timeout:g}s")
            return E2EResult(status="ERROR", error=f"timeout after {self.timeout:g}s")
        except OSError as e:
            logger.error(f"[MONITOR] Failed to launch E2E quick: {e}")
            return E2EResult(status="ERROR", error=str(e))

        return self._interpret(exit_code, label)

    def _discard_previous_report(self) -> None:
        path = self.reports_dir / E2E_REPORT_FILE
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"[MONITOR] Unable to remove previous E2E report {path}: {e}")

    def _load_report(self) -> dict | None:
        path = self.reports_dir / E2E_REPORT_FILE
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"[MONITOR] Unable to load E2E report: {e}")
            return None
        return data if isinstance(data, dict) else None

    def _interpret(self, exit_code: int | None, label: str | None) -> E2EResult:
        report = self._load_report()
        params = (report or {}).get("params") or {}

        reported_status = (report or {}).get("status")
        if reported_status in E2E_STATUSES:
            status = reported_status
        else:
            status = "OK" if exit_code == 0 else "ERROR"

        report_label = params.get("label") if isinstance(params.get("label"), str) and params["label"] else label
        if report is None:
            report_path = None
        elif report_label:
            report_path = f"{self.reports_dir.name}/archive/{report_label}/{E2E_REPORT_FILE}"
        else:
            report_path = f"{self.reports_dir.name}/{E2E_REPORT_FILE}"

        error = (report or {}).get("error")
        if not isinstance(error, str):
            error = f"exit code {exit_code}" if exit_code not in (None, 0) else None
        if report is None and status != "OK":
            error = error or "report not produced"

        result = E2EResult(
            status=status,
            exit_code=exit_code,
            commit=bool((report or {}).get("commit", True)),
            label=report_label,
            report_path=report_path,
            mode=params.get("mode") if isinstance(params.get("mode"), str) else None,
            error=error,
        )

        if status == "OK":
            logger.info("[MONITOR] E2E quick completed successfully")
        elif exit_code not in (None, 0):
            logger.error(f"[MONITOR] E2E quick exited with status {exit_code}")
        else:
            logger.error(f"[MONITOR] E2E quick reported error: {result.error}")
        return result
