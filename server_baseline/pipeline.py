from __future__ import annotations

import logging
import os
import stat
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .config import RunConfig
from .errors import (
    CancellationError,
    StepExecutionError,
    StepMissingError,
    WaitTimeoutError,
)
from .lib.cancel import CancelToken
from .lib.command import run_cmd, run_live
from .lib.wait import wait_until
from .models import RunReport, Step, StepResult

logger = logging.getLogger(__name__)

# Exit code recorded when the step file exists but cannot be executed at all.
EXEC_FAILED = 126

_EXEC_BITS = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH


def select_steps(
    steps: Sequence[Step],
    *,
    start_at: Optional[str] = None,
    stop_after: Optional[str] = None,
) -> List[Step]:
    """Slice a step list by step name, so a single step or a tail can be re-run."""

    names = [s.name for s in steps]
    for label, value in (("start_at", start_at), ("stop_after", stop_after)):
        if value is not None and value not in names:
            raise ValueError(f"{label}: unknown step {value!r} (known: {', '.join(names)})")

    lo = names.index(start_at) if start_at is not None else 0
    hi = names.index(stop_after) + 1 if stop_after is not None else len(steps)
    if hi <= lo:
        raise ValueError(f"stop_after {stop_after!r} comes before start_at {start_at!r}")
    return list(steps[lo:hi])


def _is_root() -> bool:
    return hasattr(os, "geteuid") and os.geteuid() == 0


def ensure_executable(path: Path, *, use_sudo: bool = False, dry_run: bool = False) -> bool:
    """chmod +x equivalent. Returns True if the mode had to change."""

    mode = path.stat().st_mode
    if mode & _EXEC_BITS == _EXEC_BITS:
        return False

    logger.info("Changing permissions for %s", path)
    if dry_run:
        return True

    try:
        os.chmod(path, mode | _EXEC_BITS)
    except PermissionError:
        if not use_sudo or _is_root():
            raise
        run_cmd(["sudo", "-n", "chmod", "+x", str(path)])
    return True


class StepRunner:
    """Run provisioning steps strictly in order, stopping at the first failure.

    Missing optional steps are skipped with a warning; a missing required
    step or any non-zero exit ends the run. Nothing is retried and nothing is
    rolled back. Cancellation is honoured between steps only.
    """

    def __init__(
        self,
        config: RunConfig,
        *,
        cancel: Optional[CancelToken] = None,
        launcher: Callable[..., int] = run_live,
    ) -> None:
        self.config = config
        self.cancel = cancel or CancelToken()
        self._launch = launcher

    def resolve(self, step: Step, base_dir: str | Path) -> Path:
        return (Path(base_dir) / step.path_or_command).absolute()

    def argv_for(self, step: Step, path: Path) -> List[str]:
        argv = [str(path), *step.args]
        if self.config.use_sudo and not _is_root():
            argv = ["sudo", "-n", *argv]
        return argv

    def _invoke(self, step: Step, path: Path) -> int:
        try:
            return self._launch(self.argv_for(step, path), dry_run=self.config.dry_run)
        except OSError as e:
            raise StepExecutionError(step.name, EXEC_FAILED, str(e)) from e

    def run_step(self, step: Step, base_dir: str | Path) -> StepResult:
        """Run one step. Raises StepMissingError or StepExecutionError (with the result attached)."""

        path = self.resolve(step, base_dir)
        if not path.is_file():
            raise StepMissingError(step.name, str(path))

        logger.info("Processing %s", path)
        started = datetime.now()
        try:
            ensure_executable(path, use_sudo=self.config.use_sudo, dry_run=self.config.dry_run)
            logger.info("Executing %s", path)
            if step.poll is not None:
                exit_code = self._poll(step, path)
            else:
                exit_code = self._invoke(step, path)
        except StepExecutionError as e:
            e.result = self._result(step, path, started, e.exit_code, error=str(e))
            raise
        except (WaitTimeoutError, CancellationError, OSError, RuntimeError) as e:
            code = getattr(e, "last_exit_code", None) or EXEC_FAILED
            result = self._result(step, path, started, code, error=str(e))
            raise StepExecutionError(step.name, code, str(e), result=result) from e

        result = self._result(step, path, started, exit_code)
        if exit_code != 0:
            raise StepExecutionError(step.name, exit_code, result=result)
        return result

    def _poll(self, step: Step, path: Path) -> int:
        """Re-run a check step until it exits 0, bounded by its poll timeout."""

        assert step.poll is not None
        last_code: Optional[int] = None

        def _check() -> bool:
            nonlocal last_code
            last_code = self._invoke(step, path)
            return last_code == 0

        try:
            wait_until(
                _check,
                timeout_s=step.poll.timeout_s,
                interval_s=step.poll.interval_s,
                description=step.name,
                cancel=self.cancel,
            )
        except (WaitTimeoutError, CancellationError) as e:
            setattr(e, "last_exit_code", last_code)
            raise
        return 0

    @staticmethod
    def _result(
        step: Step,
        path: Optional[Path],
        started: datetime,
        exit_code: Optional[int],
        *,
        skipped: bool = False,
        error: Optional[str] = None,
    ) -> StepResult:
        return StepResult(
            step_name=step.name,
            exit_code=exit_code,
            started_at=started,
            finished_at=datetime.now(),
            skipped=skipped,
            required=step.required,
            path=str(path) if path is not None else None,
            error=error,
        )

    def run(
        self,
        steps: Sequence[Step],
        base_dir: str | Path | None = None,
        *,
        role: Optional[str] = None,
        report: Optional[RunReport] = None,
    ) -> RunReport:
        base = base_dir if base_dir is not None else self.config.base_dir
        if report is None:
            report = RunReport(role=role, preflight_passed=True)

        for step in steps:
            if self.cancel.cancelled:
                logger.warning("Run cancelled (%s); not starting %s", self.cancel.reason, step.name)
                report.cancel(self.cancel.reason or "cancelled")
                break

            try:
                result = self.run_step(step, base)
            except StepMissingError as e:
                now = datetime.now()
                report.add(
                    StepResult(
                        step_name=step.name,
                        exit_code=None,
                        started_at=now,
                        finished_at=now,
                        skipped=True,
                        required=step.required,
                        path=e.path,
                        error=str(e),
                    )
                )
                if step.required:
                    logger.error("Script %s does not exist", e.path)
                    report.fail(step.name, str(e))
                    break
                logger.warning("Script %s not found, skipping", e.path)
                continue
            except StepExecutionError as e:
                report.add(e.result)
                if self.cancel.cancelled:
                    logger.warning("%s stopped after cancellation - Exit code: %s", step.name, e.exit_code)
                    report.cancel(self.cancel.reason or "cancelled")
                else:
                    logger.error("%s", e)
                    report.fail(step.name, str(e))
                break

            report.add(result)
            logger.info("%s executed successfully", step.name)
        else:
            if self.cancel.cancelled:
                report.cancel(self.cancel.reason or "cancelled")

        report.finish()
        self.log_summary(report)
        return report

    @staticmethod
    def log_summary(report: RunReport) -> None:
        for r in report.results:
            if r.skipped:
                state = "missing" if r.required else "skipped"
            else:
                state = f"exit {r.exit_code}"
            logger.info("  %-40s %s (%.1fs)", r.step_name, state, r.duration_s)

        if report.overall_success and not report.cancelled:
            logger.info("All specified scripts executed successfully")
        elif report.cancelled:
            logger.warning("Run cancelled: %s", report.error)
        else:
            logger.error("Run failed at %s: %s", report.failed_step, report.error)
