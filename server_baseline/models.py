from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class PollPolicy:
    timeout_s: float
    interval_s: float = 5.0


@dataclass(frozen=True)
class Step:
    """One provisioning action: an executable relative to the scripts directory."""

    name: str
    path_or_command: str
    required: bool = True
    args: Tuple[str, ...] = ()
    poll: Optional[PollPolicy] = None


@dataclass(frozen=True)
class StepResult:
    step_name: str
    exit_code: Optional[int]
    started_at: datetime
    finished_at: datetime
    skipped: bool = False
    required: bool = True
    path: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        if self.skipped:
            return not self.required
        return self.exit_code == 0

    @property
    def duration_s(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step_name,
            "path": self.path,
            "required": self.required,
            "skipped": self.skipped,
            "exit_code": self.exit_code,
            "started_at": self.started_at.isoformat(timespec="seconds"),
            "finished_at": self.finished_at.isoformat(timespec="seconds"),
            "error": self.error,
        }


class RunStatus(str, enum.Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    PREFLIGHT_FAILED = "preflight_failed"
    DECLINED = "declined"


@dataclass
class RunReport:
    role: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None
    preflight_passed: bool = False
    status: RunStatus = RunStatus.RUNNING
    results: List[StepResult] = field(default_factory=list)
    failed_step: Optional[str] = None
    error: Optional[str] = None

    def add(self, result: StepResult) -> None:
        self.results.append(result)

    def fail(self, step_name: Optional[str], error: str) -> None:
        self.status = RunStatus.FAILED
        self.failed_step = step_name
        self.error = error

    def cancel(self, reason: str) -> None:
        self.status = RunStatus.CANCELLED
        self.error = reason

    def decline(self) -> None:
        self.status = RunStatus.DECLINED

    def fail_preflight(self, error: str) -> None:
        self.preflight_passed = False
        self.status = RunStatus.PREFLIGHT_FAILED
        self.error = error

    def finish(self) -> "RunReport":
        if self.status == RunStatus.RUNNING:
            self.status = RunStatus.SUCCEEDED
        if self.finished_at is None:
            self.finished_at = datetime.now()
        return self

    @property
    def overall_success(self) -> bool:
        return self.preflight_passed and all(r.ok for r in self.results) and self.status != RunStatus.FAILED

    @property
    def cancelled(self) -> bool:
        return self.status == RunStatus.CANCELLED

    @property
    def exit_code(self) -> int:
        return 0 if (self.overall_success and not self.cancelled) else 1

    @property
    def skipped_steps(self) -> List[str]:
        return [r.step_name for r in self.results if r.skipped]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            "status": self.status.value,
            "overall_success": self.overall_success,
            "exit_code": self.exit_code,
            "preflight_passed": self.preflight_passed,
            "started_at": self.started_at.isoformat(timespec="seconds"),
            "finished_at": self.finished_at.isoformat(timespec="seconds") if self.finished_at else None,
            "failed_step": self.failed_step,
            "error": self.error,
            "results": [r.to_dict() for r in self.results],
        }
