from __future__ import annotations

from typing import Any, Optional


class BaselineError(RuntimeError):
    pass


class PreflightError(BaselineError):
    """A host precondition does not hold; nothing has been changed yet."""


class PrivilegeError(PreflightError):
    pass


class UnsupportedOsError(PreflightError):
    def __init__(self, expected: str, detected: str) -> None:
        super().__init__(
            f"Unsupported operating system: expected {expected!r}, detected {detected or 'unknown'!r}"
        )
        self.expected = expected
        self.detected = detected


class InsufficientSpaceError(PreflightError):
    def __init__(self, available: int, required: int, path: str = "/") -> None:
        super().__init__(
            f"Insufficient disk space on {path}. Required: {required}MB, Available: {available}MB"
        )
        self.available = available
        self.required = required
        self.path = path


class LogInitError(BaselineError):
    pass


class RoleConfigError(BaselineError, ValueError):
    pass


class StepMissingError(BaselineError):
    def __init__(self, step_name: str, path: str) -> None:
        super().__init__(f"Step {step_name} not found: {path}")
        self.step_name = step_name
        self.path = path


class StepExecutionError(BaselineError):
    def __init__(
        self,
        step_name: str,
        exit_code: int,
        detail: Optional[str] = None,
        *,
        result: Optional[Any] = None,
    ) -> None:
        msg = f"Step {step_name} failed - Exit code: {exit_code}"
        if detail:
            msg = f"{msg} ({detail})"
        super().__init__(msg)
        self.step_name = step_name
        self.exit_code = exit_code
        # The StepResult recorded for the failed invocation.
        self.result = result


class CancellationError(BaselineError):
    pass


class WaitTimeoutError(BaselineError):
    def __init__(self, description: str, timeout_s: float, attempts: int) -> None:
        super().__init__(
            f"Timed out after {timeout_s:g}s waiting for {description} ({attempts} attempt(s))"
        )
        self.description = description
        self.timeout_s = timeout_s
        self.attempts = attempts
