from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from ..errors import CancellationError, WaitTimeoutError
from .cancel import CancelToken

logger = logging.getLogger(__name__)


def wait_until(
    predicate: Callable[[], bool],
    *,
    timeout_s: float,
    interval_s: float,
    description: str = "condition",
    cancel: Optional[CancelToken] = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Poll *predicate* every *interval_s* seconds until it is true.

    Returns the number of attempts made. Raises WaitTimeoutError once
    *timeout_s* has elapsed, CancellationError if *cancel* fires between
    attempts. The predicate is always evaluated at least once.
    """

    if timeout_s <= 0:
        raise ValueError("timeout_s must be positive")
    if interval_s <= 0:
        raise ValueError("interval_s must be positive")

    deadline = clock() + timeout_s
    attempts = 0

    while True:
        attempts += 1
        if predicate():
            logger.info("%s satisfied after %d attempt(s)", description, attempts)
            return attempts

        remaining = deadline - clock()
        if remaining <= 0:
            raise WaitTimeoutError(description, timeout_s, attempts)

        if cancel is not None and cancel.cancelled:
            raise CancellationError(cancel.reason or "cancelled")

        logger.info(
            "Waiting for %s (attempt %d, %.0fs remaining)", description, attempts, remaining
        )
        sleep(min(interval_s, remaining))

        if cancel is not None and cancel.cancelled:
            raise CancellationError(cancel.reason or "cancelled")
