from __future__ import annotations

import logging
import signal
import threading
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


class CancelToken:
    """Cooperative cancellation flag, checked between steps."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason


def install_signal_handlers(token: CancelToken) -> Callable[[], None]:
    """Route SIGINT/SIGTERM to *token*. Returns a callable restoring the previous handlers.

    The child step receives the terminal's SIGINT on its own; we only stop
    launching new steps.
    """

    previous: Dict[int, object] = {}

    def _handler(signum, frame) -> None:
        name = signal.Signals(signum).name
        if token.cancelled:
            logger.warning("Received %s again; already stopping", name)
            return
        logger.warning("Received %s; no further steps will be started", name)
        token.cancel(f"signal {name}")

    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, _handler)

    def _restore() -> None:
        for sig, h in previous.items():
            signal.signal(sig, h)

    return _restore
