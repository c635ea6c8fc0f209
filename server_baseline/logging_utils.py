from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import List, Optional

from .errors import LogInitError

LOG_PREFIX = "server-baseline"
LINE_FORMAT = "%(asctime)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def log_file_for(log_dir: str | Path, day: Optional[date] = None, prefix: str = LOG_PREFIX) -> Path:
    """Return the log file for *day*: one file per calendar day, appended to by every run."""

    day = day or date.today()
    return Path(log_dir) / f"{prefix}-{day:%Y%m%d}.log"


class _LineFormatter(logging.Formatter):
    """`YYYY-MM-DD HH:MM:SS - message`, with Warning:/Error: markers for WARNING and above."""

    def formatMessage(self, record: logging.LogRecord) -> str:
        line = super().formatMessage(record)
        if record.levelno >= logging.ERROR:
            return line.replace(" - ", " - Error: ", 1)
        if record.levelno >= logging.WARNING:
            return line.replace(" - ", " - Warning: ", 1)
        return line


class _DegradingFileHandler(logging.FileHandler):
    """File handler that goes quiet after the first write failure.

    The console handler keeps receiving every record, so a full disk or a
    revoked file costs us the durable copy, never the run.
    """

    degraded = False

    def emit(self, record: logging.LogRecord) -> None:
        if self.degraded:
            return
        super().emit(record)

    def handleError(self, record: logging.LogRecord) -> None:
        if self.degraded:
            return
        self.degraded = True
        err = sys.exc_info()[1]
        sys.stderr.write(
            f"Logging to {self.baseFilename} failed ({err}); continuing with console output only\n"
        )
        sys.stderr.flush()


@dataclass
class LogHandle:
    path: Path
    logger: logging.Logger
    handlers: List[logging.Handler] = field(default_factory=list)

    def write(self, message: str) -> None:
        self.logger.info(message)

    @property
    def degraded(self) -> bool:
        return any(getattr(h, "degraded", False) for h in self.handlers)

    def close(self) -> None:
        root = logging.getLogger()
        try:
            for h in self.handlers:
                root.removeHandler(h)
                # Streams may already be closed or broken (e.g. stdout at interpreter exit).
                for release in (h.flush, h.close):
                    try:
                        release()
                    except (OSError, ValueError):
                        pass
        finally:
            self.handlers = []
            if getattr(root, "_server_baseline_handle", None) is self:
                setattr(root, "_server_baseline_handle", None)

    def __enter__(self) -> "LogHandle":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def configure_logging(
    log_dir: str | Path,
    *,
    level: int = logging.INFO,
    also_console: bool = True,
    prefix: str = LOG_PREFIX,
) -> LogHandle:
    """Configure process-wide logging to the dated log file and stdout.

    Unlike most of our logging, a log file we cannot open is fatal: provisioning
    actions must leave an audit trail. Raises LogInitError in that case.

    Calling this again for the same file returns the live handle instead of
    adding duplicate handlers.
    """

    root = logging.getLogger()
    root.setLevel(level)

    log_path = log_file_for(log_dir, prefix=prefix)

    existing: Optional[LogHandle] = getattr(root, "_server_baseline_handle", None)
    if existing is not None:
        if existing.path == log_path and existing.handlers:
            return existing
        existing.close()

    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise LogInitError(f"Cannot create log directory {log_path.parent}: {e}") from e

    fmt = _LineFormatter(fmt=LINE_FORMAT, datefmt=DATE_FORMAT)
    handlers: List[logging.Handler] = []

    try:
        file_handler = _DegradingFileHandler(log_path, mode="a", encoding="utf-8")
    except OSError as e:
        raise LogInitError(f"Cannot open log file {log_path}: {e}") from e
    file_handler.setFormatter(fmt)
    handlers.append(file_handler)

    if also_console:
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(fmt)
        handlers.append(console)

    for h in handlers:
        root.addHandler(h)

    handle = LogHandle(path=log_path, logger=logging.getLogger("server_baseline"), handlers=handlers)
    setattr(root, "_server_baseline_handle", handle)

    logging.getLogger(__name__).debug("Logging initialized (%s)", log_path)
    return handle
