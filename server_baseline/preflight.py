from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import Dict, Optional

from .config import RunConfig
from .errors import InsufficientSpaceError, PreflightError, PrivilegeError, UnsupportedOsError
from .lib.command import run_cmd
from .lib.env import PATHS

logger = logging.getLogger(__name__)

_MIB = 1024 * 1024


def _read_text(path: Path) -> Optional[str]:
    try:
        txt = path.read_text(encoding="utf-8", errors="ignore").strip()
        return txt or None
    except OSError:
        return None


def parse_os_release(text: str) -> Dict[str, str]:
    """Parse /etc/os-release style KEY=value lines (values may be shell-quoted)."""

    out: Dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        try:
            parts = shlex.split(value)
        except ValueError:
            parts = [value.strip("\"'")]
        out[key.strip()] = " ".join(parts)
    return out


def read_os_identity(os_release_path: str = PATHS.os_release) -> str:
    """Best-effort distribution identity, e.g. "ubuntu Ubuntu 22.04.4 LTS"."""

    text = _read_text(Path(os_release_path))
    if text:
        info = parse_os_release(text)
        fields = [info.get(k) for k in ("ID", "NAME", "PRETTY_NAME", "VERSION")]
        identity = " ".join(f for f in fields if f)
        if identity:
            return identity

    try:
        r = run_cmd(["lsb_release", "-d"], check=False)
    except OSError:
        return ""
    if r.returncode != 0:
        return ""
    # "Description:\tUbuntu 22.04.4 LTS"
    return r.stdout.partition(":")[2].strip() or r.stdout.strip()


def check_privilege_escalation() -> None:
    """Succeed iff we are root or sudo works without a password prompt."""

    if hasattr(os, "geteuid") and os.geteuid() == 0:
        logger.debug("Running as root; no privilege escalation needed")
        return

    try:
        r = run_cmd(["sudo", "-n", "true"], check=False, timeout_s=30)
    except (OSError, subprocess.TimeoutExpired) as e:
        raise PrivilegeError(f"Unable to query sudo: {e}") from e

    if r.returncode != 0:
        raise PrivilegeError(
            "User does not have sudo privileges or requires a password for sudo."
        )
    logger.debug("Sudo is available without a password")


def check_os_identity(expected: str, *, os_release_path: str = PATHS.os_release) -> None:
    detected = read_os_identity(os_release_path)
    if not expected or expected.lower() not in detected.lower():
        raise UnsupportedOsError(expected, detected)
    logger.debug("Operating system %r matches %r", detected, expected)


def free_megabytes(path: str) -> int:
    try:
        usage = shutil.disk_usage(path)
    except OSError as e:
        raise PreflightError(f"Cannot read free disk space on {path}: {e}") from e
    return usage.free // _MIB


def check_free_disk_space(path: str, min_megabytes: int) -> None:
    available = free_megabytes(path)
    if available < min_megabytes:
        raise InsufficientSpaceError(available=available, required=min_megabytes, path=path)
    logger.debug("Free space on %s: %dMB (required %dMB)", path, available, min_megabytes)


class PreflightChecker:
    """Read-only host checks run before any step.

    Order is fixed: privilege escalation, OS identity, free disk space. The
    first failure propagates as a PreflightError subclass.
    """

    def __init__(self, config: RunConfig, *, os_release_path: str = PATHS.os_release) -> None:
        self.config = config
        self.os_release_path = os_release_path

    def run(self) -> None:
        cfg = self.config

        if cfg.require_privilege:
            check_privilege_escalation()

        if cfg.expected_os:
            check_os_identity(cfg.expected_os, os_release_path=self.os_release_path)

        if cfg.min_free_disk_mb > 0:
            check_free_disk_space(cfg.disk_path, cfg.min_free_disk_mb)
