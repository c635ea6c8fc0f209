from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Paths:
    scripts_dir: str = "/source-files/github/monorepo/scripts/bash/ubuntu"
    log_dir: str = "/logs"
    os_release: str = "/etc/os-release"


PATHS = Paths()

DEFAULT_ROLE = "server-baseline"
DEFAULT_MIN_FREE_DISK_MB = 1024
