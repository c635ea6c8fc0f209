from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .lib.env import DEFAULT_MIN_FREE_DISK_MB, PATHS


@dataclass(frozen=True)
class RunConfig:
    """Everything the preflight checks and the runner need, passed explicitly."""

    base_dir: str = PATHS.scripts_dir
    log_dir: str = PATHS.log_dir
    min_free_disk_mb: int = DEFAULT_MIN_FREE_DISK_MB
    disk_path: str = "/"
    expected_os: Optional[str] = "ubuntu"
    require_privilege: bool = True
    # Prefix steps with `sudo -n` when not already root.
    use_sudo: bool = True
    dry_run: bool = False
