"""
Pytest configuration and fixtures for server-baseline tests.
"""

from __future__ import annotations

import logging
import os
import stat
from pathlib import Path
from typing import Callable, Generator

import pytest

from server_baseline.config import RunConfig


@pytest.fixture(autouse=True)
def reset_logging() -> Generator[None, None, None]:
    """Close whatever configure_logging() attached to the root logger."""
    yield
    root = logging.getLogger()
    handle = getattr(root, "_server_baseline_handle", None)
    if handle is not None:
        handle.close()


@pytest.fixture
def scripts_dir(tmp_path: Path) -> Path:
    d = tmp_path / "scripts"
    d.mkdir()
    return d


@pytest.fixture
def marker(tmp_path: Path) -> Path:
    """File every test script appends its name to, in execution order."""
    return tmp_path / "ran.txt"


@pytest.fixture
def make_script(scripts_dir: Path, marker: Path) -> Callable[..., Path]:
    """Write a shell step script under scripts_dir.

    The script records its name in `marker` and exits with `exit_code`.
    """

    def _make(rel: str, exit_code: int = 0, *, body: str = "", executable: bool = True) -> Path:
        p = scripts_dir / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(
            "#!/bin/sh\n"
            f"echo {p.stem} >> '{marker}'\n"
            f"{body}\n"
            f"exit {exit_code}\n",
            encoding="utf-8",
        )
        mode = p.stat().st_mode
        if executable:
            os.chmod(p, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        else:
            os.chmod(p, mode & ~(stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH))
        return p

    return _make


@pytest.fixture
def ran(marker: Path) -> Callable[[], list]:
    def _ran() -> list:
        if not marker.exists():
            return []
        return marker.read_text(encoding="utf-8").split()

    return _ran


@pytest.fixture
def config(scripts_dir: Path, tmp_path: Path) -> RunConfig:
    """Config with every host check disabled and no sudo."""
    return RunConfig(
        base_dir=str(scripts_dir),
        log_dir=str(tmp_path / "logs"),
        min_free_disk_mb=0,
        expected_os=None,
        require_privilege=False,
        use_sudo=False,
    )
