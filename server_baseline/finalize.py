from __future__ import annotations

import logging
from typing import Callable

from .lib.command import run_cmd
from .models import RunReport

logger = logging.getLogger(__name__)


def ask_yes_no(question: str, *, prompt: Callable[[str], str] = input) -> bool:
    try:
        answer = prompt(f"{question} (y/N): ")
    except EOFError:
        return False
    return answer.strip().lower() in {"y", "yes"}


def maybe_reboot(
    report: RunReport,
    policy: str,
    *,
    use_sudo: bool = True,
    dry_run: bool = False,
    prompt: Callable[[str], str] = input,
) -> bool:
    """Apply the role's reboot policy after a run. Returns True if a reboot was issued.

    Never reboots after a failed or cancelled run.
    """

    if not report.overall_success or report.cancelled:
        logger.info("Not rebooting: run did not complete successfully")
        return False

    if policy == "never":
        logger.info("Configuration complete. Reboot if necessary.")
        return False

    if policy == "prompt" and not ask_yes_no("Do you want to reboot now?", prompt=prompt):
        logger.info("User chose not to reboot now. Please reboot manually when ready.")
        return False

    logger.info("Rebooting now")
    run_cmd(["sync"], dry_run=dry_run)
    run_cmd(["sudo", "-n", "reboot"] if use_sudo else ["reboot"], dry_run=dry_run)
    return True
