from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from typing import Callable, Optional

from .config import RunConfig
from .errors import LogInitError, PreflightError, RoleConfigError
from .finalize import ask_yes_no, maybe_reboot
from .lib.cancel import CancelToken, install_signal_handlers
from .lib.env import DEFAULT_ROLE, PATHS
from .logging_utils import configure_logging
from .models import RunReport
from .pipeline import StepRunner, select_steps
from .preflight import PreflightChecker
from .report_store import save_report
from .roles import REBOOT_POLICIES, RoleConfig, list_roles, load_role

logger = logging.getLogger(__name__)


def run(
    role: RoleConfig,
    config: RunConfig,
    *,
    start_at: Optional[str] = None,
    stop_after: Optional[str] = None,
    assume_yes: bool = False,
    reboot: Optional[str] = None,
    report_path: Optional[str] = None,
    cancel: Optional[CancelToken] = None,
    prompt: Callable[[str], str] = input,
) -> RunReport:
    """Preflight, then log setup, then the role's steps, then the reboot policy."""

    steps = select_steps(role.steps, start_at=start_at, stop_after=stop_after)
    report = RunReport(role=role.name)

    try:
        PreflightChecker(config).run()
    except PreflightError as e:
        print(f"Error: {e}", file=sys.stderr)
        report.fail_preflight(str(e))
        return report.finish()
    report.preflight_passed = True

    with configure_logging(config.log_dir) as log:
        log.write(f"Script started for role {role.name}")
        log.write(f"Preflight checks passed (log file {log.path})")

        if not assume_yes and not ask_yes_no(
            f"Do you want to proceed with the {role.name} configuration?", prompt=prompt
        ):
            log.write("User chose not to proceed. Exiting.")
            report.decline()
            return report.finish()

        cancel = cancel or CancelToken()
        restore = install_signal_handlers(cancel)
        try:
            StepRunner(config, cancel=cancel).run(steps, config.base_dir, role=role.name, report=report)
        finally:
            restore()

        # The steps have already run: failures past this point are logged, and
        # the report's exit code stands.
        if report_path:
            try:
                save_report(report_path, report)
            except (OSError, ValueError):
                logger.exception("Failed to write run report to %s", report_path)

        try:
            maybe_reboot(
                report,
                reboot or role.reboot,
                use_sudo=config.use_sudo,
                dry_run=config.dry_run,
                prompt=prompt,
            )
        except (OSError, RuntimeError):
            logger.exception("Reboot failed; please reboot manually")
        log.write(f"Script finished with status {report.status.value}")

    return report


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="server-baseline", description="Run a server provisioning role.")
    p.add_argument("--role", default=DEFAULT_ROLE, help="Built-in role name or path to a role YAML file")
    p.add_argument("--scripts-dir", default=None, help=f"Root of the step scripts (default {PATHS.scripts_dir})")
    p.add_argument("--log-dir", default=PATHS.log_dir, help="Directory for server-baseline-YYYYMMDD.log")
    p.add_argument("--min-disk-mb", type=int, default=None, help="Minimum free disk space in MB (0 disables)")
    p.add_argument("--expected-os", default=None, help="Required OS identity substring (e.g. ubuntu)")
    p.add_argument("--start-at", default=None, help="Start at step name")
    p.add_argument("--stop-after", default=None, help="Stop after step name")
    p.add_argument("--dry-run", action="store_true", help="Log commands without executing them")
    p.add_argument("--no-sudo", action="store_true", help="Run steps without sudo and skip the sudo check")
    p.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")
    p.add_argument("--reboot", choices=REBOOT_POLICIES, default=None, help="Override the role's reboot policy")
    p.add_argument("--report", default=None, help="Write the run report here (json|yaml)")
    p.add_argument("--list-roles", action="store_true", help="List built-in roles and exit")
    p.add_argument("--list-steps", action="store_true", help="List the role's steps and exit")
    return p


def config_from_args(role: RoleConfig, args: argparse.Namespace) -> RunConfig:
    cfg = role.run_config(RunConfig(log_dir=args.log_dir))
    changes = {}
    if args.scripts_dir:
        changes["base_dir"] = args.scripts_dir
    if args.min_disk_mb is not None:
        changes["min_free_disk_mb"] = args.min_disk_mb
    if args.expected_os is not None:
        changes["expected_os"] = args.expected_os or None
    if args.no_sudo:
        changes["use_sudo"] = False
        changes["require_privilege"] = False
    if args.dry_run:
        changes["dry_run"] = True
    return dataclasses.replace(cfg, **changes)


def main(argv: Optional[list[str]] = None) -> int:
    p = build_parser()
    args = p.parse_args(argv)

    if args.list_roles:
        for name in list_roles():
            print(name)
        return 0

    try:
        role = load_role(args.role)
    except RoleConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.list_steps:
        for s in role.steps:
            flag = "required" if s.required else "optional"
            print(f"{s.name}\t{s.path_or_command}\t{flag}")
        return 0

    config = config_from_args(role, args)

    try:
        select_steps(role.steps, start_at=args.start_at, stop_after=args.stop_after)
    except ValueError as e:
        p.error(str(e))

    try:
        report = run(
            role,
            config,
            start_at=args.start_at,
            stop_after=args.stop_after,
            assume_yes=args.yes,
            reboot=args.reboot,
            report_path=args.report,
        )
    except LogInitError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return report.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
