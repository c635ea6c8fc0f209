"""
End-to-end tests for the server-baseline command.
"""

import collections
import json
import signal
import textwrap

import pytest

from server_baseline import finalize
from server_baseline import main as main_mod
from server_baseline import preflight
from server_baseline.main import main, run
from server_baseline.models import RunStatus
from server_baseline.roles import parse_role

Usage = collections.namedtuple("Usage", "total used free")


@pytest.fixture
def role_file(tmp_path):
    p = tmp_path / "role.yaml"
    p.write_text(
        textwrap.dedent(
            """
            name: test-role
            reboot: never
            steps:
              - name: a
                path: a.sh
              - name: b
                path: optional/b.sh
                required: false
              - name: c
                path: c.sh
            """
        )
    )
    return p


@pytest.fixture
def cli_args(role_file, scripts_dir, tmp_path):
    return [
        "--role",
        str(role_file),
        "--scripts-dir",
        str(scripts_dir),
        "--log-dir",
        str(tmp_path / "logs"),
        "--no-sudo",
        "--expected-os",
        "",
        "--min-disk-mb",
        "0",
        "--yes",
    ]


def test_successful_run(cli_args, make_script, ran, tmp_path, capsys):
    make_script("a.sh")
    make_script("c.sh")
    report_path = tmp_path / "out" / "report.json"

    rc = main(cli_args + ["--report", str(report_path)])

    assert rc == 0
    assert ran() == ["a", "c"]

    data = json.loads(report_path.read_text())
    assert data["status"] == "succeeded"
    assert data["overall_success"] is True
    assert [r["skipped"] for r in data["results"]] == [False, True, False]

    logs = list((tmp_path / "logs").glob("server-baseline-*.log"))
    assert len(logs) == 1
    text = logs[0].read_text()
    assert "a executed successfully" in text
    assert "Warning: Script" in text
    assert "All specified scripts executed successfully" in text


def test_failed_step_exits_nonzero(cli_args, make_script, ran, tmp_path):
    make_script("a.sh", exit_code=1)
    make_script("c.sh")

    assert main(cli_args) == 1
    assert ran() == ["a"]

    log = next((tmp_path / "logs").glob("*.log")).read_text()
    assert "Error: Step a failed - Exit code: 1" in log


def test_failed_disk_preflight_runs_no_steps(cli_args, make_script, ran, tmp_path, monkeypatch, capsys):
    make_script("a.sh")
    make_script("c.sh")
    monkeypatch.setattr(preflight.shutil, "disk_usage", lambda p: Usage(0, 0, 500 * 1024 * 1024))

    rc = main(cli_args + ["--min-disk-mb", "1024"])

    assert rc == 1
    assert ran() == []
    assert "Insufficient disk space" in capsys.readouterr().err
    assert not (tmp_path / "logs").exists()


def test_start_at_runs_the_tail(cli_args, make_script, ran):
    make_script("a.sh")
    make_script("c.sh")

    assert main(cli_args + ["--start-at", "c"]) == 0
    assert ran() == ["c"]


def test_unknown_step_name_is_a_usage_error(cli_args):
    with pytest.raises(SystemExit) as exc:
        main(cli_args + ["--stop-after", "nope"])
    assert exc.value.code == 2


def test_unknown_role(capsys):
    assert main(["--role", "no-such-role"]) == 1
    assert "Unknown role" in capsys.readouterr().err


def test_list_roles(capsys):
    assert main(["--list-roles"]) == 0
    assert "server-baseline" in capsys.readouterr().out.split()


def test_list_steps(role_file, capsys):
    assert main(["--role", str(role_file), "--list-steps"]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines == ["a\ta.sh\trequired", "b\toptional/b.sh\toptional", "c\tc.sh\trequired"]


def test_unwritable_log_dir_is_fatal(cli_args, make_script, ran, tmp_path, capsys):
    make_script("a.sh")
    blocker = tmp_path / "blocker"
    blocker.write_text("")

    args = cli_args + ["--log-dir", str(blocker / "logs")]

    assert main(args) == 1
    assert ran() == []
    assert "Cannot create log directory" in capsys.readouterr().err


class TestRun:
    @pytest.fixture
    def role(self):
        return parse_role("name: r\nreboot: prompt\nsteps:\n  - a.sh\n")

    def test_declined_confirmation_runs_nothing(self, role, config, make_script, ran):
        make_script("a.sh")

        report = run(role, config, prompt=lambda q: "n")

        assert ran() == []
        assert report.status == RunStatus.DECLINED
        assert report.exit_code == 0

    def test_confirmed_run_then_reboot_prompt(self, role, config, make_script, ran, monkeypatch):
        make_script("a.sh")
        answers = iter(["y", "n"])
        questions = []

        def prompt(q):
            questions.append(q)
            return next(answers)

        report = run(role, config, prompt=prompt)

        assert ran() == ["a"]
        assert report.status == RunStatus.SUCCEEDED
        assert "proceed" in questions[0]
        assert "reboot" in questions[1]

    def test_signal_handlers_are_restored(self, role, config, make_script):
        make_script("a.sh")
        before = signal.getsignal(signal.SIGINT)

        run(role, config, assume_yes=True, reboot="never")

        assert signal.getsignal(signal.SIGINT) is before


def test_config_from_args_overrides_role(role_file):
    role = main_mod.load_role(str(role_file))
    args = main_mod.build_parser().parse_args(
        ["--scripts-dir", "/srv/steps", "--min-disk-mb", "10", "--expected-os", "debian", "--no-sudo", "--dry-run"]
    )

    cfg = main_mod.config_from_args(role, args)

    assert cfg.base_dir == "/srv/steps"
    assert cfg.min_free_disk_mb == 10
    assert cfg.expected_os == "debian"
    assert cfg.use_sudo is False
    assert cfg.require_privilege is False
    assert cfg.dry_run is True


def test_missing_disk_path_fails_preflight(tmp_path, scripts_dir, make_script, ran, capsys):
    make_script("a.sh")
    role = tmp_path / "disk.yaml"
    role.write_text(
        f"name: disk\npreflight:\n  disk_path: {tmp_path / 'nonexistent'}\n  min_free_disk_mb: 1\nsteps:\n  - a.sh\n"
    )

    rc = main(
        [
            "--role", str(role),
            "--scripts-dir", str(scripts_dir),
            "--log-dir", str(tmp_path / "logs"),
            "--no-sudo", "--expected-os", "", "--yes",
        ]
    )

    assert rc == 1
    assert ran() == []
    assert "nonexistent" in capsys.readouterr().err


def test_unwritable_report_path_keeps_exit_code(cli_args, make_script, ran, tmp_path):
    make_script("a.sh")
    make_script("c.sh")
    blocker = tmp_path / "blocker"
    blocker.write_text("")

    rc = main(cli_args + ["--report", str(blocker / "report.json")])

    assert rc == 0
    assert ran() == ["a", "c"]
    log = next((tmp_path / "logs").glob("*.log")).read_text()
    assert "Error: Failed to write run report" in log
    assert "Script finished with status succeeded" in log


def test_failing_reboot_is_logged(cli_args, make_script, tmp_path, monkeypatch):
    make_script("a.sh")
    make_script("c.sh")

    def failing(argv, **kw):
        raise RuntimeError(f"Command failed (1): {' '.join(argv)}")

    monkeypatch.setattr(finalize, "run_cmd", failing)

    rc = main(cli_args + ["--reboot", "always"])

    assert rc == 0
    log = next((tmp_path / "logs").glob("*.log")).read_text()
    assert "Error: Reboot failed; please reboot manually" in log
    assert "Script finished with status succeeded" in log
