from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .config import RunConfig
from .errors import RoleConfigError
from .models import PollPolicy, Step

ROLES_DIR = Path(__file__).resolve().parent / "roles"

REBOOT_POLICIES = ("never", "prompt", "always")


@dataclass(frozen=True)
class RoleConfig:
    """A provisioning role loaded from YAML: preflight settings plus an ordered step list."""

    raw: Dict[str, Any]
    source: Optional[str] = None

    @property
    def name(self) -> str:
        return str(self.raw.get("name") or (Path(self.source).stem if self.source else "unnamed"))

    @property
    def description(self) -> str:
        return str(self.raw.get("description") or "")

    @property
    def base_dir(self) -> Optional[str]:
        v = self.raw.get("base_dir")
        return str(v) if v else None

    @property
    def preflight(self) -> Dict[str, Any]:
        return dict(self.raw.get("preflight") or {})

    @property
    def reboot(self) -> str:
        return str(self.raw.get("reboot") or "never")

    @property
    def steps(self) -> List[Step]:
        return [_parse_step(entry, i) for i, entry in enumerate(self.raw.get("steps") or [])]

    def run_config(self, base: Optional[RunConfig] = None) -> RunConfig:
        """Overlay this role's settings on *base* (defaults when omitted)."""

        cfg = base or RunConfig()
        pf = self.preflight
        changes: Dict[str, Any] = {}
        if self.base_dir:
            changes["base_dir"] = self.base_dir
        if "os_identity" in pf:
            changes["expected_os"] = pf["os_identity"] or None
        if "min_free_disk_mb" in pf:
            changes["min_free_disk_mb"] = int(pf["min_free_disk_mb"] or 0)
        if "disk_path" in pf:
            changes["disk_path"] = str(pf["disk_path"])
        if "require_privilege" in pf:
            changes["require_privilege"] = bool(pf["require_privilege"])
        return dataclasses.replace(cfg, **changes)


def _parse_step(entry: Any, index: int) -> Step:
    where = f"steps[{index}]"

    if isinstance(entry, str):
        return Step(name=Path(entry).stem, path_or_command=entry)

    if not isinstance(entry, dict):
        raise RoleConfigError(f"{where} must be a path string or a mapping")

    path = entry.get("path")
    if not path:
        raise RoleConfigError(f"{where}.path is required")

    args = entry.get("args") or []
    if not isinstance(args, list):
        raise RoleConfigError(f"{where}.args must be a list")

    poll: Optional[PollPolicy] = None
    if entry.get("poll") is not None:
        p = entry["poll"]
        if not isinstance(p, dict) or p.get("timeout") is None:
            raise RoleConfigError(f"{where}.poll.timeout is required")
        try:
            poll = PollPolicy(timeout_s=float(p["timeout"]), interval_s=float(p.get("interval", 5)))
        except (TypeError, ValueError) as e:
            raise RoleConfigError(f"{where}.poll: {e}") from e
        if poll.timeout_s <= 0 or poll.interval_s <= 0:
            raise RoleConfigError(f"{where}.poll timeout and interval must be positive")

    return Step(
        name=str(entry.get("name") or Path(str(path)).stem),
        path_or_command=str(path),
        required=bool(entry.get("required", True)),
        args=tuple(str(a) for a in args),
        poll=poll,
    )


def _validate(role: RoleConfig) -> RoleConfig:
    if role.reboot not in REBOOT_POLICIES:
        raise RoleConfigError(f"reboot must be one of {', '.join(REBOOT_POLICIES)}, got {role.reboot!r}")

    steps = role.steps
    if not steps:
        raise RoleConfigError(f"Role {role.name} defines no steps")

    seen = set()
    for s in steps:
        if s.name in seen:
            raise RoleConfigError(f"Duplicate step name {s.name!r} in role {role.name}")
        seen.add(s.name)
    return role


def parse_role(text: str, *, source: Optional[str] = None) -> RoleConfig:
    try:
        raw = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise RoleConfigError(f"Invalid YAML in {source or 'role'}: {e}") from e
    if not isinstance(raw, dict):
        raise RoleConfigError("A role file must contain a mapping/object")
    return _validate(RoleConfig(raw=raw, source=source))


def list_roles() -> List[str]:
    return sorted(p.stem for p in ROLES_DIR.glob("*.yaml"))


def load_role(name_or_path: Union[str, Path]) -> RoleConfig:
    """Load a built-in role by name, or a role file by path."""

    p = Path(name_or_path)
    if p.suffix.lower() not in {".yaml", ".yml"}:
        p = ROLES_DIR / f"{name_or_path}.yaml"
        if not p.exists():
            raise RoleConfigError(
                f"Unknown role {name_or_path!r} (built-in roles: {', '.join(list_roles())})"
            )
    elif not p.exists():
        raise RoleConfigError(f"Role file not found: {p}")

    return parse_role(p.read_text(encoding="utf-8"), source=str(p))
