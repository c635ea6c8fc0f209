"""Server baseline provisioning runner.

Core design goals:
- Roles are data: an ordered list of step scripts in YAML
- Read-only preflight checks before anything changes
- Strictly sequential, fail-fast step execution
- One dated, append-only log file per day
"""

__all__ = []
