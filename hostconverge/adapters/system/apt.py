"""
APT provider — install, upgrade and remove Debian packages.
"""

from __future__ import annotations

import logging
import re
import shutil
from typing import Any

from hostconverge.adapters.base import CapabilityProvider, ExecutionContext, as_list
from hostconverge.adapters.shell.command import run_command
from hostconverge.core.models.fact import NOT_FOUND
from hostconverge.core.models.result import Invocation

logger = logging.getLogger(__name__)

_STATES = {"present", "absent", "latest"}

_APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}

# "0 upgraded, 1 newly installed, 0 to remove and 3 not upgraded."
_SUMMARY_RE = re.compile(r"(\d+) upgraded, (\d+) newly installed, (\d+) to remove")


def summary_changed(output: str) -> bool | None:
    """Parse apt-get's summary line. None when there is none."""
    m = _SUMMARY_RE.search(output)
    if m is None:
        return None
    return any(int(n) > 0 for n in m.groups())


class AptProvider(CapabilityProvider):
    """Manage packages with apt-get.

    Params:
        name (str|list): Package name(s); glob patterns for state=absent.
        state (str): 'present' (default), 'absent' or 'latest'.
        purge (bool): Purge configuration on removal (default: False).
        update_cache (bool): Run ``apt-get update`` first (default: False).
    """

    fatal_by_default = True

    @property
    def name(self) -> str:
        return "apt"

    def is_available(self) -> bool:
        return shutil.which("apt-get") is not None

    def validate(self, params: dict[str, Any]) -> tuple[bool, str]:
        names = as_list(params.get("name"))
        state = params.get("state", "present")
        if state not in _STATES:
            return False, f"Unknown state '{state}'. Valid: {', '.join(sorted(_STATES))}"
        if not names and not params.get("update_cache"):
            return False, "Nothing to do: give 'name' and/or 'update_cache'"
        return True, ""

    def can_check(self, params: dict[str, Any]) -> bool:
        return bool(as_list(params.get("name"))) and params.get("state", "present") != "latest"

    def reports_change(self, params: dict[str, Any]) -> bool:
        return bool(as_list(params.get("name")))

    def is_converged(self, context: ExecutionContext, facts: Any) -> bool | None:
        names = as_list(context.params.get("name"))
        state = context.params.get("state", "present")
        if not names or state == "latest":
            return None
        installed = [facts.query(f"package:{n}") is not NOT_FOUND for n in names]
        if state == "absent":
            return not any(installed)
        return all(installed)

    def affected_facts(self, params: dict[str, Any]) -> list[str]:
        # Packages ship binaries, units and files.
        return [
            "package:*", "command:*", "service:*", "enabled:*",
            "path:*", "glob:*", "file:*",
        ]

    def invoke(self, context: ExecutionContext) -> Invocation:
        params = context.params
        names = as_list(params.get("name"))
        state = params.get("state", "present")
        stdout: list[str] = []
        stderr: list[str] = []

        if params.get("update_cache"):
            update = run_command(
                ["apt-get", "update"], timeout=context.timeout, env_overrides=_APT_ENV,
            )
            stdout.append(update.stdout)
            stderr.append(update.stderr)
            if not update.ok or not names:
                return Invocation(
                    exit_code=update.exit_code,
                    stdout="".join(stdout),
                    stderr="".join(stderr),
                )

        if state == "absent":
            cmd = ["apt-get", "remove", "-y"]
            if params.get("purge"):
                cmd.append("--purge")
        else:
            cmd = ["apt-get", "install", "-y", "--no-install-recommends"]
        cmd.extend(names)

        result = run_command(cmd, timeout=context.timeout, env_overrides=_APT_ENV)
        stdout.append(result.stdout)
        stderr.append(result.stderr)
        return Invocation(
            exit_code=result.exit_code,
            stdout="".join(stdout),
            stderr="".join(stderr),
            changed=summary_changed(result.stdout) if result.ok else None,
            metadata={"command": cmd},
        )
