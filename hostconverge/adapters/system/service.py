"""
Service provider — systemd unit control.
"""

from __future__ import annotations

import logging
import shutil
from typing import Any

from hostconverge.adapters.base import CapabilityProvider, ExecutionContext
from hostconverge.adapters.shell.command import run_command
from hostconverge.core.models.result import Invocation

logger = logging.getLogger(__name__)

_STATES = {"started", "stopped", "restarted", "reloaded"}

_VERBS = {
    "started": "start",
    "stopped": "stop",
    "restarted": "restart",
    "reloaded": "reload",
}


class ServiceProvider(CapabilityProvider):
    """Start, stop, restart and enable systemd units.

    Params:
        name (str): Unit name.
        state (str): 'started', 'stopped', 'restarted' or 'reloaded'.
        enabled (bool): Enable / disable at boot.

    'restarted' and 'reloaded' always act, so they cannot be checked.
    """

    fatal_by_default = True

    @property
    def name(self) -> str:
        return "service"

    def is_available(self) -> bool:
        return shutil.which("systemctl") is not None

    def validate(self, params: dict[str, Any]) -> tuple[bool, str]:
        if not params.get("name"):
            return False, "Missing required param: 'name'"
        state = params.get("state")
        if state is not None and state not in _STATES:
            return False, f"Unknown state '{state}'. Valid: {', '.join(sorted(_STATES))}"
        if state is None and params.get("enabled") is None:
            return False, "Nothing to do: give 'state' and/or 'enabled'"
        return True, ""

    def can_check(self, params: dict[str, Any]) -> bool:
        return params.get("state") in (None, "started", "stopped")

    def is_converged(self, context: ExecutionContext, facts: Any) -> bool | None:
        params = context.params
        unit = params["name"]
        state = params.get("state")
        if state in ("restarted", "reloaded"):
            return None

        if state is not None:
            active = facts.query(f"service:{unit}") == "active"
            if active != (state == "started"):
                return False

        enabled = params.get("enabled")
        if enabled is not None:
            is_enabled = facts.query(f"enabled:{unit}") == "enabled"
            if is_enabled != bool(enabled):
                return False
        return True

    def affected_facts(self, params: dict[str, Any]) -> list[str]:
        unit = params.get("name", "")
        return [f"service:{unit}", f"enabled:{unit}", "port:*"]

    def invoke(self, context: ExecutionContext) -> Invocation:
        params = context.params
        unit = params["name"]
        commands: list[list[str]] = []

        state = params.get("state")
        if state is not None:
            commands.append(["systemctl", _VERBS[state], unit])
        enabled = params.get("enabled")
        if enabled is not None:
            commands.append(["systemctl", "enable" if enabled else "disable", unit])

        stdout: list[str] = []
        stderr: list[str] = []
        for cmd in commands:
            result = run_command(cmd, timeout=context.timeout)
            stdout.append(result.stdout)
            stderr.append(result.stderr)
            if not result.ok:
                return Invocation(
                    exit_code=result.exit_code,
                    stdout="".join(stdout),
                    stderr="".join(stderr),
                    metadata={"command": cmd},
                )
        return Invocation(stdout="".join(stdout), stderr="".join(stderr))
