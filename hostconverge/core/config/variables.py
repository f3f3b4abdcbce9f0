"""
Plan variables — ``{var}`` substitution in task names, guards and params.

Simple string replacement, no Jinja, no escaping. Values come from,
lowest priority first:

    - built-ins: ``{user}``, ``{home}``, ``{arch}``, ``{hostname}``
    - the plan's ``vars:`` mapping
    - ``--var KEY=VALUE`` overrides from the command line

Unknown placeholders are left in place, so literal braces in shell
commands (``${db:Status-Abbrev}``, ``awk '{print $1}'``) survive.
"""

from __future__ import annotations

import os
import platform
import re
import socket
from pathlib import Path
from typing import Any

from hostconverge.core.errors import ConfigError

_ARCH_MAP = {"x86_64": "amd64", "aarch64": "arm64", "armv7l": "armhf"}

_PLACEHOLDER_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


def builtin_vars() -> dict[str, str]:
    """Variables populated from the local environment."""
    machine = platform.machine().lower()
    return {
        "user": os.getenv("USER", os.getenv("LOGNAME", "unknown")),
        "home": str(Path.home()),
        "arch": _ARCH_MAP.get(machine, machine),
        "hostname": socket.gethostname(),
    }


def merge_vars(
    plan_vars: dict[str, Any] | None = None,
    overrides: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Merge built-ins, plan vars and overrides (later wins).

    Plan vars may themselves use placeholders (``/home/{user}/bin``);
    they are rendered against built-ins and overrides first.
    """
    base = builtin_vars()
    merged: dict[str, Any] = {**base, **(overrides or {})}
    for key, value in (plan_vars or {}).items():
        if overrides and key in overrides:
            continue
        merged[key] = render(value, merged)
    return merged


def render(value: Any, variables: dict[str, Any]) -> Any:
    """Substitute placeholders in a string, list or dict (recursively).

    A string that is exactly one known placeholder takes the variable's
    value as-is, so ``port: "{jenkins_port}"`` stays an int.
    """
    if isinstance(value, str):
        whole = _PLACEHOLDER_RE.fullmatch(value)
        if whole and whole.group(1) in variables:
            return variables[whole.group(1)]
        return _PLACEHOLDER_RE.sub(
            lambda m: str(variables[m.group(1)]) if m.group(1) in variables else m.group(0),
            value,
        )
    if isinstance(value, list):
        return [render(v, variables) for v in value]
    if isinstance(value, dict):
        return {k: render(v, variables) for k, v in value.items()}
    return value


def render_text(value: str | None, variables: dict[str, Any]) -> str | None:
    """Like ``render`` but always returns a string (names, guards)."""
    if value is None:
        return None
    return str(render(value, variables))


def unresolved(value: Any) -> list[str]:
    """Placeholder names still present in a rendered value."""
    found: list[str] = []
    if isinstance(value, str):
        found.extend(_PLACEHOLDER_RE.findall(value))
    elif isinstance(value, list):
        for v in value:
            found.extend(unresolved(v))
    elif isinstance(value, dict):
        for v in value.values():
            found.extend(unresolved(v))
    return found


def parse_overrides(pairs: list[str] | tuple[str, ...]) -> dict[str, str]:
    """Parse ``KEY=VALUE`` strings from the command line.

    Raises:
        ConfigError: A pair has no ``=`` or an empty key.
    """
    result: dict[str, str] = {}
    errors = []
    for pair in pairs:
        key, sep, value = pair.partition("=")
        key = key.strip()
        if not sep or not key:
            errors.append(f"Invalid variable override {pair!r} (expected KEY=VALUE)")
            continue
        result[key] = value
    if errors:
        raise ConfigError(errors[0], errors)
    return result
