"""
Plan loader — reads a plan YAML file into domain models.

This is the primary entry point for loading plans. It reads YAML,
normalizes the task shorthand, renders ``{var}`` placeholders, and
validates against the pydantic models. Every problem found is
collected into one ``ConfigError`` so a broken plan is reported in a
single pass.

Task shorthand::

    - name: Install lsof
      apt: {name: lsof}                 # single capability key

    - name: Install lsof
      capability: apt                   # explicit form
      params: {name: lsof}
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from hostconverge.core.config.variables import merge_vars, render, render_text
from hostconverge.core.errors import ConfigError
from hostconverge.core.models.plan import Plan
from hostconverge.core.models.task import Handler, Task

logger = logging.getLogger(__name__)

# Default plan filename
PLAN_CONFIG_FILE = "plan.yml"

_PLAN_KEYS = {"name", "description", "vars", "tasks", "handlers"}

_TASK_KEYS = {
    "name", "when", "notify", "fatal", "idempotent", "check",
    "changed_when", "failed_when", "invalidates", "timeout",
    "capability", "params",
}

_GUARD_KEYS = ("when", "check", "changed_when", "failed_when")

# Capabilities that accept a bare string in place of a params mapping
_STRING_SHORTHAND = {"command": "command", "debug": "msg", "fail": "msg"}

__all__ = [
    "PLAN_CONFIG_FILE",
    "ConfigError",
    "find_plan_file",
    "load_plan",
    "load_plan_data",
]


def find_plan_file(start_dir: Path | None = None) -> Path | None:
    """Search for plan.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to plan.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / PLAN_CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def load_plan(
    path: Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> Plan:
    """Load, render and validate a plan file.

    Args:
        path: Explicit path to the plan. If None, searches upward.
        overrides: ``--var`` values, highest priority.

    Returns:
        Validated Plan model.

    Raises:
        ConfigError: If the file is missing or invalid.
    """
    if path is None:
        path = find_plan_file()

    if path is None:
        raise ConfigError(f"No {PLAN_CONFIG_FILE} found. Pass the plan path explicitly.")

    if not path.is_file():
        raise ConfigError(f"Plan file not found: {path}")

    logger.debug("Loading plan from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    data.setdefault("name", path.stem)
    plan = load_plan_data(data, source=str(path), overrides=overrides)
    logger.info(
        "Loaded plan '%s' with %d tasks, %d handlers",
        plan.name, len(plan.tasks), len(plan.handlers),
    )
    return plan


def load_plan_data(
    data: dict[str, Any],
    source: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> Plan:
    """Build a Plan from an already-parsed mapping.

    Raises:
        ConfigError: Carrying every problem found.
    """
    label = source or "<plan>"
    errors: list[str] = []

    unknown = sorted(set(data) - _PLAN_KEYS)
    if unknown:
        errors.append(f"Unknown top-level key(s): {', '.join(unknown)}")

    plan_vars = data.get("vars") or {}
    if not isinstance(plan_vars, dict):
        errors.append("'vars' must be a mapping")
        plan_vars = {}
    variables = merge_vars(plan_vars, overrides)

    tasks = _load_entries(data.get("tasks"), "tasks", Task, variables, errors)
    handlers = _load_entries(data.get("handlers"), "handlers", Handler, variables, errors)

    if errors:
        raise ConfigError(f"Invalid plan {label}: {len(errors)} error(s)", errors)

    return Plan(
        name=str(data.get("name") or ""),
        description=str(data.get("description") or ""),
        vars=variables,
        tasks=tasks,
        handlers=handlers,
        source=source,
    )


def _load_entries(
    entries: Any,
    section: str,
    model: type[Task],
    variables: dict[str, Any],
    errors: list[str],
) -> list[Any]:
    if entries is None:
        return []
    if not isinstance(entries, list):
        errors.append(f"'{section}' must be a list")
        return []

    loaded = []
    for index, entry in enumerate(entries, start=1):
        where = f"{section}[{index}]"
        if not isinstance(entry, dict):
            errors.append(f"{where}: expected a mapping, got {type(entry).__name__}")
            continue
        if entry.get("name"):
            where = f"{where} '{entry['name']}'"
        try:
            fields = _normalize(entry, variables)
            loaded.append(model.model_validate(fields))
        except ConfigError as e:
            errors.extend(f"{where}: {err}" for err in e.errors)
        except ValidationError as e:
            for err in e.errors():
                loc = ".".join(str(p) for p in err["loc"]) or "task"
                errors.append(f"{where}: {loc}: {err['msg']}")
    return loaded


def _normalize(entry: dict[str, Any], variables: dict[str, Any]) -> dict[str, Any]:
    """Turn a YAML task mapping into Task fields, rendered."""
    if "name" not in entry:
        raise ConfigError("missing 'name'")

    if "capability" in entry:
        extra = sorted(set(entry) - _TASK_KEYS)
        if extra:
            raise ConfigError(f"unknown key(s): {', '.join(extra)}")
        capability = entry["capability"]
        params = entry.get("params") or {}
    else:
        if "params" in entry:
            raise ConfigError("'params' given without 'capability'")
        keys = [k for k in entry if k not in _TASK_KEYS]
        if not keys:
            raise ConfigError("no capability given")
        if len(keys) > 1:
            raise ConfigError(f"more than one capability given: {', '.join(sorted(keys))}")
        capability = keys[0]
        params = entry[capability]
        if params is None:
            params = {}
        elif isinstance(params, str) and capability in _STRING_SHORTHAND:
            params = {_STRING_SHORTHAND[capability]: params}

    if not isinstance(capability, str) or not capability:
        raise ConfigError("'capability' must be a non-empty string")
    if not isinstance(params, dict):
        raise ConfigError(f"parameters for '{capability}' must be a mapping")

    fields: dict[str, Any] = {
        k: v for k, v in entry.items()
        if k in _TASK_KEYS and k not in ("capability", "params")
    }
    fields["name"] = render_text(str(entry["name"]), variables)
    for key in _GUARD_KEYS:
        if isinstance(fields.get(key), str):
            fields[key] = render_text(fields[key], variables)
    for key in ("notify", "invalidates"):
        if key in fields:
            fields[key] = render(fields[key], variables)
    fields["effect"] = {"capability": capability, "params": render(params, variables)}
    return fields
