"""
Plan check use case — validate a plan file and report issues.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from hostconverge.adapters.registry import CapabilityRegistry, build_default_registry
from hostconverge.core.config.loader import ConfigError, find_plan_file, load_plan
from hostconverge.core.config.variables import unresolved
from hostconverge.core.engine.graph import build_plan
from hostconverge.core.models.plan import Plan


@dataclass
class PlanCheckResult:
    """Result of plan validation."""

    valid: bool = False
    plan: Plan | None = None
    plan_path: Path | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "plan_path": str(self.plan_path) if self.plan_path else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "plan_name": self.plan.name if self.plan else None,
            "task_count": len(self.plan.tasks) if self.plan else 0,
            "handler_count": len(self.plan.handlers) if self.plan else 0,
        }


def check_plan(
    plan_path: Path | None = None,
    overrides: dict[str, Any] | None = None,
    registry: CapabilityRegistry | None = None,
) -> PlanCheckResult:
    """Validate a plan without running it.

    Args:
        plan_path: Plan file. None = search upward for plan.yml.
        overrides: ``--var`` values.
        registry: Providers to validate against (default: built-ins).

    Returns:
        PlanCheckResult with validation status and any issues.
    """
    result = PlanCheckResult()

    if plan_path is None:
        plan_path = find_plan_file()
    if plan_path is None:
        result.errors.append("No plan.yml found.")
        return result
    result.plan_path = plan_path

    # Load and validate
    try:
        plan = load_plan(plan_path, overrides=overrides)
        result.plan = plan
    except ConfigError as e:
        result.errors.extend(e.errors)
        return result

    if registry is None:
        registry = build_default_registry()

    try:
        execution = build_plan(plan, registry)
    except ConfigError as e:
        result.errors.extend(e.errors)
        return result

    # Semantic checks
    if not plan.tasks:
        result.warnings.append("Plan has no tasks. Nothing to converge.")

    for name in plan.handler_names:
        if name not in execution.notified_handlers:
            result.warnings.append(f"Handler '{name}' is never notified")

    status = registry.provider_status()
    used = sorted({t.capability for t in plan.tasks + plan.handlers})
    for capability in used:
        if not status.get(capability, {}).get("available", False):
            result.warnings.append(f"Capability '{capability}' is not available on this host")

    for task in plan.tasks + plan.handlers:
        names = sorted(set(unresolved(task.params)))
        if names:
            placeholders = ", ".join(f"{{{n}}}" for n in names)
            result.warnings.append(f"Task '{task.name}': unresolved placeholder(s) {placeholders}")

    result.valid = len(result.errors) == 0
    return result
