"""
Task graph builder — validates a Plan and binds it to providers.

Turns a Plan into an ExecutionPlan: every task resolved to its
provider, every guard compiled, every reference checked. All problems
are collected and raised as one ``ConfigError`` before any task runs.

Rejected:
    - duplicate task or handler names
    - ``notify`` targets that are not handlers
    - handlers that notify
    - unknown capabilities, invalid provider parameters
    - unparsable guards, guards naming tasks that do not exist
    - idempotent tasks nobody can check (no provider check, no
      change report from the provider, no ``check``/``changed_when``)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from hostconverge.adapters.base import CapabilityProvider
from hostconverge.adapters.registry import CapabilityRegistry
from hostconverge.core.engine.guards import Guard, compile_guard
from hostconverge.core.errors import ConfigError, GuardSyntaxError
from hostconverge.core.models.plan import Plan
from hostconverge.core.models.task import Task

logger = logging.getLogger(__name__)


@dataclass
class PlannedTask:
    """A task bound to its provider, guards compiled."""

    task: Task
    provider: CapabilityProvider
    fatal: bool
    handler: bool = False
    when: Guard | None = None
    check: Guard | None = None
    changed_when: Guard | None = None
    failed_when: Guard | None = None

    @property
    def name(self) -> str:
        return self.task.name


@dataclass
class ExecutionPlan:
    """A validated, ready-to-run plan."""

    name: str = ""
    source: str | None = None
    tasks: list[PlannedTask] = field(default_factory=list)
    handlers: dict[str, PlannedTask] = field(default_factory=dict)

    @property
    def total_tasks(self) -> int:
        return len(self.tasks)

    @property
    def notified_handlers(self) -> set[str]:
        """Handler names that at least one task can notify."""
        return {n for pt in self.tasks for n in pt.task.notify}


def build_plan(plan: Plan, registry: CapabilityRegistry) -> ExecutionPlan:
    """Build an execution plan from a loaded Plan.

    Args:
        plan: The loaded plan (variables already rendered).
        registry: Providers to bind capabilities to.

    Returns:
        ExecutionPlan, tasks in declaration order.

    Raises:
        ConfigError: Carrying every problem found.
    """
    errors: list[str] = []

    task_names = _check_unique(plan.task_names, "task", errors)
    handler_names = _check_unique(plan.handler_names, "handler", errors)
    both = task_names & handler_names
    for name in sorted(both):
        errors.append(f"'{name}' is declared both as a task and as a handler")
    known = task_names | handler_names

    execution = ExecutionPlan(name=plan.name, source=plan.source)

    for task in plan.tasks:
        for target in task.notify:
            if target not in handler_names:
                errors.append(f"Task '{task.name}': notify target '{target}' is not a handler")
        planned = _bind(task, registry, known, errors, handler=False)
        if planned is not None:
            execution.tasks.append(planned)

    for handler in plan.handlers:
        if handler.notify:
            errors.append(f"Handler '{handler.name}': handlers cannot notify")
        planned = _bind(handler, registry, known, errors, handler=True)
        if planned is not None:
            execution.handlers.setdefault(handler.name, planned)

    if errors:
        raise ConfigError(f"Plan '{plan.name}' is invalid: {len(errors)} error(s)", errors)

    logger.debug(
        "Built plan '%s': %d tasks, %d handlers",
        plan.name, execution.total_tasks, len(execution.handlers),
    )
    return execution


def _check_unique(names: list[str], kind: str, errors: list[str]) -> set[str]:
    seen: set[str] = set()
    for name in names:
        if name in seen:
            errors.append(f"Duplicate {kind} name '{name}'")
        seen.add(name)
    return seen


def _bind(
    task: Task,
    registry: CapabilityRegistry,
    known: set[str],
    errors: list[str],
    handler: bool,
) -> PlannedTask | None:
    label = f"{'Handler' if handler else 'Task'} '{task.name}'"

    guards: dict[str, Guard | None] = {}
    for attr in ("when", "check", "changed_when", "failed_when"):
        source = getattr(task, attr)
        if source is None:
            guards[attr] = None
            continue
        try:
            guard = compile_guard(source)
        except GuardSyntaxError as e:
            errors.append(f"{label}: {attr}: {e}")
            guards[attr] = None
            continue
        for ref in sorted(guard.task_refs - known):
            errors.append(f"{label}: {attr} references unknown task '{ref}'")
        guards[attr] = guard

    ok, message = registry.validate(task.capability, task.params)
    if not ok:
        errors.append(f"{label}: {message}")
        return None

    provider = registry.get(task.capability)
    assert provider is not None  # validate() rejects unknown capabilities

    if task.idempotent and not handler:
        checkable = (
            provider.can_check(task.params)
            or provider.reports_change(task.params)
            or task.check is not None
            or task.changed_when is not None
        )
        if not checkable:
            errors.append(
                f"{label}: '{task.capability}' cannot tell whether its end state "
                f"holds; add 'check', 'changed_when', or 'idempotent: false'"
            )

    fatal = task.fatal if task.fatal is not None else provider.fatal_by_default
    return PlannedTask(
        task=task,
        provider=provider,
        fatal=fatal,
        handler=handler,
        **guards,
    )
