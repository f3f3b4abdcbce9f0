"""
Tests for the task graph builder — validation before any task runs.
"""

import pytest

from hostconverge.adapters.control import DebugProvider, FailProvider
from hostconverge.adapters.mock import MockProvider
from hostconverge.adapters.registry import CapabilityRegistry
from hostconverge.core.engine.graph import build_plan
from hostconverge.core.errors import ConfigError
from hostconverge.core.models import Effect, Handler, Plan, Task


def _task(name: str, capability: str = "mock", params: dict | None = None, **kwargs) -> Task:
    return Task(name=name, effect=Effect(capability=capability, params=params or {}), **kwargs)


def _handler(name: str, capability: str = "mock", **kwargs) -> Handler:
    return Handler(name=name, effect=Effect(capability=capability), **kwargs)


def _errors(plan: Plan, registry: CapabilityRegistry) -> list[str]:
    with pytest.raises(ConfigError) as exc:
        build_plan(plan, registry)
    return exc.value.errors


# ── Valid plans ──────────────────────────────────────────────────────


class TestBuild:
    def test_order_preserved(self, registry):
        plan = Plan(name="p", tasks=[_task("b"), _task("a"), _task("c")])
        execution = build_plan(plan, registry)
        assert [pt.name for pt in execution.tasks] == ["b", "a", "c"]
        assert execution.total_tasks == 3

    def test_binds_provider(self, registry, mock_provider):
        execution = build_plan(Plan(tasks=[_task("a")]), registry)
        assert execution.tasks[0].provider is mock_provider

    def test_guards_compiled(self, registry):
        plan = Plan(tasks=[
            _task("a"),
            _task("b", when="changed('a')", check="true", changed_when="false", failed_when="false"),
        ])
        planned = build_plan(plan, registry).tasks[1]
        assert planned.when.task_refs == {"a"}
        assert planned.check is not None
        assert planned.changed_when is not None
        assert planned.failed_when is not None

    def test_handlers(self, registry):
        plan = Plan(
            tasks=[_task("a", notify="h")],
            handlers=[_handler("h"), _handler("unused")],
        )
        execution = build_plan(plan, registry)
        assert set(execution.handlers) == {"h", "unused"}
        assert execution.handlers["h"].handler
        assert execution.notified_handlers == {"h"}

    def test_guard_may_reference_handler(self, registry):
        plan = Plan(
            tasks=[_task("a", notify="h"), _task("b", when="changed('h')")],
            handlers=[_handler("h")],
        )
        build_plan(plan, registry)

    def test_empty_plan(self, registry):
        assert build_plan(Plan(name="empty"), registry).total_tasks == 0


class TestFatal:
    def test_provider_default(self, registry):
        plan = Plan(tasks=[_task("a"), _task("f", capability="fail")])
        execution = build_plan(plan, registry)
        assert execution.tasks[0].fatal is False
        assert execution.tasks[1].fatal is True

    def test_task_overrides_provider(self, registry):
        plan = Plan(tasks=[_task("a", fatal=True), _task("f", capability="fail", fatal=False)])
        execution = build_plan(plan, registry)
        assert execution.tasks[0].fatal is True
        assert execution.tasks[1].fatal is False


# ── Rejected plans ───────────────────────────────────────────────────


class TestRejected:
    def test_duplicate_task(self, registry):
        errors = _errors(Plan(tasks=[_task("a"), _task("a")]), registry)
        assert errors == ["Duplicate task name 'a'"]

    def test_duplicate_handler(self, registry):
        errors = _errors(Plan(handlers=[_handler("h"), _handler("h")]), registry)
        assert errors == ["Duplicate handler name 'h'"]

    def test_task_and_handler_share_name(self, registry):
        errors = _errors(Plan(tasks=[_task("x")], handlers=[_handler("x")]), registry)
        assert "'x' is declared both as a task and as a handler" in errors

    def test_dangling_notify(self, registry):
        errors = _errors(Plan(tasks=[_task("a", notify="Restart")]), registry)
        assert errors == ["Task 'a': notify target 'Restart' is not a handler"]

    def test_notify_task_is_not_handler(self, registry):
        errors = _errors(Plan(tasks=[_task("a"), _task("b", notify="a")]), registry)
        assert any("notify target 'a' is not a handler" in e for e in errors)

    def test_handler_cannot_notify(self, registry):
        plan = Plan(handlers=[_handler("h1", notify="h2"), _handler("h2")])
        errors = _errors(plan, registry)
        assert "Handler 'h1': handlers cannot notify" in errors

    def test_guard_syntax(self, registry):
        errors = _errors(Plan(tasks=[_task("a", when="changed(")]), registry)
        assert len(errors) == 1
        assert errors[0].startswith("Task 'a': when:")

    def test_guard_unknown_task(self, registry):
        errors = _errors(Plan(tasks=[_task("a", when="changed('ghost')")]), registry)
        assert errors == ["Task 'a': when references unknown task 'ghost'"]

    def test_unknown_capability(self, registry):
        errors = _errors(Plan(tasks=[_task("a", capability="yum")]), registry)
        assert "Unknown capability 'yum'" in errors[0]

    def test_invalid_params(self, registry):
        errors = _errors(Plan(tasks=[_task("a", params={"invalid": "bad port"})]), registry)
        assert errors == ["Task 'a': bad port"]

    def test_unverifiable_idempotent_task(self):
        registry = CapabilityRegistry([MockProvider()])
        errors = _errors(Plan(tasks=[_task("a")]), registry)
        assert "cannot tell whether its end state holds" in errors[0]

    def test_unverifiable_task_accepted_with_escape_hatch(self):
        registry = CapabilityRegistry([MockProvider()])
        plan = Plan(tasks=[
            _task("a", idempotent=False),
            _task("b", check="true"),
            _task("c", changed_when="false"),
        ])
        assert build_plan(plan, registry).total_tasks == 3

    def test_handlers_need_no_check(self):
        registry = CapabilityRegistry([MockProvider()])
        plan = Plan(handlers=[_handler("h")])
        build_plan(plan, registry)

    def test_all_errors_reported_together(self):
        registry = CapabilityRegistry([MockProvider(checkable=True), DebugProvider(), FailProvider()])
        plan = Plan(tasks=[
            _task("a"),
            _task("a"),
            _task("b", notify="nope"),
            _task("c", when="failed('ghost')"),
            _task("d", capability="debug"),
        ])
        errors = _errors(plan, registry)
        assert len(errors) == 4
