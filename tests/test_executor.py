"""
Tests for the task executor — idempotence, guards on output, timeouts.
"""

from hostconverge.adapters.mock import MockProvider
from hostconverge.adapters.registry import CapabilityRegistry
from hostconverge.core.engine.executor import TaskExecutor, generate_run_id
from hostconverge.core.engine.graph import PlannedTask, build_plan
from hostconverge.core.errors import CapabilityFailure
from hostconverge.core.models import Effect, Invocation, Plan, Task, TaskResult


def _planned(registry: CapabilityRegistry, name: str = "t", capability: str = "mock", **kwargs) -> PlannedTask:
    task = Task(name=name, effect=Effect(capability=capability, params=kwargs.pop("params", {})), **kwargs)
    return build_plan(Plan(tasks=[task]), registry).tasks[0]


# ── Idempotence ──────────────────────────────────────────────────────


class TestIdempotence:
    def test_first_run_changes(self, registry, facts, mock_provider):
        result = TaskExecutor(facts).execute(_planned(registry), {})
        assert result.outcome == "changed"
        assert result.capability == "mock"
        assert mock_provider.call_count == 1

    def test_converged_task_not_invoked(self, registry, facts, mock_provider):
        mock_provider.mark_converged("t")
        result = TaskExecutor(facts).execute(_planned(registry), {})
        assert result.outcome == "unchanged"
        assert result.metadata == {"converged": True}
        assert mock_provider.call_count == 0

    def test_second_run_unchanged(self, registry, facts, mock_provider):
        executor = TaskExecutor(facts)
        planned = _planned(registry)
        executor.execute(planned, {})
        assert executor.execute(planned, {}).outcome == "unchanged"
        assert mock_provider.call_count == 1

    def test_check_guard_wins_over_provider(self, registry, facts, mock_provider):
        result = TaskExecutor(facts).execute(
            _planned(registry, check="'java' in fact('port:8080')"), {},
        )
        assert result.outcome == "unchanged"
        assert mock_provider.call_count == 0

    def test_check_guard_false_invokes(self, registry, facts, mock_provider):
        mock_provider.mark_converged("t")
        result = TaskExecutor(facts).execute(_planned(registry, check="has_fact('package:curl')"), {})
        assert result.outcome == "changed"
        assert mock_provider.call_count == 1

    def test_unavailable_fact_in_check_means_not_holding(self, registry, facts, mock_provider):
        result = TaskExecutor(facts).execute(_planned(registry, check="has_fact('service:ssh')"), {})
        assert result.outcome == "changed"
        assert mock_provider.call_count == 1

    def test_one_shot_always_invoked(self, registry, facts, mock_provider):
        mock_provider.mark_converged("t")
        result = TaskExecutor(facts).execute(_planned(registry, idempotent=False), {})
        assert result.outcome == "changed"
        assert mock_provider.call_count == 1

    def test_provider_change_verdict(self, registry, facts, mock_provider):
        mock_provider.set_response("t", Invocation(stdout="0 newly installed", changed=False))
        result = TaskExecutor(facts).execute(_planned(registry), {})
        assert result.outcome == "unchanged"
        assert result.stdout == "0 newly installed"


# ── Output guards ────────────────────────────────────────────────────


class TestOutputGuards:
    def test_changed_when_sees_own_output(self, registry, facts, mock_provider):
        mock_provider.set_response("t", Invocation(stdout="Nothing to do\n"))
        planned = _planned(registry, changed_when="not (stdout('t') =~ 'Nothing')")
        assert TaskExecutor(facts).execute(planned, {}).outcome == "unchanged"

    def test_changed_when_false(self, registry, facts):
        result = TaskExecutor(facts).execute(_planned(registry, changed_when="false"), {})
        assert result.outcome == "unchanged"

    def test_failed_when_on_success(self, registry, facts, mock_provider):
        mock_provider.set_response("t", Invocation(stdout="ERROR: disk full\n"))
        planned = _planned(registry, failed_when="stdout('t') =~ 'ERROR'")
        result = TaskExecutor(facts).execute(planned, {})
        assert result.failed
        assert result.error == "failed_when condition met: stdout('t') =~ 'ERROR'"
        assert result.stdout == "ERROR: disk full\n"

    def test_failed_when_overrides_exit_code(self, registry, facts, mock_provider):
        mock_provider.set_response("t", Invocation(exit_code=1, stdout="no match"))
        planned = _planned(registry, failed_when="rc('t') > 1")
        result = TaskExecutor(facts).execute(planned, {})
        assert not result.failed
        assert result.exit_code == 1

    def test_changed_when_not_evaluated_on_failure(self, registry, facts, mock_provider):
        mock_provider.set_failure("t", error="E: broken", exit_code=100)
        result = TaskExecutor(facts).execute(_planned(registry, changed_when="true"), {})
        assert result.failed
        assert result.error == "E: broken"
        assert result.exit_code == 100

    def test_error_falls_back_to_exit_code(self, registry, facts, mock_provider):
        mock_provider.set_response("t", Invocation(exit_code=3))
        result = TaskExecutor(facts).execute(_planned(registry), {})
        assert result.error == "exit code 3"
        assert result.error_kind == "CapabilityFailure"


# ── Failures ─────────────────────────────────────────────────────────


class TestFailures:
    def test_provider_exception(self, registry, facts, mock_provider):
        mock_provider.set_exception("t", RuntimeError("boom"))
        result = TaskExecutor(facts).execute(_planned(registry), {})
        assert result.failed
        assert result.error == "RuntimeError: boom"
        assert result.error_kind == "CapabilityFailure"

    def test_capability_failure_kept_as_is(self, registry, facts, mock_provider):
        mock_provider.set_exception("t", CapabilityFailure("apt lock held", capability="mock"))
        result = TaskExecutor(facts).execute(_planned(registry), {})
        assert result.failed
        assert result.error == "apt lock held"
        assert result.error_kind == CapabilityFailure.kind

    def test_end_state_check_error_invokes(self, facts):
        class BrokenCheck(MockProvider):
            def is_converged(self, context, facts):
                raise OSError("dpkg database locked")

        provider = BrokenCheck(checkable=True)
        registry = CapabilityRegistry([provider])
        result = TaskExecutor(facts).execute(_planned(registry), {})
        assert result.changed
        assert provider.calls_for("t") == 1

    def test_check_guard_error_invokes(self, registry, mock_provider):
        class BrokenFacts:
            def query(self, key):
                raise RuntimeError("probe crashed")

        planned = _planned(registry, check="has_fact('package:curl')")
        result = TaskExecutor(BrokenFacts()).execute(planned, {})
        assert result.changed
        assert mock_provider.calls_for("t") == 1

    def test_timeout(self, registry, facts, mock_provider):
        mock_provider.set_delay("t", 1.0)
        result = TaskExecutor(facts).execute(_planned(registry, timeout=0.05), {})
        assert result.failed
        assert result.error_kind == "Timeout"
        assert "timed out" in result.error

    def test_default_timeout(self, registry, facts, mock_provider):
        mock_provider.set_delay("t", 1.0)
        result = TaskExecutor(facts, default_timeout=0.05).execute(_planned(registry), {})
        assert result.error_kind == "Timeout"

    def test_fatal_carried_on_result(self, registry, facts):
        result = TaskExecutor(facts).execute(_planned(registry, "f", capability="fail"), {})
        assert result.failed
        assert result.fatal is True


# ── Check mode ───────────────────────────────────────────────────────


class TestDryRun:
    def test_would_change(self, registry, facts, mock_provider):
        result = TaskExecutor(facts, dry_run=True).execute(_planned(registry), {})
        assert result.outcome == "changed"
        assert result.metadata == {"dry_run": True}
        assert mock_provider.call_count == 0

    def test_already_converged(self, registry, facts, mock_provider):
        mock_provider.mark_converged("t")
        result = TaskExecutor(facts, dry_run=True).execute(_planned(registry), {})
        assert result.outcome == "unchanged"

    def test_unknown_end_state_skipped(self, facts):
        mock = MockProvider()
        registry = CapabilityRegistry([mock])
        result = TaskExecutor(facts, dry_run=True).execute(
            _planned(registry, changed_when="false"), {},
        )
        assert result.skipped
        assert "end state unknown" in result.metadata["reason"]
        assert mock.call_count == 0

    def test_one_shot_skipped(self, registry, facts, mock_provider):
        result = TaskExecutor(facts, dry_run=True).execute(_planned(registry, idempotent=False), {})
        assert result.skipped
        assert mock_provider.call_count == 0


# ── Fact invalidation ────────────────────────────────────────────────


class TestInvalidation:
    def test_change_invalidates(self, registry, facts):
        facts.query("package:lsof")
        TaskExecutor(facts).execute(_planned(registry, invalidates=["package:*"]), {})
        assert "package:lsof" not in facts.cached_keys

    def test_failure_invalidates(self, registry, facts, mock_provider):
        facts.query("package:lsof")
        mock_provider.set_failure("t")
        TaskExecutor(facts).execute(_planned(registry, invalidates=["package:lsof"]), {})
        assert facts.cached_keys == []

    def test_unchanged_keeps_cache(self, registry, facts, mock_provider):
        facts.query("package:lsof")
        mock_provider.mark_converged("t")
        TaskExecutor(facts).execute(_planned(registry, invalidates=["package:*"]), {})
        assert facts.cached_keys == ["package:lsof"]


class TestContext:
    def test_prior_results_passed(self, registry, facts, mock_provider):
        prior = {"earlier": TaskResult.success("earlier", changed=True)}
        TaskExecutor(facts, host="web1").execute(_planned(registry), prior)
        ctx = mock_provider.call_log[0]
        assert ctx.prior == prior
        assert ctx.host == "web1"
        assert ctx.timeout == 300.0


def test_run_id_format():
    run_id = generate_run_id()
    assert run_id.startswith("run-")
    assert len(run_id.split("-")) == 4
    assert run_id != generate_run_id()
