"""
End-to-end tests — the Jenkins plan against an in-memory host.

Loads plans/jenkins.yml, converges a FakeHost through apply_plan, and
checks the host state and the run reports: first run converges, the
second changes nothing, check mode touches nothing.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from hostconverge.adapters.fake_host import FakeHost
from hostconverge.core.models import Invocation
from hostconverge.core.observability.reporting import CollectingSink
from hostconverge.core.persistence.audit import AuditWriter
from hostconverge.core.use_cases.apply import EXIT_FAILED, EXIT_OK, apply_plan
from hostconverge.core.use_cases.plan_check import check_plan

JAVA_HOME = "/usr/lib/jvm/java-17-openjdk-amd64"


@pytest.fixture()
def host() -> FakeHost:
    return FakeHost(hostname="ci-runner", users={"deploy": ["deploy"]})


def converge(jenkins_plan: Path, host: FakeHost, state_dir: Path, **kwargs):
    overrides = {"deploy_user": "deploy", **kwargs.pop("overrides", {})}
    return apply_plan(
        jenkins_plan,
        overrides=overrides,
        mock_mode=True,
        fake_host=host,
        state_dir=state_dir,
        **kwargs,
    )


class TestJenkinsPlan:
    """Converging a fresh host."""

    def test_first_run_converges(self, jenkins_plan, host, tmp_state_dir):
        result = converge(jenkins_plan, host, tmp_state_dir)
        report = result.report
        assert result.exit_code() == EXIT_OK
        assert report.status == "success"
        assert report.host == "ci-runner"
        assert report.failed == 0

        assert {"lsof", "openjdk-17-jdk", "jenkins", "docker-ce", "curl"} <= set(host.packages)
        assert host.services["jenkins"] == {"active": True, "enabled": True}
        assert host.services["docker"] == {"active": True, "enabled": True}
        assert "docker" in host.users["deploy"]
        assert f"JAVA_HOME={JAVA_HOME}" in host.files["/etc/environment"].splitlines()
        assert f"export JAVA_HOME={JAVA_HOME}" in host.files["/etc/init.d/jenkins"]
        assert "/usr/share/keyrings/jenkins-keyring.asc" in host.files

    def test_first_run_outcomes(self, jenkins_plan, host, tmp_state_dir):
        report = converge(jenkins_plan, host, tmp_state_dir).report
        outcome = {r.task: r.outcome for r in report.results}
        assert outcome["Remove other Java installations"] == "unchanged"
        assert outcome["Stop whatever listens on port 8080"] == "unchanged"
        assert outcome["Update the apt package index"] == "unchanged"
        assert outcome["Install Java"] == "changed"
        assert outcome["Verify JAVA_HOME is exported"] == "skipped"
        assert outcome["Refresh apt index for Jenkins"] == "unchanged"
        assert outcome["Verify deploy is in the docker group"] == "skipped"
        assert outcome["Restart Jenkins"] == "changed"
        assert report.results[-1].handler

    def test_second_run_changes_nothing(self, jenkins_plan, host, tmp_state_dir):
        converge(jenkins_plan, host, tmp_state_dir)
        mutations = len(host.mutations)

        report = converge(jenkins_plan, host, tmp_state_dir).report
        assert report.status == "success"
        assert report.changed == 0
        assert report.result_for("Restart Jenkins") is None
        assert report.result_for("Remove other Java installations").skipped
        assert report.result_for("Refresh apt index for Jenkins").skipped
        # only one-shot commands and the cache refresh touch the host again
        touched = {task for _, task in host.mutations[mutations:]}
        assert touched <= {
            "Update the apt package index",
            "Verify the installed Java version",
            "Check Jenkins service status",
            "Check Jenkins service logs",
            "Get Docker CE package policy",
            "Get Jenkins initial admin password",
            "Check Docker version",
        }

    def test_check_mode_touches_nothing(self, jenkins_plan, host, tmp_state_dir):
        result = converge(jenkins_plan, host, tmp_state_dir, dry_run=True)
        report = result.report
        assert report.dry_run
        assert report.status == "success"
        assert host.mutations == []
        assert host.packages == {}
        assert report.result_for("Install Java").changed
        assert report.result_for("Install Java").metadata["dry_run"] is True
        assert report.result_for("Check Docker version").skipped

    def test_run_is_recorded(self, jenkins_plan, host, tmp_state_dir):
        result = converge(jenkins_plan, host, tmp_state_dir)
        entries = AuditWriter(state_dir=tmp_state_dir).read_all()
        assert len(entries) == 1
        assert entries[0].run_id == result.report.run_id
        assert entries[0].plan == "jenkins"
        assert entries[0].context["mock"] is True
        assert result.ledger_path == tmp_state_dir / "runs.ndjson"

    def test_results_streamed_to_sinks(self, jenkins_plan, host, tmp_state_dir):
        sink = CollectingSink()
        result = converge(jenkins_plan, host, tmp_state_dir, sinks=[sink])
        assert sink.task_names == [r.task for r in result.report.results]
        assert sink.reports == [result.report]


class TestExistingHost:
    """Converging a host that already carries other software."""

    def test_old_java_removed(self, jenkins_plan, tmp_state_dir):
        host = FakeHost(
            packages={"openjdk-11-jdk": "11.0.20", "openjdk-11-jre": "11.0.20"},
            users={"deploy": ["deploy"]},
        )
        report = converge(jenkins_plan, host, tmp_state_dir).report
        assert report.result_for("Remove other Java installations").changed
        assert "openjdk-11-jdk" not in host.packages
        assert "openjdk-17-jdk" in host.packages

    def test_port_owner_stopped(self, jenkins_plan, tmp_state_dir):
        host = FakeHost(listening={8080: ["nginx"]}, users={"deploy": ["deploy"]})
        report = converge(jenkins_plan, host, tmp_state_dir).report
        assert report.result_for("Stop whatever listens on port 8080").changed
        assert ("command", "Stop whatever listens on port 8080") in host.mutations

    def test_jenkins_on_port_left_alone(self, jenkins_plan, tmp_state_dir):
        host = FakeHost(listening={8080: ["java"]}, users={"deploy": ["deploy"]})
        report = converge(jenkins_plan, host, tmp_state_dir).report
        assert report.result_for("Stop whatever listens on port 8080").outcome == "unchanged"

    def test_diagnostics_displayed(self, jenkins_plan, tmp_state_dir):
        host = FakeHost(
            users={"deploy": ["deploy"]},
            commands={
                "apt-cache policy docker-ce": Invocation(stdout="docker-ce:\n  Installed: (none)\n"),
                "journalctl -xeu jenkins.service --no-pager": Invocation(exit_code=1, stderr="no journal\n"),
            },
        )
        report = converge(jenkins_plan, host, tmp_state_dir).report
        policy = report.result_for("Display Docker CE package policy")
        assert policy.stdout == "docker-ce:\n  Installed: (none)\n"
        assert report.result_for("Get Docker CE package policy").outcome == "unchanged"
        # a failed log read is reported but never stops the run
        assert report.result_for("Check Jenkins service logs").failed
        assert report.result_for("Display Jenkins service logs").skipped
        assert report.status == "partial failure"

    def test_admin_password_displayed(self, jenkins_plan, tmp_state_dir):
        host = FakeHost(
            users={"deploy": ["deploy"]},
            commands={"cat /var/lib/jenkins/secrets/initialAdminPassword": Invocation(stdout="s3cret\n")},
        )
        report = converge(jenkins_plan, host, tmp_state_dir).report
        assert report.result_for("Display Jenkins initial admin password").stdout == "s3cret\n"

    def test_missing_password_file_is_not_fatal(self, jenkins_plan, tmp_state_dir):
        host = FakeHost(
            users={"deploy": ["deploy"]},
            commands={
                "cat /var/lib/jenkins/secrets/initialAdminPassword": Invocation(
                    exit_code=1, stderr="cat: /var/lib/jenkins/secrets/initialAdminPassword: No such file\n",
                ),
            },
        )
        result = converge(jenkins_plan, host, tmp_state_dir)
        assert result.report.status == "partial failure"
        assert result.exit_code() == EXIT_OK
        assert result.exit_code(strict=True) == EXIT_FAILED
        assert result.report.result_for("Display Jenkins initial admin password").skipped

    def test_unknown_deploy_user_aborts(self, jenkins_plan, host, tmp_state_dir):
        result = converge(jenkins_plan, host, tmp_state_dir, overrides={"deploy_user": "ghost"})
        report = result.report
        assert report.result_for("Add ghost to the docker group").failed
        verify = report.result_for("Verify ghost is in the docker group")
        assert verify.failed
        assert verify.error == "ghost is not a member of the docker group"
        assert report.status == "aborted"
        assert result.exit_code() == EXIT_FAILED
        # handlers notified before the abort still fire
        assert report.result_for("Restart Jenkins").changed


class TestPlanCheck:
    def test_jenkins_plan_is_valid(self, jenkins_plan, fake_host):
        result = check_plan(jenkins_plan, registry=fake_host.registry())
        assert result.valid, result.errors
        assert result.warnings == []
        assert result.to_dict()["task_count"] == len(result.plan.tasks)

    def test_invalid_plan_reports_everything(self, tmp_path: Path, fake_host):
        path = tmp_path / "broken.yml"
        path.write_text(
            "tasks:\n"
            "  - name: Start\n"
            "    service: {name: jenkins}\n"
            "  - name: Report\n"
            "    when: \"changed('Strat')\"\n"
            "    debug: started\n"
        )
        result = check_plan(path, registry=fake_host.registry())
        assert not result.valid
        assert len(result.errors) == 2

    def test_unresolved_placeholder_warning(self, tmp_path: Path, fake_host):
        path = tmp_path / "p.yml"
        path.write_text(
            "tasks:\n"
            "  - name: Install\n"
            "    apt: {name: '{pkg}'}\n"
        )
        result = check_plan(path, registry=fake_host.registry())
        assert result.valid
        assert result.warnings == ["Task 'Install': unresolved placeholder(s) {pkg}"]

    def test_missing_file(self, tmp_path: Path):
        result = check_plan(tmp_path / "nope.yml")
        assert not result.valid
        assert "not found" in result.errors[0]
