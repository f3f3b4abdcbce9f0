"""
Tests for the fact provider and the built-in probes.
"""

import subprocess
from pathlib import Path

import pytest

from hostconverge.core.errors import FactUnavailable
from hostconverge.core.facts import probes
from hostconverge.core.facts.provider import FactProvider
from hostconverge.core.models.fact import NOT_FOUND


def _completed(stdout: str = "", stderr: str = "", returncode: int = 0):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


# ── Provider ─────────────────────────────────────────────────────────


class TestFactProvider:
    def _counting(self):
        calls: list[str] = []

        def probe(arg: str):
            calls.append(arg)
            return f"v-{arg}"

        return FactProvider(probes={"thing": probe}), calls

    def test_query(self):
        provider, _ = self._counting()
        assert provider.query("thing:a") == "v-a"

    def test_cached(self):
        provider, calls = self._counting()
        provider.query("thing:a")
        provider.query("thing:a")
        assert calls == ["a"]
        assert provider.probe_count == 1

    def test_invalidate_exact(self):
        provider, calls = self._counting()
        provider.query("thing:a")
        assert provider.invalidate(["thing:a"]) == 1
        provider.query("thing:a")
        assert calls == ["a", "a"]

    def test_invalidate_pattern(self):
        provider, _ = self._counting()
        provider.query("thing:a")
        provider.query("thing:b")
        assert provider.invalidate(["thing:*"]) == 2
        assert provider.cached_keys == []

    def test_invalidate_unknown_key_is_noop(self):
        provider, _ = self._counting()
        assert provider.invalidate(["other:x"]) == 0

    def test_invalidate_all(self):
        provider, _ = self._counting()
        provider.query("thing:a")
        provider.invalidate_all()
        assert provider.snapshot() == {}

    def test_snapshot(self):
        provider, _ = self._counting()
        provider.query("thing:a")
        assert provider.snapshot() == {"thing:a": "v-a"}

    def test_unknown_kind(self):
        provider, _ = self._counting()
        with pytest.raises(FactUnavailable, match="no probe"):
            provider.query("nope:x")

    def test_malformed_key(self):
        provider, _ = self._counting()
        with pytest.raises(FactUnavailable):
            provider.query("thing")

    def test_probe_exception_wrapped(self):
        def broken(arg):
            raise RuntimeError("kaput")

        provider = FactProvider(probes={"thing": broken})
        with pytest.raises(FactUnavailable, match="kaput"):
            provider.query("thing:a")

    def test_unavailable_not_cached(self):
        calls = []

        def flaky(arg):
            calls.append(arg)
            raise FactUnavailable(f"thing:{arg}", "later")

        provider = FactProvider(probes={"thing": flaky})
        for _ in range(2):
            with pytest.raises(FactUnavailable):
                provider.query("thing:a")
        assert len(calls) == 2

    def test_register_probe(self):
        provider = FactProvider(probes={})
        provider.register_probe("x", lambda arg: arg.upper())
        assert provider.kinds == ["x"]
        assert provider.query("x:abc") == "ABC"

    def test_default_kinds(self):
        kinds = FactProvider().kinds
        for kind in ("package", "port", "groups", "service", "enabled", "file", "path", "glob", "env", "command"):
            assert kind in kinds

    def test_fact_record(self):
        provider, _ = self._counting()
        fact = provider.fact("thing:a")
        assert fact.key == "thing:a"
        assert fact.found


# ── Filesystem probes ────────────────────────────────────────────────


class TestFilesystemProbes:
    def test_file(self, tmp_path: Path):
        f = tmp_path / "a.txt"
        f.write_text("hello\n")
        assert probes.probe_file(str(f)) == "hello\n"
        assert probes.probe_file(str(tmp_path / "missing")) is NOT_FOUND

    def test_path(self, tmp_path: Path):
        (tmp_path / "f").write_text("")
        assert probes.probe_path(str(tmp_path)) == "directory"
        assert probes.probe_path(str(tmp_path / "f")) == "file"
        assert probes.probe_path(str(tmp_path / "nope")) is NOT_FOUND

    def test_glob(self, tmp_path: Path):
        (tmp_path / "java-17-openjdk-amd64").mkdir()
        (tmp_path / "java-11-openjdk-amd64").mkdir()
        matches = probes.probe_glob(str(tmp_path / "java-*-openjdk-*"))
        assert [Path(m).name for m in matches] == ["java-11-openjdk-amd64", "java-17-openjdk-amd64"]
        assert probes.probe_glob(str(tmp_path / "nothing-*")) is NOT_FOUND

    def test_parse_environment(self):
        content = (
            "# comment\n"
            'PATH="/usr/bin:/bin"\n'
            "export JAVA_HOME=/usr/lib/jvm/java-17\n"
            "EMPTY=\n"
            "garbage line\n"
            "JAVA_HOME=/opt/java\n"
        )
        env = probes.parse_environment(content)
        assert env["PATH"] == "/usr/bin:/bin"
        assert env["JAVA_HOME"] == "/opt/java"
        assert env["EMPTY"] == ""
        assert "garbage line" not in env

    def test_env(self, tmp_path: Path):
        env_file = tmp_path / "environment"
        env_file.write_text("JAVA_HOME=/opt/java\n")
        assert probes.probe_env("JAVA_HOME", env_file) == "/opt/java"
        assert probes.probe_env("OTHER", env_file) is NOT_FOUND
        assert probes.probe_env("JAVA_HOME", tmp_path / "missing") is NOT_FOUND

    def test_env_through_provider(self, tmp_path: Path):
        env_file = tmp_path / "environment"
        env_file.write_text("JAVA_HOME=/opt/java\n")
        provider = FactProvider(env_file=env_file)
        assert provider.query("env:JAVA_HOME") == "/opt/java"


# ── Command probes (subprocess mocked) ───────────────────────────────


class TestCommandProbes:
    def test_package_installed(self, monkeypatch):
        out = "ii \tlsof\t4.93.2+dfsg-1.1build2\n"
        monkeypatch.setattr(probes.subprocess, "run", lambda *a, **kw: _completed(out))
        assert probes.probe_package("lsof") == "4.93.2+dfsg-1.1build2"

    def test_package_removed_but_configured(self, monkeypatch):
        out = "rc \topenjdk-11-jdk\t11.0.20\n"
        monkeypatch.setattr(probes.subprocess, "run", lambda *a, **kw: _completed(out))
        assert probes.probe_package("openjdk-*-jdk") is NOT_FOUND

    def test_package_unknown(self, monkeypatch):
        monkeypatch.setattr(
            probes.subprocess, "run",
            lambda *a, **kw: _completed(stderr="dpkg-query: no packages found matching x", returncode=1),
        )
        assert probes.probe_package("x") is NOT_FOUND

    def test_checker_missing(self, monkeypatch):
        def missing(*a, **kw):
            raise FileNotFoundError("dpkg-query")

        monkeypatch.setattr(probes.subprocess, "run", missing)
        with pytest.raises(FactUnavailable, match="checker not found"):
            probes.probe_package("lsof")

    def test_checker_timeout(self, monkeypatch):
        def slow(*a, **kw):
            raise subprocess.TimeoutExpired(cmd="lsof", timeout=1)

        monkeypatch.setattr(probes.subprocess, "run", slow)
        with pytest.raises(FactUnavailable, match="timed out"):
            probes.probe_port("8080", timeout=1)

    def test_port_listeners(self, monkeypatch):
        out = (
            "COMMAND   PID USER   FD   TYPE DEVICE SIZE/OFF NODE NAME\n"
            "java     1234 jenkins 5u IPv6 12345 0t0 TCP *:8080 (LISTEN)\n"
            "java     1234 jenkins 6u IPv4 12346 0t0 TCP *:8080 (LISTEN)\n"
        )
        monkeypatch.setattr(probes.subprocess, "run", lambda *a, **kw: _completed(out))
        assert probes.probe_port("8080") == ["java"]

    def test_port_free(self, monkeypatch):
        monkeypatch.setattr(probes.subprocess, "run", lambda *a, **kw: _completed(returncode=1))
        assert probes.probe_port("8080") is NOT_FOUND

    def test_port_must_be_numeric(self):
        with pytest.raises(FactUnavailable):
            probes.probe_port("http")

    def test_groups(self, monkeypatch):
        monkeypatch.setattr(probes.subprocess, "run", lambda *a, **kw: _completed("deploy sudo docker\n"))
        assert probes.probe_groups("deploy") == ["deploy", "sudo", "docker"]

    def test_groups_unknown_user(self, monkeypatch):
        monkeypatch.setattr(
            probes.subprocess, "run",
            lambda *a, **kw: _completed(stderr="id: 'ghost': no such user", returncode=1),
        )
        assert probes.probe_groups("ghost") is NOT_FOUND

    def test_service(self, monkeypatch):
        answers = {"LoadState": "LoadState=loaded\n", "ActiveState": "ActiveState=active\n"}

        def run(cmd, **kw):
            prop = cmd[-1].split("=", 1)[1]
            return _completed(answers[prop])

        monkeypatch.setattr(probes.subprocess, "run", run)
        assert probes.probe_service("ssh") == "active"

    def test_service_not_found(self, monkeypatch):
        monkeypatch.setattr(
            probes.subprocess, "run", lambda *a, **kw: _completed("LoadState=not-found\n"),
        )
        assert probes.probe_service("nope") is NOT_FOUND
        assert probes.probe_enabled("nope") is NOT_FOUND
