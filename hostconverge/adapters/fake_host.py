"""
FakeHost — an in-memory host for mock runs and tests.

Holds packages, services, files, users and listening ports in plain
dicts, and exposes both halves of the engine's view of a machine:

    host.fact_provider()   probes that read the in-memory state
    host.registry()        the real providers, with ``invoke``
                           rewired to mutate the in-memory state

Because the fake providers subclass the real ones, validation and
idempotence checks are exactly the production code paths; only the
side effect is simulated.
"""

from __future__ import annotations

import fnmatch
from typing import Any

from hostconverge.adapters.base import ExecutionContext, as_list
from hostconverge.adapters.control import DebugProvider, FailProvider
from hostconverge.adapters.registry import CapabilityRegistry
from hostconverge.adapters.shell.command import CommandProvider
from hostconverge.adapters.shell.download import DownloadProvider
from hostconverge.adapters.shell.lineinfile import LineInFileProvider, apply_line
from hostconverge.adapters.system.apt import AptProvider
from hostconverge.adapters.system.service import ServiceProvider
from hostconverge.adapters.system.user import UserGroupsProvider
from hostconverge.core.config.variables import builtin_vars
from hostconverge.core.facts.probes import Probe, parse_environment
from hostconverge.core.facts.provider import FactProvider
from hostconverge.core.models.fact import NOT_FOUND
from hostconverge.core.models.result import Invocation

FAKE_VERSION = "1.0-fake"

# Packages whose installation registers a systemd unit.
PACKAGE_UNITS: dict[str, str] = {
    "jenkins": "jenkins",
    "docker-ce": "docker",
    "nginx": "nginx",
    "openssh-server": "ssh",
}


class FakeHost:
    """In-memory host state plus matching probes and providers."""

    def __init__(
        self,
        hostname: str = "fakehost",
        *,
        packages: dict[str, str] | None = None,
        services: dict[str, dict[str, bool]] | None = None,
        files: dict[str, str] | None = None,
        users: dict[str, list[str]] | None = None,
        listening: dict[int, list[str]] | None = None,
        commands: dict[str, Invocation] | None = None,
        binaries: set[str] | None = None,
        env_file: str = "/etc/environment",
    ):
        self.hostname = hostname
        self.packages: dict[str, str] = dict(packages or {})
        self.services: dict[str, dict[str, bool]] = {
            k: dict(v) for k, v in (services or {}).items()
        }
        self.files: dict[str, str] = dict(files or {})
        if users is None:
            user = builtin_vars()["user"]
            users = {user: [user]}
        self.users: dict[str, list[str]] = {k: list(v) for k, v in users.items()}
        self.listening: dict[int, list[str]] = {int(k): list(v) for k, v in (listening or {}).items()}
        self.commands: dict[str, Invocation] = dict(commands or {})
        self.binaries: set[str] = set(binaries or ())
        self.env_file = env_file
        self.mutations: list[tuple[str, str]] = []    # (capability, task)

    # ── Facts ───────────────────────────────────────────────────

    def probes(self) -> dict[str, Probe]:
        return {
            "package": self._probe_package,
            "port": self._probe_port,
            "groups": self._probe_groups,
            "service": self._probe_service,
            "enabled": self._probe_enabled,
            "file": lambda path: self.files.get(path, NOT_FOUND),
            "path": self._probe_path,
            "glob": self._probe_glob,
            "env": self._probe_env,
            "command": lambda name: f"/usr/bin/{name}" if name in self.binaries else NOT_FOUND,
        }

    def fact_provider(self) -> FactProvider:
        return FactProvider(probes=self.probes())

    def _probe_package(self, pattern: str) -> Any:
        for name in sorted(self.packages):
            if fnmatch.fnmatchcase(name, pattern):
                return self.packages[name]
        return NOT_FOUND

    def _probe_port(self, port: str) -> Any:
        return list(self.listening.get(int(port), [])) or NOT_FOUND

    def _probe_groups(self, user: str) -> Any:
        if user not in self.users:
            return NOT_FOUND
        return list(self.users[user])

    def _unit(self, name: str) -> dict[str, bool] | None:
        return self.services.get(name.removesuffix(".service"))

    def _probe_service(self, unit: str) -> Any:
        svc = self._unit(unit)
        if svc is None:
            return NOT_FOUND
        return "active" if svc.get("active") else "inactive"

    def _probe_enabled(self, unit: str) -> Any:
        svc = self._unit(unit)
        if svc is None:
            return NOT_FOUND
        return "enabled" if svc.get("enabled") else "disabled"

    def _probe_path(self, path: str) -> Any:
        if path in self.files:
            return "file"
        prefix = path.rstrip("/") + "/"
        if any(p.startswith(prefix) for p in self.files):
            return "directory"
        return NOT_FOUND

    def _probe_glob(self, pattern: str) -> Any:
        matches = sorted(p for p in self.files if fnmatch.fnmatchcase(p, pattern))
        return matches or NOT_FOUND

    def _probe_env(self, name: str) -> Any:
        content = self.files.get(self.env_file)
        if content is None:
            return NOT_FOUND
        return parse_environment(content).get(name, NOT_FOUND)

    # ── Providers ───────────────────────────────────────────────

    def registry(self) -> CapabilityRegistry:
        return CapabilityRegistry([
            _FakeApt(self),
            _FakeService(self),
            _FakeLineInFile(self),
            _FakeDownload(self),
            _FakeUserGroups(self),
            _FakeCommand(self),
            DebugProvider(),
            FailProvider(),
        ])

    def record(self, context: ExecutionContext) -> None:
        self.mutations.append((context.capability, context.task))


class _FakeMixin:
    def __init__(self, host: FakeHost):
        self.host = host

    def is_available(self) -> bool:
        return True


class _FakeApt(_FakeMixin, AptProvider):
    def invoke(self, context: ExecutionContext) -> Invocation:
        self.host.record(context)
        params = context.params
        names = as_list(params.get("name"))
        state = params.get("state", "present")
        lines: list[str] = []
        if params.get("update_cache"):
            lines.append("Reading package lists... Done")
            if not names:
                return Invocation(stdout="\n".join(lines) + "\n")

        installed = removed = 0
        if state == "absent":
            for pattern in names:
                for name in [n for n in self.host.packages if fnmatch.fnmatchcase(n, pattern)]:
                    del self.host.packages[name]
                    self.host.binaries.discard(name)
                    removed += 1
        else:
            for name in names:
                if name not in self.host.packages:
                    self.host.packages[name] = FAKE_VERSION
                    self.host.binaries.add(name)
                    unit = PACKAGE_UNITS.get(name)
                    if unit:
                        self.host.services.setdefault(unit, {"active": False, "enabled": False})
                    installed += 1

        lines.append(f"0 upgraded, {installed} newly installed, {removed} to remove and 0 not upgraded.")
        return Invocation(stdout="\n".join(lines) + "\n", changed=bool(installed or removed))


class _FakeService(_FakeMixin, ServiceProvider):
    def invoke(self, context: ExecutionContext) -> Invocation:
        self.host.record(context)
        unit = context.params["name"]
        svc = self.host._unit(unit)
        if svc is None:
            return Invocation(exit_code=5, stderr=f"Failed to start {unit}.service: Unit {unit}.service not found.\n")
        state = context.params.get("state")
        if state in ("started", "restarted", "reloaded"):
            svc["active"] = True
        elif state == "stopped":
            svc["active"] = False
        enabled = context.params.get("enabled")
        if enabled is not None:
            svc["enabled"] = bool(enabled)
        return Invocation()


class _FakeLineInFile(_FakeMixin, LineInFileProvider):
    def invoke(self, context: ExecutionContext) -> Invocation:
        self.host.record(context)
        params = context.params
        path = params["path"]
        content = self.host.files.get(path)
        if content is None and not params.get("create", False) \
                and params.get("state", "present") == "present":
            return Invocation(exit_code=1, stderr=f"File does not exist: {path}")
        new_content, changed = apply_line(content, params)
        if changed and new_content is not None:
            self.host.files[path] = new_content
        return Invocation(stdout=f"{path}: {'changed' if changed else 'no change'}", changed=changed)


class _FakeDownload(_FakeMixin, DownloadProvider):
    def invoke(self, context: ExecutionContext) -> Invocation:
        self.host.record(context)
        dest = context.params["dest"]
        data = f"# downloaded from {context.params['url']}\n"
        changed = self.host.files.get(dest) != data
        self.host.files[dest] = data
        return Invocation(stdout=f"Downloaded to {dest}", changed=changed)


class _FakeUserGroups(_FakeMixin, UserGroupsProvider):
    def invoke(self, context: ExecutionContext) -> Invocation:
        self.host.record(context)
        user = context.params["name"]
        if user not in self.host.users:
            return Invocation(exit_code=6, stderr=f"usermod: user '{user}' does not exist\n")
        groups = as_list(context.params["groups"])
        current = self.host.users[user]
        if context.params.get("append", True):
            current.extend(g for g in groups if g not in current)
        else:
            self.host.users[user] = current[:1] + groups
        return Invocation()


class _FakeCommand(_FakeMixin, CommandProvider):
    def invoke(self, context: ExecutionContext) -> Invocation:
        self.host.record(context)
        command = context.params["command"]
        result = self.host.commands.get(command)
        if result is None:
            result = Invocation(stdout=f"[fake] {command}\n")
        if result.ok and context.params.get("creates"):
            self.host.files.setdefault(context.params["creates"], "")
        if result.ok and context.params.get("removes"):
            self.host.files.pop(context.params["removes"], None)
        return result
