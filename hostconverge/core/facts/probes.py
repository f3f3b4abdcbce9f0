"""
Fact probes — read-only queries against the local host.

Each probe takes the argument part of a fact key and returns the
fact value, ``NOT_FOUND`` when the resource does not exist, or raises
``FactUnavailable`` when the answer cannot be determined (checker
binary missing, permission denied, timeout).

Probes never mutate the host.
"""

from __future__ import annotations

import glob
import logging
import shutil
import subprocess
from functools import partial
from pathlib import Path
from typing import Any, Callable

from hostconverge.core.errors import FactUnavailable
from hostconverge.core.models.fact import NOT_FOUND

logger = logging.getLogger(__name__)

Probe = Callable[[str], Any]

DEFAULT_ENV_FILE = Path("/etc/environment")
DEFAULT_PROBE_TIMEOUT = 10


def _run(key: str, cmd: list[str], timeout: int) -> subprocess.CompletedProcess:
    """Run a read-only checker command, mapping OS failures to FactUnavailable."""
    try:
        return subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError as e:
        raise FactUnavailable(key, f"checker not found: {cmd[0]}") from e
    except subprocess.TimeoutExpired as e:
        raise FactUnavailable(key, f"timed out after {timeout}s") from e
    except OSError as e:
        raise FactUnavailable(key, str(e)) from e


# ── Packages ────────────────────────────────────────────────────


def probe_package(name: str, timeout: int = DEFAULT_PROBE_TIMEOUT) -> Any:
    """Installed version of a dpkg package (glob patterns allowed).

    For a pattern like ``openjdk-*-jdk`` the version of the first
    installed match is returned.
    """
    key = f"package:{name}"
    r = _run(
        key,
        ["dpkg-query", "-W", "-f=${db:Status-Abbrev}\t${Package}\t${Version}\n", name],
        timeout,
    )
    # rc 1 = "no packages found matching"
    if r.returncode not in (0, 1):
        raise FactUnavailable(key, r.stderr.strip() or f"dpkg-query exited {r.returncode}")

    for line in r.stdout.splitlines():
        parts = line.split("\t")
        if len(parts) == 3 and parts[0].startswith("ii"):
            return parts[2]
    return NOT_FOUND


# ── Network ─────────────────────────────────────────────────────


def probe_port(port: str, timeout: int = DEFAULT_PROBE_TIMEOUT) -> Any:
    """Names of processes listening on a TCP port.

    Replaces the ``lsof -i :PORT | grep LISTEN`` text pipeline with a
    typed answer: a list of command names, or NOT_FOUND when nothing
    listens.
    """
    key = f"port:{port}"
    if not port.isdigit():
        raise FactUnavailable(key, "port must be numeric")

    r = _run(key, ["lsof", "-nP", f"-iTCP:{port}", "-sTCP:LISTEN"], timeout)
    # lsof exits 1 both for "no match" and for real errors; stderr tells them apart
    if r.returncode != 0 and r.stderr.strip():
        raise FactUnavailable(key, r.stderr.strip())

    names: list[str] = []
    for line in r.stdout.splitlines()[1:]:  # skip header
        fields = line.split()
        if fields and fields[0] not in names:
            names.append(fields[0])
    return names or NOT_FOUND


# ── Users ───────────────────────────────────────────────────────


def probe_groups(user: str, timeout: int = DEFAULT_PROBE_TIMEOUT) -> Any:
    """Group names a user belongs to (``id -nG``)."""
    key = f"groups:{user}"
    r = _run(key, ["id", "-nG", user], timeout)
    if r.returncode != 0:
        # "no such user"
        return NOT_FOUND
    return r.stdout.split()


# ── Services ────────────────────────────────────────────────────


def _systemctl_property(key: str, unit: str, prop: str, timeout: int) -> str:
    r = _run(key, ["systemctl", "show", unit, f"--property={prop}"], timeout)
    if r.returncode != 0:
        raise FactUnavailable(key, r.stderr.strip() or f"systemctl exited {r.returncode}")
    _, _, value = r.stdout.strip().partition("=")
    return value


def probe_service(unit: str, timeout: int = DEFAULT_PROBE_TIMEOUT) -> Any:
    """systemd ActiveState of a unit (active, inactive, failed, ...)."""
    key = f"service:{unit}"
    if _systemctl_property(key, unit, "LoadState", timeout) == "not-found":
        return NOT_FOUND
    return _systemctl_property(key, unit, "ActiveState", timeout) or NOT_FOUND


def probe_enabled(unit: str, timeout: int = DEFAULT_PROBE_TIMEOUT) -> Any:
    """systemd UnitFileState of a unit (enabled, disabled, static, ...)."""
    key = f"enabled:{unit}"
    if _systemctl_property(key, unit, "LoadState", timeout) == "not-found":
        return NOT_FOUND
    return _systemctl_property(key, unit, "UnitFileState", timeout) or NOT_FOUND


# ── Filesystem ──────────────────────────────────────────────────


def probe_file(path: str) -> Any:
    """Text content of a file."""
    target = Path(path)
    if not target.is_file():
        return NOT_FOUND
    try:
        return target.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise FactUnavailable(f"file:{path}", str(e)) from e


def probe_path(path: str) -> Any:
    """'file' or 'directory' when the path exists."""
    target = Path(path)
    if target.is_dir():
        return "directory"
    if target.exists():
        return "file"
    return NOT_FOUND


def probe_glob(pattern: str) -> Any:
    """Sorted list of paths matching a glob pattern."""
    matches = sorted(glob.glob(pattern))
    return matches or NOT_FOUND


def parse_environment(content: str) -> dict[str, str]:
    """Parse ``KEY=value`` lines of an environment file (last one wins)."""
    env: dict[str, str] = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        name, _, value = line.partition("=")
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        env[name.strip()] = value
    return env


def probe_env(name: str, env_file: Path = DEFAULT_ENV_FILE) -> Any:
    """Value of a variable persisted in the system environment file.

    Reads the file instead of ``os.environ``: the file is what later
    logins and services will see.
    """
    content = probe_file(str(env_file))
    if content is NOT_FOUND:
        return NOT_FOUND
    return parse_environment(content).get(name, NOT_FOUND)


def probe_command(name: str) -> Any:
    """Absolute path of an executable on PATH."""
    return shutil.which(name) or NOT_FOUND


def default_probes(
    env_file: Path = DEFAULT_ENV_FILE,
    timeout: int = DEFAULT_PROBE_TIMEOUT,
) -> dict[str, Probe]:
    """The built-in probe set, keyed by fact kind."""
    return {
        "package": partial(probe_package, timeout=timeout),
        "port": partial(probe_port, timeout=timeout),
        "groups": partial(probe_groups, timeout=timeout),
        "service": partial(probe_service, timeout=timeout),
        "enabled": partial(probe_enabled, timeout=timeout),
        "file": probe_file,
        "path": probe_path,
        "glob": probe_glob,
        "env": partial(probe_env, env_file=env_file),
        "command": probe_command,
    }
