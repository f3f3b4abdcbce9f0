"""
Shell command provider — run arbitrary commands and capture output.

``run_command`` is the single place where providers call
``subprocess.run``; apt, service and user providers build on it.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import time
from pathlib import Path
from typing import Any

from hostconverge.adapters.base import CapabilityProvider, ExecutionContext
from hostconverge.core.errors import TaskTimeout
from hostconverge.core.models.fact import NOT_FOUND
from hostconverge.core.models.result import Invocation

logger = logging.getLogger(__name__)


def run_command(
    cmd: str | list[str],
    *,
    shell: bool = False,
    timeout: float = 300,
    cwd: str | None = None,
    env_overrides: dict[str, str] | None = None,
) -> Invocation:
    """Run a command and capture exit code, stdout and stderr verbatim.

    Raises:
        TaskTimeout: The command ran longer than ``timeout`` seconds.
    """
    env = None
    if env_overrides:
        env = os.environ.copy()
        env.update(env_overrides)

    args: str | list[str] = cmd
    if not shell and isinstance(cmd, str):
        args = shlex.split(cmd)

    logger.debug("Executing: %s (cwd=%s)", cmd, cwd)
    start = time.monotonic()
    try:
        result = subprocess.run(
            args,
            shell=shell,
            cwd=cwd,
            env=env,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise TaskTimeout(f"Command timed out after {timeout}s: {cmd}", timeout=timeout) from e
    except FileNotFoundError as e:
        return Invocation(exit_code=127, stderr=str(e), metadata={"command": cmd})

    elapsed_ms = int((time.monotonic() - start) * 1000)
    return Invocation(
        exit_code=result.returncode,
        stdout=result.stdout,
        stderr=result.stderr,
        metadata={"command": cmd, "elapsed_ms": elapsed_ms},
    )


class CommandProvider(CapabilityProvider):
    """Execute shell commands.

    Params:
        command (str): The command to execute.
        shell (bool): Run through ``sh -c`` (default: True).
        cwd (str): Working directory.
        creates (str): Path whose existence means "already done".
        removes (str): Path whose absence means "already done".
    """

    @property
    def name(self) -> str:
        return "command"

    def is_available(self) -> bool:
        return shutil.which("sh") is not None

    def validate(self, params: dict[str, Any]) -> tuple[bool, str]:
        if not params.get("command"):
            return False, "Missing required param: 'command'"
        return True, ""

    def can_check(self, params: dict[str, Any]) -> bool:
        return bool(params.get("creates") or params.get("removes"))

    def is_converged(self, context: ExecutionContext, facts: Any) -> bool | None:
        creates = context.params.get("creates")
        removes = context.params.get("removes")
        if creates:
            return facts.query(f"path:{creates}") is not NOT_FOUND
        if removes:
            return facts.query(f"path:{removes}") is NOT_FOUND
        return None

    def affected_facts(self, params: dict[str, Any]) -> list[str]:
        keys = [f"path:{p}" for p in (params.get("creates"), params.get("removes")) if p]
        return keys

    def invoke(self, context: ExecutionContext) -> Invocation:
        params = context.params
        cwd = params.get("cwd")
        if cwd and not Path(cwd).is_dir():
            return Invocation(exit_code=1, stderr=f"Working directory does not exist: {cwd}")
        return run_command(
            params["command"],
            shell=params.get("shell", True),
            timeout=context.timeout,
            cwd=cwd,
        )
