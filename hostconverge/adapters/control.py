"""
Control providers — ``debug`` and ``fail``.

Neither touches the host. ``debug`` surfaces a message or an earlier
task's output in the run log; ``fail`` turns a guard into an explicit,
reported failure (``when: failed('Install Jenkins')``).
"""

from __future__ import annotations

from typing import Any

from hostconverge.adapters.base import CapabilityProvider, ExecutionContext
from hostconverge.core.models.result import Invocation


class DebugProvider(CapabilityProvider):
    """Print a message, or the stdout of an earlier task.

    Params:
        msg (str): Message to print.
        task (str): Name of an earlier task whose stdout to print.
    """

    @property
    def name(self) -> str:
        return "debug"

    def is_available(self) -> bool:
        return True

    def validate(self, params: dict[str, Any]) -> tuple[bool, str]:
        if "msg" not in params and "task" not in params:
            return False, "Give 'msg' or 'task'"
        return True, ""

    def reports_change(self, params: dict[str, Any]) -> bool:
        return True

    def invoke(self, context: ExecutionContext) -> Invocation:
        if "task" in context.params:
            name = context.params["task"]
            prior = context.prior.get(name)
            if prior is None:
                text = f"(task '{name}' has not run)"
            else:
                text = prior.stdout or prior.stderr
        else:
            text = str(context.params["msg"])
        return Invocation(stdout=text, changed=False)


class FailProvider(CapabilityProvider):
    """Always fail with a message.

    Params:
        msg (str): Failure message (default: 'Failed as requested').
    """

    fatal_by_default = True

    @property
    def name(self) -> str:
        return "fail"

    def is_available(self) -> bool:
        return True

    def validate(self, params: dict[str, Any]) -> tuple[bool, str]:
        return True, ""

    def reports_change(self, params: dict[str, Any]) -> bool:
        return True

    def invoke(self, context: ExecutionContext) -> Invocation:
        msg = str(context.params.get("msg", "Failed as requested"))
        return Invocation(exit_code=1, stderr=msg, changed=False)
