"""
User provider — supplementary group membership.
"""

from __future__ import annotations

import shutil
from typing import Any

from hostconverge.adapters.base import CapabilityProvider, ExecutionContext, as_list
from hostconverge.adapters.shell.command import run_command
from hostconverge.core.models.fact import NOT_FOUND
from hostconverge.core.models.result import Invocation


class UserGroupsProvider(CapabilityProvider):
    """Add an existing user to supplementary groups.

    Params:
        name (str): User name.
        groups (str|list): Group name(s).
        append (bool): Keep existing groups (default: True). With
            False the user ends up in exactly ``groups`` plus its
            primary group.
    """

    @property
    def name(self) -> str:
        return "user"

    def is_available(self) -> bool:
        return shutil.which("usermod") is not None

    def validate(self, params: dict[str, Any]) -> tuple[bool, str]:
        if not params.get("name"):
            return False, "Missing required param: 'name'"
        if not as_list(params.get("groups")):
            return False, "Missing required param: 'groups'"
        return True, ""

    def can_check(self, params: dict[str, Any]) -> bool:
        return True

    def is_converged(self, context: ExecutionContext, facts: Any) -> bool | None:
        current = facts.query(f"groups:{context.params['name']}")
        if current is NOT_FOUND:
            return False
        wanted = set(as_list(context.params.get("groups")))
        if context.params.get("append", True):
            return wanted <= set(current)
        # id -nG lists the primary group first
        return set(current[1:]) == wanted

    def affected_facts(self, params: dict[str, Any]) -> list[str]:
        return [f"groups:{params.get('name', '')}"]

    def invoke(self, context: ExecutionContext) -> Invocation:
        params = context.params
        groups = ",".join(as_list(params["groups"]))
        flag = "-aG" if params.get("append", True) else "-G"
        return run_command(["usermod", flag, groups, params["name"]], timeout=context.timeout)
