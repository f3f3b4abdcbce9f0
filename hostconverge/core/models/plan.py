"""
Plan model — the declared target state of a host.

Loaded from YAML by ``hostconverge.core.config.loader``. Variables
have already been rendered into every task by the time a Plan exists.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from hostconverge.core.models.task import Handler, Task


class Plan(BaseModel):
    """An ordered task list plus deferred handlers."""

    name: str = ""
    description: str = ""
    vars: dict[str, Any] = Field(default_factory=dict)
    tasks: list[Task] = Field(default_factory=list)
    handlers: list[Handler] = Field(default_factory=list)
    source: str | None = None       # path the plan was loaded from

    @property
    def task_names(self) -> list[str]:
        return [t.name for t in self.tasks]

    @property
    def handler_names(self) -> list[str]:
        return [h.name for h in self.handlers]
