"""
Task and Handler models — the declared units of convergence.

A plan is an ordered list of Tasks plus a set of Handlers. Both are
created at load time and frozen: the engine reads them, never writes
them.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Effect(BaseModel):
    """What a task does: a capability name plus its parameters."""

    model_config = ConfigDict(frozen=True)

    capability: str
    params: dict[str, Any] = Field(default_factory=dict)


class Task(BaseModel):
    """A declared step of a plan.

    ``fatal`` left as None means "use the capability's convention":
    installs and service starts abort the run on failure, everything
    else does not.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    effect: Effect
    when: str | None = None              # guard: run only if true
    notify: tuple[str, ...] = ()         # handler names
    fatal: bool | None = None
    idempotent: bool = True
    check: str | None = None             # guard: end state already holds
    changed_when: str | None = None
    failed_when: str | None = None
    invalidates: tuple[str, ...] = ()    # fact keys to drop after a change
    timeout: float | None = None         # seconds, overrides engine default

    @field_validator("notify", "invalidates", mode="before")
    @classmethod
    def _coerce_names(cls, value: Any) -> Any:
        if value is None:
            return ()
        if isinstance(value, str):
            return (value,)
        return value

    @field_validator("when", "check", "changed_when", "failed_when", mode="before")
    @classmethod
    def _coerce_guard(cls, value: Any) -> Any:
        # YAML turns `changed_when: false` into a bool
        if isinstance(value, bool):
            return "true" if value else "false"
        return value

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("task name must not be empty")
        return value

    @property
    def capability(self) -> str:
        return self.effect.capability

    @property
    def params(self) -> dict[str, Any]:
        return self.effect.params


class Handler(Task):
    """A task reachable only through ``notify``.

    Fires at most once per run, after all regular tasks, and only when
    at least one notifying task reported 'changed'.
    """
