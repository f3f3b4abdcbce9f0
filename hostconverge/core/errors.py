"""
Error kinds — the exception hierarchy shared by every layer.

Only ``ConfigError`` ever escapes a run: it is raised while loading
or building a plan, before any task touches the host. The other
kinds are raised inside the engine and converted into data:

    FactUnavailable    → guard evaluates false (logged as a warning)
    GuardError         → when/check false; changed_when/failed_when fail the task
    CapabilityFailure  → TaskResult with outcome 'failed'
    TaskTimeout        → TaskResult with outcome 'failed', kind 'Timeout'
"""

from __future__ import annotations


class HostConvergeError(Exception):
    """Base class for all hostconverge errors."""


class ConfigError(HostConvergeError):
    """Raised when a plan is malformed (fails fast, before any task runs).

    ``errors`` carries every individual problem found, so callers can
    report them all at once instead of one per invocation.
    """

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors: list[str] = list(errors) if errors else [message]


class GuardSyntaxError(ConfigError):
    """Raised when a guard expression cannot be parsed."""


class FactUnavailable(HostConvergeError):
    """The fact provider cannot determine a fact's value.

    Distinct from a fact that is simply absent: a port nobody listens
    on is ``NOT_FOUND``; a port we cannot inspect because ``lsof`` is
    missing is ``FactUnavailable``.
    """

    def __init__(self, key: str, reason: str = ""):
        message = f"Fact '{key}' unavailable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.key = key
        self.reason = reason


class GuardError(HostConvergeError):
    """A guard that parsed fine failed while being evaluated."""

    kind = "GuardError"

    def __init__(self, source: str, reason: str):
        super().__init__(f"Guard {source!r} could not be evaluated: {reason}")
        self.source = source
        self.reason = reason


class CapabilityFailure(HostConvergeError):
    """A capability invocation failed or could not be dispatched."""

    kind = "CapabilityFailure"

    def __init__(self, message: str, capability: str = ""):
        super().__init__(message)
        self.capability = capability


class TaskTimeout(HostConvergeError):
    """A capability invocation exceeded its timeout."""

    kind = "Timeout"

    def __init__(self, message: str, timeout: float | None = None):
        super().__init__(message)
        self.timeout = timeout
