"""
Domain models — Pydantic types for the convergence engine.

All models are re-exported here for convenient access:

    from hostconverge.core.models import Task, TaskResult, RunReport, Plan
"""

from hostconverge.core.models.fact import NOT_FOUND, Fact, NotFound
from hostconverge.core.models.plan import Plan
from hostconverge.core.models.report import RunReport
from hostconverge.core.models.result import Invocation, TaskResult
from hostconverge.core.models.task import Effect, Handler, Task

__all__ = [
    "NOT_FOUND",
    "Effect",
    "Fact",
    "Handler",
    "Invocation",
    "NotFound",
    "Plan",
    "RunReport",
    "Task",
    "TaskResult",
]
