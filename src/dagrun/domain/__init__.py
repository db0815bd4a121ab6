"""
Domain layer for dagrun.

- states: node / output / run status enums
- models: Pydantic models for outputs, run status and API payloads
- errors: domain-level exceptions
"""

from .states import NodeStatus, OutputStatus, RunState
from .models import (
    ErrorResponse,
    RetryPolicy,
    RunConfig,
    RunRequest,
    RunStatus,
    TaskListResponse,
    TaskOutput,
    TaskView,
)
from .errors import (
    DagRunBaseError,
    ValidationError,
    NotFoundError,
    ConflictError,
    DependencyError,
    CycleDetectedError,
    DependencyOutputNotFoundError,
    TaskTimeoutError,
    ModelInvocationError,
    TaskCommandError,
)

__all__ = [
    "NodeStatus",
    "OutputStatus",
    "RunState",
    "RetryPolicy",
    "RunConfig",
    "RunRequest",
    "RunStatus",
    "TaskOutput",
    "TaskView",
    "TaskListResponse",
    "ErrorResponse",
    "DagRunBaseError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "DependencyError",
    "CycleDetectedError",
    "DependencyOutputNotFoundError",
    "TaskTimeoutError",
    "ModelInvocationError",
    "TaskCommandError",
]
