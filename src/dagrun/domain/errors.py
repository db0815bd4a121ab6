# src/dagrun/domain/errors.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class DagRunBaseError(Exception):
    """
    Base domain error.

    The API and CLI layers map these to responses / exit messages consistently.
    """
    message: str
    code: str = "DAGRUN_ERROR"
    details: Optional[dict[str, Any]] = None

    def __str__(self) -> str:
        return self.message


@dataclass
class ValidationError(DagRunBaseError):
    code: str = "VALIDATION_ERROR"


@dataclass
class NotFoundError(DagRunBaseError):
    code: str = "NOT_FOUND"


@dataclass
class ConflictError(DagRunBaseError):
    code: str = "CONFLICT"


@dataclass
class DependencyError(DagRunBaseError):
    code: str = "DEPENDENCY_ERROR"


@dataclass
class CycleDetectedError(DagRunBaseError):
    code: str = "CYCLE_DETECTED"


@dataclass
class DependencyOutputNotFoundError(DagRunBaseError):
    code: str = "DEPENDENCY_OUTPUT_NOT_FOUND"


@dataclass
class TaskTimeoutError(DagRunBaseError):
    code: str = "TASK_TIMEOUT"


@dataclass
class ModelInvocationError(DagRunBaseError):
    code: str = "MODEL_INVOCATION_ERROR"


@dataclass
class TaskCommandError(DagRunBaseError):
    code: str = "TASK_COMMAND_ERROR"
