from __future__ import annotations

from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .states import NodeStatus, OutputStatus, RunState


TaskId = Annotated[str, Field(min_length=1, max_length=256)]


class RetryPolicy(BaseModel):
    """
    Per-task retry policy. `max_attempts` counts the first attempt too.
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    max_attempts: Annotated[int, Field(ge=1, le=100)] = 1
    backoff_ms: Annotated[int, Field(ge=0, le=3_600_000)] = 0


class TaskOutput(BaseModel):
    """
    Result record produced exactly once per node per run.

    Frozen: task bodies receive dependency outputs read-only.
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    task_id: TaskId
    status: OutputStatus
    artifacts: dict[str, str] = Field(default_factory=dict)
    error: Optional[str] = None
    duration_ms: Annotated[int, Field(ge=0)] = 0
    started_at: int = 0
    attempts: Annotated[int, Field(ge=0)] = 0

    @model_validator(mode="after")
    def _error_iff_not_success(self):
        if self.status == OutputStatus.SUCCESS and self.error is not None:
            raise ValueError("successful output must not carry an error")
        if self.status != OutputStatus.SUCCESS and not self.error:
            raise ValueError(f"{self.status} output requires an error message")
        return self


class RunConfig(BaseModel):
    """
    Input for a single scheduler run.
    """
    model_config = ConfigDict(extra="forbid")

    entry: TaskId
    concurrency: Annotated[int, Field(ge=1, le=1024)]
    stop_on_error: bool = False
    timeout_ms: Optional[Annotated[int, Field(gt=0)]] = None


class RunStatus(BaseModel):
    """
    Aggregate status of one run; emitted on every change.
    """
    model_config = ConfigDict(extra="forbid")

    entry: str
    state: RunState = RunState.PENDING

    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    skipped_tasks: int = 0

    running_task_ids: list[str] = Field(default_factory=list)
    outputs: dict[str, TaskOutput] = Field(default_factory=dict)

    started_at: int
    ended_at: Optional[int] = None


class TaskView(BaseModel):
    """
    API output model for a single graph node.
    """
    model_config = ConfigDict(extra="forbid")

    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    status: NodeStatus
    dependencies: list[str] = Field(default_factory=list)
    dependents: list[str] = Field(default_factory=list)
    output: Optional[TaskOutput] = None


class TaskListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tasks: list[TaskView]
    total: int


class RunRequest(BaseModel):
    """
    API input for POST /runs. Omitted fields fall back to pipeline / settings defaults.
    """
    model_config = ConfigDict(extra="forbid")

    entry: Optional[TaskId] = None
    concurrency: Optional[Annotated[int, Field(ge=1, le=1024)]] = None
    stop_on_error: Optional[bool] = None
    timeout_ms: Optional[Annotated[int, Field(gt=0)]] = None


class ErrorResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    error: str
    code: str
    details: dict = Field(default_factory=dict)
