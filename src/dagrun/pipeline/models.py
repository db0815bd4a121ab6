from __future__ import annotations

from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from dagrun.domain.models import RetryPolicy, TaskId


class TaskSpec(BaseModel):
    """
    One task of a pipeline file.

    Exactly one of `command` (shell task) or `prompt` (model task) is set.
    """
    model_config = ConfigDict(extra="forbid")

    id: TaskId
    name: Optional[str] = None
    description: Optional[str] = None
    depends_on: list[TaskId] = Field(default_factory=list)

    command: Optional[Annotated[str, Field(min_length=1)]] = None

    prompt: Optional[Annotated[str, Field(min_length=1)]] = None
    model: Optional[str] = None
    inputs: list[str] = Field(default_factory=list)
    include_dependency_artifacts: bool = True
    output_path: Optional[str] = None

    timeout_ms: Optional[Annotated[int, Field(gt=0, le=86_400_000)]] = None  # up to 24h
    retry: Optional[RetryPolicy] = None

    @field_validator("depends_on")
    @classmethod
    def _validate_depends_on(cls, deps: list[str], info) -> list[str]:
        if len(deps) != len(set(deps)):
            raise ValueError("depends_on must not contain duplicates")

        task_id = info.data.get("id")
        if task_id and task_id in deps:
            raise ValueError("task cannot depend on itself")

        return deps

    @model_validator(mode="after")
    def _validate_kind(self):
        if (self.command is None) == (self.prompt is None):
            raise ValueError("exactly one of 'command' or 'prompt' must be set")
        if self.command is not None and (self.model or self.inputs or self.output_path):
            raise ValueError("'model', 'inputs' and 'output_path' only apply to prompt tasks")
        return self


class PipelineSpec(BaseModel):
    """
    A pipeline file: task specs plus run defaults.
    """
    model_config = ConfigDict(extra="forbid")

    default_entry: Optional[TaskId] = None
    default_concurrency: Optional[Annotated[int, Field(ge=1, le=1024)]] = None
    stop_on_error: Optional[bool] = None
    timeout_ms: Optional[Annotated[int, Field(gt=0)]] = None

    tasks: list[TaskSpec] = Field(min_length=1)

    @model_validator(mode="after")
    def _validate_ids(self):
        ids = [t.id for t in self.tasks]
        if len(ids) != len(set(ids)):
            raise ValueError("pipeline contains duplicate task ids")
        if self.default_entry is not None and self.default_entry not in ids:
            raise ValueError(f"default_entry {self.default_entry!r} is not a task id")
        return self
