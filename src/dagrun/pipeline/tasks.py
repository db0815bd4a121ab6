from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from dagrun.domain.errors import TaskCommandError, ValidationError
from dagrun.engine.context import TaskContext
from dagrun.engine.graph import TaskDefinition

from .models import PipelineSpec, TaskSpec

# Keep failure messages readable; full streams stay in the artifacts.
_STDERR_TAIL_CHARS = 500


@dataclass(frozen=True)
class CommandTask:
    """Runs a shell command; a non-zero exit fails the task."""

    command: str

    def __call__(self, ctx: TaskContext) -> dict[str, str]:
        result = ctx.run_shell_command(self.command)
        if not result.ok:
            tail = result.stderr.strip()[-_STDERR_TAIL_CHARS:]
            raise TaskCommandError(
                f"Command exited with code {result.exit_code}" + (f": {tail}" if tail else ""),
                details={"command": self.command, "exit_code": result.exit_code},
            )
        return {
            "stdout": result.stdout,
            "stderr": result.stderr,
            "exit_code": str(result.exit_code),
        }


@dataclass(frozen=True)
class PromptTask:
    """
    Sends a prompt to the model.

    The prompt is extended with the contents of `inputs` and, optionally, with
    every artifact of the task's dependencies. The response is written to
    `output_path` when given.
    """

    prompt: str
    depends_on: tuple[str, ...] = ()
    inputs: tuple[str, ...] = ()
    include_dependency_artifacts: bool = True
    model: Optional[str] = None
    output_path: Optional[str] = None

    def render(self, ctx: TaskContext) -> str:
        parts = [self.prompt]
        for path in self.inputs:
            parts.append(f"## {path}\n{ctx.read_file(path)}")
        if self.include_dependency_artifacts:
            for dep in self.depends_on:
                output = ctx.get_dependency_output(dep)
                for name, value in output.artifacts.items():
                    parts.append(f"## {dep}: {name}\n{value}")
        return "\n\n".join(parts)

    def __call__(self, ctx: TaskContext) -> dict[str, str]:
        response = ctx.invoke_model(self.render(ctx), self.model)
        if self.output_path:
            ctx.write_file(self.output_path, response)
            return {self.output_path: response}
        return {"response": response}


def task_body(spec: TaskSpec) -> CommandTask | PromptTask:
    if spec.command is not None:
        return CommandTask(command=spec.command)
    if spec.prompt is None:
        raise ValidationError(
            f"Task {spec.id} needs a command or a prompt",
            details={"id": spec.id},
        )
    return PromptTask(
        prompt=spec.prompt,
        depends_on=tuple(spec.depends_on),
        inputs=tuple(spec.inputs),
        include_dependency_artifacts=spec.include_dependency_artifacts,
        model=spec.model,
        output_path=spec.output_path,
    )


def build_definitions(pipeline: PipelineSpec) -> list[TaskDefinition]:
    return [
        TaskDefinition(
            id=spec.id,
            execute=task_body(spec),
            depends_on=tuple(spec.depends_on),
            retry=spec.retry,
            timeout_ms=spec.timeout_ms,
            name=spec.name,
            description=spec.description,
        )
        for spec in pipeline.tasks
    ]
