# src/dagrun/engine/context.py
from __future__ import annotations

import shlex
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping, Optional, Protocol, runtime_checkable

from dagrun.domain.errors import DependencyOutputNotFoundError, ModelInvocationError
from dagrun.domain.models import TaskOutput
from dagrun.domain.states import OutputStatus
from dagrun.logging import get_logger

_LOG = get_logger(__name__)

# Conventional exit code for a command killed by a timeout (as GNU `timeout`).
TIMEOUT_EXIT_CODE = 124


@dataclass(frozen=True)
class ShellResult:
    stdout: str
    stderr: str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@runtime_checkable
class TaskContext(Protocol):
    """
    Capabilities handed to a task body at dispatch time.

    A fresh context is created for every dispatched task.
    """

    @property
    def task_id(self) -> str: ...

    @property
    def cancelled(self) -> bool: ...

    def read_file(self, path: str | Path) -> str: ...

    def write_file(self, path: str | Path, content: str) -> None: ...

    def invoke_model(self, prompt: str, model: Optional[str] = None) -> str: ...

    def run_shell_command(self, command: str) -> ShellResult: ...

    def get_dependency_output(self, task_id: str) -> TaskOutput: ...


# (task_id, recorded outputs of the current run, run cancellation flag) -> context
ContextFactory = Callable[[str, Mapping[str, TaskOutput], threading.Event], TaskContext]


def lookup_completed_output(outputs: Mapping[str, TaskOutput], task_id: str) -> TaskOutput:
    """
    Returns the recorded output of a completed task, or raises
    DependencyOutputNotFoundError if it has not completed successfully.
    """
    output = outputs.get(task_id)
    if output is None or output.status != OutputStatus.SUCCESS:
        raise DependencyOutputNotFoundError(
            f"Dependency output not found: {task_id}",
            details={"id": task_id, "status": output.status if output else None},
        )
    return output


@dataclass(frozen=True)
class ModelCommand:
    """
    Invokes a language model through an external CLI.

    `template` is a command line with optional `{prompt}` and `{model}`
    placeholders; values are shell-quoted before splitting. When `{prompt}`
    is absent, the prompt is written to the process stdin.
    """
    template: Optional[str]
    default_model: str = "default"
    timeout_ms: int = 120_000

    def render(self, prompt: str, model: str) -> list[str]:
        stripped = (self.template or "").strip()
        if not stripped:
            raise ModelInvocationError(
                "No model command configured (set DAGRUN_MODEL_COMMAND)",
            )
        try:
            rendered = stripped.format(model=shlex.quote(model), prompt=shlex.quote(prompt))
        except (KeyError, IndexError, ValueError) as e:
            raise ModelInvocationError(
                f"Invalid model command template: {e}",
                details={"template": stripped},
            ) from e
        args = shlex.split(rendered)
        if not args:
            raise ModelInvocationError("Model command template rendered an empty command")
        return args

    def __call__(self, prompt: str, model: Optional[str] = None) -> str:
        model = model or self.default_model
        args = self.render(prompt, model)
        stdin = None if "{prompt}" in (self.template or "") else prompt

        _LOG.debug("Invoking model %s via %s", model, args[0])
        try:
            proc = subprocess.run(
                args,
                input=stdin,
                capture_output=True,
                text=True,
                timeout=self.timeout_ms / 1000.0,
                check=False,
            )
        except FileNotFoundError as e:
            raise ModelInvocationError(
                f"Model command not found: {args[0]}",
                details={"command": args[0]},
            ) from e
        except subprocess.TimeoutExpired as e:
            raise ModelInvocationError(
                f"Model command timed out after {self.timeout_ms}ms",
                details={"command": args[0], "timeout_ms": self.timeout_ms},
            ) from e

        if proc.returncode != 0:
            raise ModelInvocationError(
                f"Model command exited with code {proc.returncode}: {proc.stderr.strip()[:500]}",
                details={"command": args[0], "exit_code": proc.returncode},
            )
        return proc.stdout


class HostTaskContext:
    """
    TaskContext backed by the host filesystem and processes.

    Relative paths and shell commands are resolved against `workdir`.
    """

    def __init__(
        self,
        task_id: str,
        *,
        outputs: Mapping[str, TaskOutput],
        cancel_event: threading.Event,
        workdir: Path,
        model: ModelCommand,
        shell_timeout_ms: int = 600_000,
    ) -> None:
        self._task_id = task_id
        self._outputs = outputs
        self._cancel_event = cancel_event
        self._workdir = workdir
        self._model = model
        self._shell_timeout_ms = shell_timeout_ms

    @property
    def task_id(self) -> str:
        return self._task_id

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def _resolve(self, path: str | Path) -> Path:
        p = Path(path).expanduser()
        return p if p.is_absolute() else self._workdir / p

    def read_file(self, path: str | Path) -> str:
        return self._resolve(path).read_text(encoding="utf-8")

    def write_file(self, path: str | Path, content: str) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")

    def invoke_model(self, prompt: str, model: Optional[str] = None) -> str:
        return self._model(prompt, model)

    def run_shell_command(self, command: str) -> ShellResult:
        _LOG.debug("Task %s running shell command: %s", self._task_id, command)
        try:
            proc = subprocess.run(
                command,
                shell=True,
                cwd=self._workdir,
                capture_output=True,
                text=True,
                timeout=self._shell_timeout_ms / 1000.0,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            return ShellResult(
                stdout=_as_text(e.stdout),
                stderr=f"Command timed out after {self._shell_timeout_ms}ms",
                exit_code=TIMEOUT_EXIT_CODE,
            )
        return ShellResult(stdout=proc.stdout, stderr=proc.stderr, exit_code=proc.returncode)

    def get_dependency_output(self, task_id: str) -> TaskOutput:
        return lookup_completed_output(self._outputs, task_id)


@dataclass(frozen=True)
class HostContextFactory:
    """
    Builds a HostTaskContext per dispatched task.
    """
    workdir: Path
    model: ModelCommand
    shell_timeout_ms: int = 600_000

    def __call__(
        self,
        task_id: str,
        outputs: Mapping[str, TaskOutput],
        cancel_event: threading.Event,
    ) -> HostTaskContext:
        return HostTaskContext(
            task_id,
            outputs=outputs,
            cancel_event=cancel_event,
            workdir=self.workdir,
            model=self.model,
            shell_timeout_ms=self.shell_timeout_ms,
        )


def _as_text(raw: bytes | str | None) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw
