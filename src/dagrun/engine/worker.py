# src/dagrun/engine/worker.py
from __future__ import annotations

import threading
import time
from collections.abc import Mapping
from typing import Any, Optional

from dagrun.domain.errors import DagRunBaseError, TaskTimeoutError
from dagrun.domain.models import RetryPolicy, TaskOutput
from dagrun.domain.states import OutputStatus
from dagrun.logging import get_logger

from .context import TaskContext
from .graph import TaskBody, TaskDefinition

_LOG = get_logger(__name__)

_NO_RETRY = RetryPolicy()


def now_ms() -> int:
    return int(time.time() * 1000)


class TaskReportedError(Exception):
    """
    The body returned an output with status `error` instead of raising.
    """


class Worker:
    """
    Executes a single task body and converts its outcome into a TaskOutput.

    This is the dispatch boundary: nothing a body raises escapes `run`, apart
    from KeyboardInterrupt. SystemExit counts as an ordinary failure.
    Retries and per-attempt timeouts are applied here.
    """

    def run(self, definition: TaskDefinition, context: TaskContext, cancel_event: threading.Event) -> TaskOutput:
        policy = definition.retry or _NO_RETRY
        started_at = now_ms()
        t0 = time.monotonic()
        attempts = 0
        error: Optional[str] = None

        _LOG.info("Running task %s", definition.id)

        while attempts < policy.max_attempts:
            attempts += 1
            try:
                result = _call_with_timeout(definition.execute, context, definition.timeout_ms, definition.id)
                artifacts = _artifacts_from_result(result)
            except KeyboardInterrupt:
                raise
            except BaseException as e:
                error = _describe(e)
                _LOG.warning(
                    "Task %s attempt %d/%d failed: %s",
                    definition.id, attempts, policy.max_attempts, error,
                )
            else:
                duration = _elapsed_ms(t0)
                _LOG.info("Completed task %s in %dms", definition.id, duration)
                return TaskOutput(
                    task_id=definition.id,
                    status=OutputStatus.SUCCESS,
                    artifacts=artifacts,
                    duration_ms=duration,
                    started_at=started_at,
                    attempts=attempts,
                )

            if attempts >= policy.max_attempts or cancel_event.is_set():
                break
            # Linear backoff; a cancelled run interrupts the wait.
            if cancel_event.wait(timeout=policy.backoff_ms * attempts / 1000.0):
                break

        return TaskOutput(
            task_id=definition.id,
            status=OutputStatus.ERROR,
            error=error or "task failed",
            duration_ms=_elapsed_ms(t0),
            started_at=started_at,
            attempts=attempts,
        )


def _call_with_timeout(fn: TaskBody, context: TaskContext, timeout_ms: Optional[int], task_id: str) -> Any:
    if timeout_ms is None:
        return fn(context)

    box: dict[str, Any] = {}

    def _target() -> None:
        try:
            box["result"] = fn(context)
        except BaseException as e:  # re-raised on the calling thread
            box["error"] = e

    # Threads cannot be killed: a timed-out body keeps running detached and
    # its result is discarded.
    t = threading.Thread(target=_target, name=f"dagrun-body-{task_id}", daemon=True)
    t.start()
    t.join(timeout=timeout_ms / 1000.0)
    if t.is_alive():
        raise TaskTimeoutError(
            f"Task {task_id} timed out after {timeout_ms}ms",
            details={"id": task_id, "timeout_ms": timeout_ms},
        )
    if "error" in box:
        raise box["error"]
    return box.get("result")


def _artifacts_from_result(result: Any) -> dict[str, str]:
    if result is None:
        return {}
    if isinstance(result, TaskOutput):
        if result.status != OutputStatus.SUCCESS:
            raise TaskReportedError(result.error or f"task reported status {result.status}")
        return dict(result.artifacts)
    if isinstance(result, Mapping):
        return {str(k): str(v) for k, v in result.items()}
    raise TypeError(
        f"task body must return TaskOutput, a mapping of artifacts or None, got {type(result).__name__}"
    )


def _describe(e: BaseException) -> str:
    if isinstance(e, DagRunBaseError):
        return e.message
    if isinstance(e, SystemExit):
        return f"task exited with code {e.code}"
    return str(e) or type(e).__name__


def _elapsed_ms(t0: float) -> int:
    return int((time.monotonic() - t0) * 1000)
