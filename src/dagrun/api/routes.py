# src/dagrun/api/routes.py
from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from fastapi.responses import JSONResponse

from dagrun.config import Settings
from dagrun.domain.errors import (
    ConflictError,
    DagRunBaseError,
    NotFoundError,
)
from dagrun.domain.models import (
    ErrorResponse,
    RunConfig,
    RunRequest,
    RunStatus,
    TaskListResponse,
    TaskView,
)
from dagrun.engine import Scheduler, TaskNode
from dagrun.logging import get_logger
from dagrun.pipeline import PipelineSpec, resolve_run_config

from .deps import get_pipeline, get_scheduler, get_settings

_LOG = get_logger(__name__)
router = APIRouter()


def _error_response(err: DagRunBaseError, http_status: int) -> JSONResponse:
    payload = ErrorResponse(
        error=err.message,
        code=err.code,
        details=err.details or {},
    ).model_dump(mode="json")
    return JSONResponse(status_code=http_status, content=payload)


def _task_view(node: TaskNode) -> TaskView:
    return TaskView(
        id=node.id,
        name=node.definition.name,
        description=node.definition.description,
        status=node.status,
        dependencies=list(node.dependencies),
        dependents=list(node.dependents),
        output=node.output,
    )


def _run_in_background(scheduler: Scheduler, config: RunConfig) -> None:
    try:
        scheduler.run(config)
    except DagRunBaseError as e:
        _LOG.warning("Background run for %s not started: %s", config.entry, e)


@router.get("/healthz")
def healthz() -> dict:
    return {"ok": True}


@router.get("/tasks", response_model=TaskListResponse)
def list_tasks(scheduler: Scheduler = Depends(get_scheduler)):
    tasks = [_task_view(node) for node in scheduler.graph]
    return TaskListResponse(tasks=tasks, total=len(tasks))


@router.get("/tasks/{task_id}", response_model=TaskView)
def get_task(task_id: str, scheduler: Scheduler = Depends(get_scheduler)):
    try:
        return _task_view(scheduler.graph.get(task_id))
    except NotFoundError as e:
        return _error_response(e, 404)


@router.post("/runs", response_model=None)
def start_run(
    background: BackgroundTasks,
    payload: RunRequest = RunRequest(),
    wait: bool = Query(default=True, description="Block until the run finishes."),
    scheduler: Scheduler = Depends(get_scheduler),
    pipeline: PipelineSpec = Depends(get_pipeline),
    settings: Settings = Depends(get_settings),
):
    """
    Run the pipeline from an entry task.

    Notes:
    - Omitted fields fall back to the pipeline file, then to settings.
    - One run at a time: a second run while one is in progress returns 409.
    - With wait=false the run starts after the response (202); poll /runs/latest.
    """
    try:
        config = resolve_run_config(
            pipeline,
            settings,
            entry=payload.entry,
            concurrency=payload.concurrency,
            stop_on_error=payload.stop_on_error,
            timeout_ms=payload.timeout_ms,
        )
        if config.entry not in scheduler.graph:
            raise NotFoundError(f"Entry task not found: {config.entry}", details={"id": config.entry})

        if not wait:
            if scheduler.is_running:
                raise ConflictError("A run is already in progress", details={"entry": config.entry})
            background.add_task(_run_in_background, scheduler, config)
            return JSONResponse(status_code=202, content=config.model_dump(mode="json"))

        status = scheduler.run(config)
        return JSONResponse(status_code=200, content=status.model_dump(mode="json"))
    except NotFoundError as e:
        return _error_response(e, 404)
    except ConflictError as e:
        return _error_response(e, 409)
    except DagRunBaseError as e:
        return _error_response(e, 400)


@router.get("/runs/latest", response_model=RunStatus)
def latest_run(scheduler: Scheduler = Depends(get_scheduler)):
    status = scheduler.latest_status
    if status is None:
        return _error_response(NotFoundError("No run has been started yet"), 404)
    return status
