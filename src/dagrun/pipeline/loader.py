from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import pydantic

from dagrun.config import Settings
from dagrun.domain.errors import NotFoundError, ValidationError
from dagrun.domain.models import RunConfig
from dagrun.engine.context import HostContextFactory, ModelCommand
from dagrun.engine.scheduler import Scheduler
from dagrun.logging import get_logger

from .models import PipelineSpec
from .tasks import build_definitions

_LOG = get_logger(__name__)


def load_pipeline(path: Path) -> PipelineSpec:
    """
    Reads and validates a JSON pipeline file.

    Raises NotFoundError if the file is missing, ValidationError if it is not a
    valid pipeline (the pydantic error list is kept in `details["errors"]`).
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise NotFoundError(f"Pipeline file not found: {path}", details={"path": str(path)}) from e

    try:
        spec = PipelineSpec.model_validate_json(raw)
    except pydantic.ValidationError as e:
        raise ValidationError(
            f"Invalid pipeline file {path}: {e.error_count()} error(s)",
            details={"path": str(path), "errors": json.loads(e.json(include_url=False))},
        ) from e

    _LOG.info("Loaded pipeline %s with %d task(s)", path, len(spec.tasks))
    return spec


def build_scheduler(pipeline: PipelineSpec, settings: Settings) -> Scheduler:
    """
    Scheduler whose tasks run against the host filesystem / processes.
    Configuration errors (unknown dependency, cycle) raise here.
    """
    factory = HostContextFactory(
        workdir=settings.workdir.resolve(),
        model=ModelCommand(
            template=settings.model_command,
            default_model=settings.default_model,
            timeout_ms=settings.model_timeout_ms,
        ),
        shell_timeout_ms=settings.shell_timeout_ms,
    )
    return Scheduler(build_definitions(pipeline), context_factory=factory)


def resolve_run_config(
    pipeline: PipelineSpec,
    settings: Settings,
    *,
    entry: Optional[str] = None,
    concurrency: Optional[int] = None,
    stop_on_error: Optional[bool] = None,
    timeout_ms: Optional[int] = None,
) -> RunConfig:
    """
    Explicit values win, then pipeline defaults, then settings.
    """
    entry = entry or pipeline.default_entry
    if entry is None:
        raise ValidationError(
            "No entry task given and the pipeline has no default_entry",
            details={"tasks": [t.id for t in pipeline.tasks]},
        )

    def _first(*values):
        return next((v for v in values if v is not None), None)

    try:
        return RunConfig(
            entry=entry,
            concurrency=_first(concurrency, pipeline.default_concurrency, settings.concurrency),
            stop_on_error=_first(stop_on_error, pipeline.stop_on_error, settings.stop_on_error),
            timeout_ms=_first(timeout_ms, pipeline.timeout_ms, settings.run_timeout_ms),
        )
    except pydantic.ValidationError as e:
        raise ValidationError(
            f"Invalid run configuration: {e.error_count()} error(s)",
            details={"errors": json.loads(e.json(include_url=False))},
        ) from e
