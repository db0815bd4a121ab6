"""CLI entrypoint for dagrun."""

from __future__ import annotations

import dataclasses
import sys
from pathlib import Path
from typing import Optional

import rich_click as click

from dagrun import __version__
from dagrun.config import Settings, load_settings
from dagrun.domain.errors import DagRunBaseError
from dagrun.domain.models import RunStatus, TaskOutput
from dagrun.domain.states import RunState
from dagrun.engine import RunEvent
from dagrun.logging import configure_logging, get_logger
from dagrun.pipeline import build_scheduler, load_pipeline, resolve_run_config

click.rich_click.USE_MARKDOWN = True


@click.group()
@click.version_option(version=__version__, prog_name="dagrun")
def dagrun() -> None:
    """Dependency-ordered task scheduler."""


@dagrun.command("run")
@click.option(
    "--pipeline",
    "pipeline_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Pipeline JSON file. Defaults to DAGRUN_PIPELINE_PATH.",
)
@click.option("--entry", "-e", default=None, help="Entry task. Defaults to the pipeline's default_entry.")
@click.option(
    "--concurrency",
    "-c",
    type=click.IntRange(min=1),
    default=None,
    help="Max tasks running at once.",
)
@click.option(
    "--stop-on-error/--no-stop-on-error",
    default=None,
    help="Stop dispatching new tasks after the first failure.",
)
@click.option(
    "--timeout-ms",
    type=click.IntRange(min=1),
    default=None,
    help="Overall run timeout in milliseconds.",
)
def run(
    pipeline_path: Optional[Path],
    entry: Optional[str],
    concurrency: Optional[int],
    stop_on_error: Optional[bool],
    timeout_ms: Optional[int],
) -> None:
    """Run the pipeline from an entry task; exits 1 if any task failed."""

    settings = _load_settings(pipeline_path)
    try:
        pipeline = load_pipeline(settings.pipeline_path)
        scheduler = build_scheduler(pipeline, settings)
        config = resolve_run_config(
            pipeline,
            settings,
            entry=entry,
            concurrency=concurrency,
            stop_on_error=stop_on_error,
            timeout_ms=timeout_ms,
        )
    except DagRunBaseError as e:
        raise click.ClickException(f"{e.code}: {e.message}") from e

    click.echo(f"Entry: {config.entry}  concurrency: {config.concurrency}  tasks: {len(scheduler.graph)}")
    scheduler.subscribe(RunEvent.TASK_COMPLETED, lambda o: click.echo(_completed_line(o)))
    scheduler.subscribe(RunEvent.TASK_FAILED, lambda o: click.echo(_failed_line(o)))
    scheduler.subscribe(RunEvent.TASK_SKIPPED, lambda o: click.echo(_skipped_line(o)))

    try:
        status = scheduler.run(config)
    except DagRunBaseError as e:
        raise click.ClickException(f"{e.code}: {e.message}") from e

    _emit_lines(_summary_lines(status))
    if status.state != RunState.COMPLETED:
        sys.exit(1)


@dagrun.command("graph")
@click.option(
    "--pipeline",
    "pipeline_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Pipeline JSON file. Defaults to DAGRUN_PIPELINE_PATH.",
)
def graph(pipeline_path: Optional[Path]) -> None:
    """Validate the pipeline and print each task with its dependencies."""

    settings = _load_settings(pipeline_path)
    try:
        scheduler = build_scheduler(load_pipeline(settings.pipeline_path), settings)
    except DagRunBaseError as e:
        raise click.ClickException(f"{e.code}: {e.message}") from e

    for node in scheduler.graph:
        deps = ", ".join(node.dependencies) or "-"
        click.echo(f"{node.id}  <-  {deps}")


@dagrun.command("serve")
def serve() -> None:
    """Serve the HTTP API with uvicorn (settings from DAGRUN_* env vars)."""

    import uvicorn

    settings = load_settings()
    configure_logging(settings.log_level)
    get_logger(__name__).info("Serving pipeline %s on %s:%d", settings.pipeline_path, settings.host, settings.port)

    uvicorn.run(
        "dagrun.api.app:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
        reload=False,  # prefer `uvicorn ... --reload` in dev
    )


def _load_settings(pipeline_path: Optional[Path]) -> Settings:
    try:
        settings = load_settings()
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    configure_logging(settings.log_level, stream=sys.stderr)
    if pipeline_path is not None:
        settings = dataclasses.replace(settings, pipeline_path=pipeline_path)
    return settings


def _completed_line(output: TaskOutput) -> str:
    return f"completed  {output.task_id} ({output.duration_ms}ms, {len(output.artifacts)} artifact(s))"


def _failed_line(output: TaskOutput) -> str:
    return f"failed     {output.task_id}: {output.error}"


def _skipped_line(output: TaskOutput) -> str:
    return f"skipped    {output.task_id}: {output.error}"


def _summary_lines(status: RunStatus) -> list[str]:
    lines = [
        f"Run {status.state}: {status.completed_tasks}/{status.total_tasks} completed, "
        f"{status.failed_tasks} failed, {status.skipped_tasks} skipped",
    ]
    if status.ended_at is not None:
        lines.append(f"Duration: {(status.ended_at - status.started_at) / 1000:.2f}s")
    return lines


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    dagrun()
