# src/dagrun/api/app.py
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from dagrun import __version__
from dagrun.config import load_settings
from dagrun.logging import configure_logging, get_logger
from dagrun.pipeline import build_scheduler, load_pipeline

from .routes import router

_LOG = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Lifespan handler.

    Responsible for:
    - loading settings
    - configuring logging
    - loading the pipeline file and building the scheduler (fails startup on
      configuration errors such as cycles or unknown dependencies)
    """
    settings = load_settings()
    configure_logging(settings.log_level)

    pipeline = load_pipeline(settings.pipeline_path)
    scheduler = build_scheduler(pipeline, settings)

    # Store on app.state for DI
    app.state.settings = settings
    app.state.pipeline = pipeline
    app.state.scheduler = scheduler

    _LOG.info("Startup complete: %d task(s) from %s", len(scheduler.graph), settings.pipeline_path)

    try:
        yield
    finally:
        _LOG.info("Shutdown complete.")


app = FastAPI(
    title="dagrun",
    version=__version__,
    lifespan=lifespan,
)
app.include_router(router)
