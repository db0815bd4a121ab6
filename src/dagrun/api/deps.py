# src/dagrun/api/deps.py
from __future__ import annotations

from fastapi import Request

from dagrun.config import Settings
from dagrun.engine import Scheduler
from dagrun.pipeline import PipelineSpec


def get_settings(request: Request) -> Settings:
    """
    Per-request access to settings stored on app.state during startup.
    """
    return request.app.state.settings  # type: ignore[attr-defined]


def get_pipeline(request: Request) -> PipelineSpec:
    return request.app.state.pipeline  # type: ignore[attr-defined]


def get_scheduler(request: Request) -> Scheduler:
    """
    The scheduler instance owned by the app (one per process).
    """
    return request.app.state.scheduler  # type: ignore[attr-defined]
