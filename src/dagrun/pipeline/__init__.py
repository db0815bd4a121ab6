"""
Declarative pipelines for dagrun.

- models: Pydantic schema of a JSON pipeline file
- tasks: shell / prompt task bodies built from task specs
- loader: file loading, scheduler construction, run-config resolution
"""

from .loader import build_scheduler, load_pipeline, resolve_run_config
from .models import PipelineSpec, TaskSpec
from .tasks import CommandTask, PromptTask, build_definitions

__all__ = [
    "PipelineSpec",
    "TaskSpec",
    "CommandTask",
    "PromptTask",
    "build_definitions",
    "build_scheduler",
    "load_pipeline",
    "resolve_run_config",
]
