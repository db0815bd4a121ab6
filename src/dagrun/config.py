from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _get_env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"Environment variable {name} must be an int, got: {raw!r}") from e
    return value


def _get_env_optional_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return _get_env_int(name, 0)


def _get_env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw


def _get_env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"Environment variable {name} must be a boolean, got: {raw!r}")


@dataclass(frozen=True)
class Settings:
    # Pipeline
    pipeline_path: Path
    workdir: Path

    # Run defaults (a pipeline file may override them)
    concurrency: int
    stop_on_error: bool
    run_timeout_ms: Optional[int]

    # Task capabilities
    model_command: Optional[str]
    default_model: str
    model_timeout_ms: int
    shell_timeout_ms: int

    # Server (used by `dagrun serve`)
    host: str
    port: int
    log_level: str


def load_settings() -> Settings:
    """
    Loads settings from env vars with sane defaults.

    Env vars:
      - DAGRUN_PIPELINE_PATH (default: ./pipeline.json)
      - DAGRUN_WORKDIR (default: .)
      - DAGRUN_CONCURRENCY (default: 3)
      - DAGRUN_STOP_ON_ERROR (default: false)
      - DAGRUN_RUN_TIMEOUT_MS (default: unset, no run timeout)
      - DAGRUN_MODEL_COMMAND (default: unset; e.g. "claude -p {prompt}")
      - DAGRUN_DEFAULT_MODEL (default: default)
      - DAGRUN_MODEL_TIMEOUT_MS (default: 120000)
      - DAGRUN_SHELL_TIMEOUT_MS (default: 600000)
      - DAGRUN_HOST (default: 127.0.0.1)
      - DAGRUN_PORT (default: 8000)
      - DAGRUN_LOG_LEVEL (default: info)
    """
    pipeline_path = Path(_get_env_str("DAGRUN_PIPELINE_PATH", "./pipeline.json")).expanduser()
    workdir = Path(_get_env_str("DAGRUN_WORKDIR", ".")).expanduser()

    concurrency = _get_env_int("DAGRUN_CONCURRENCY", 3)
    if concurrency <= 0:
        raise ValueError("DAGRUN_CONCURRENCY must be > 0")

    stop_on_error = _get_env_bool("DAGRUN_STOP_ON_ERROR", False)

    run_timeout_ms = _get_env_optional_int("DAGRUN_RUN_TIMEOUT_MS")
    if run_timeout_ms is not None and run_timeout_ms <= 0:
        raise ValueError("DAGRUN_RUN_TIMEOUT_MS must be > 0")

    model_command = os.getenv("DAGRUN_MODEL_COMMAND") or None
    default_model = _get_env_str("DAGRUN_DEFAULT_MODEL", "default")

    model_timeout_ms = _get_env_int("DAGRUN_MODEL_TIMEOUT_MS", 120_000)
    if model_timeout_ms <= 0:
        raise ValueError("DAGRUN_MODEL_TIMEOUT_MS must be > 0")

    shell_timeout_ms = _get_env_int("DAGRUN_SHELL_TIMEOUT_MS", 600_000)
    if shell_timeout_ms <= 0:
        raise ValueError("DAGRUN_SHELL_TIMEOUT_MS must be > 0")

    host = _get_env_str("DAGRUN_HOST", "127.0.0.1")
    port = _get_env_int("DAGRUN_PORT", 8000)
    if not (1 <= port <= 65535):
        raise ValueError("DAGRUN_PORT must be between 1 and 65535")

    log_level = _get_env_str("DAGRUN_LOG_LEVEL", "info").lower()

    return Settings(
        pipeline_path=pipeline_path,
        workdir=workdir,
        concurrency=concurrency,
        stop_on_error=stop_on_error,
        run_timeout_ms=run_timeout_ms,
        model_command=model_command,
        default_model=default_model,
        model_timeout_ms=model_timeout_ms,
        shell_timeout_ms=shell_timeout_ms,
        host=host,
        port=port,
        log_level=log_level,
    )
