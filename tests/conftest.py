# tests/conftest.py
import importlib
import itertools
import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

import pytest
from fastapi.testclient import TestClient

from dagrun.config import Settings

_counter = itertools.count(1)

DEFAULT_ENV = {
    "DAGRUN_CONCURRENCY": "2",
    "DAGRUN_STOP_ON_ERROR": "false",
    "DAGRUN_MODEL_COMMAND": "cat",
    "DAGRUN_LOG_LEVEL": "warning",
}

DEFAULT_PIPELINE = {
    "default_entry": "report",
    "tasks": [
        {"id": "fetch", "command": "echo fetched"},
        {"id": "parse", "depends_on": ["fetch"], "command": "echo parsed"},
        {"id": "lint", "depends_on": ["fetch"], "command": "echo linted"},
        {"id": "report", "depends_on": ["parse"], "command": "echo reported"},
    ],
}


def write_pipeline(path: Path, pipeline: dict[str, Any]) -> Path:
    path.write_text(json.dumps(pipeline), encoding="utf-8")
    return path


def make_settings(tmp_path: Path, **overrides: Any) -> Settings:
    values: dict[str, Any] = dict(
        pipeline_path=tmp_path / "pipeline.json",
        workdir=tmp_path,
        concurrency=2,
        stop_on_error=False,
        run_timeout_ms=None,
        model_command="cat",
        default_model="default",
        model_timeout_ms=5_000,
        shell_timeout_ms=5_000,
        host="127.0.0.1",
        port=8000,
        log_level="warning",
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture(autouse=True)
def _drop_dagrun_log_handlers() -> Iterator[None]:
    # CLI tests point the handler at CliRunner's (later closed) stderr.
    yield
    root = logging.getLogger()
    for h in list(root.handlers):
        if getattr(h, "_dagrun_handler", False):
            root.removeHandler(h)


def _apply_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, pipeline_path: Path,
               overrides: Optional[dict[str, str]] = None) -> None:
    monkeypatch.setenv("DAGRUN_PIPELINE_PATH", str(pipeline_path))
    monkeypatch.setenv("DAGRUN_WORKDIR", str(tmp_path))
    for k, v in DEFAULT_ENV.items():
        monkeypatch.setenv(k, v)
    if overrides:
        for k, v in overrides.items():
            monkeypatch.setenv(k, v)


@contextmanager
def _client_ctx(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, *, pipeline: Optional[dict[str, Any]] = None,
                overrides: Optional[dict[str, str]] = None) -> Iterator[TestClient]:
    # Unique pipeline file per client instance
    n = next(_counter)
    pipeline_path = write_pipeline(tmp_path / f"pipeline_{n}.json", pipeline or DEFAULT_PIPELINE)

    _apply_env(monkeypatch, tmp_path, pipeline_path, overrides)

    # Import after env is set; reload to avoid cross-test state
    app_mod = importlib.import_module("dagrun.api.app")
    importlib.reload(app_mod)

    with TestClient(app_mod.app) as client:
        yield client


@pytest.fixture()
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[TestClient]:
    """
    Default integration test client over DEFAULT_PIPELINE.
    """
    with _client_ctx(monkeypatch, tmp_path) as c:
        yield c


@pytest.fixture()
def client_factory(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """
    Factory for tests that need a custom pipeline or settings.

    Usage:
      with client_factory(pipeline={...}, overrides={"DAGRUN_CONCURRENCY": "1"}) as client:
          ...
    """

    def _make(*, pipeline: Optional[dict[str, Any]] = None, overrides: Optional[dict[str, str]] = None):
        return _client_ctx(monkeypatch, tmp_path, pipeline=pipeline, overrides=overrides)

    return _make
