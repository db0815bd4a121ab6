from pathlib import Path

import pytest

from dagrun.config import load_settings

_VARS = [
    "DAGRUN_PIPELINE_PATH",
    "DAGRUN_WORKDIR",
    "DAGRUN_CONCURRENCY",
    "DAGRUN_STOP_ON_ERROR",
    "DAGRUN_RUN_TIMEOUT_MS",
    "DAGRUN_MODEL_COMMAND",
    "DAGRUN_DEFAULT_MODEL",
    "DAGRUN_MODEL_TIMEOUT_MS",
    "DAGRUN_SHELL_TIMEOUT_MS",
    "DAGRUN_HOST",
    "DAGRUN_PORT",
    "DAGRUN_LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch):
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    s = load_settings()
    assert s.pipeline_path == Path("./pipeline.json")
    assert s.workdir == Path(".")
    assert s.concurrency == 3
    assert s.stop_on_error is False
    assert s.run_timeout_ms is None
    assert s.model_command is None
    assert s.default_model == "default"
    assert s.port == 8000
    assert s.log_level == "info"


def test_overrides(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("DAGRUN_CONCURRENCY", "7")
    monkeypatch.setenv("DAGRUN_STOP_ON_ERROR", "Yes")
    monkeypatch.setenv("DAGRUN_RUN_TIMEOUT_MS", "30000")
    monkeypatch.setenv("DAGRUN_MODEL_COMMAND", "claude -p {prompt}")
    monkeypatch.setenv("DAGRUN_LOG_LEVEL", "DEBUG")

    s = load_settings()
    assert s.concurrency == 7
    assert s.stop_on_error is True
    assert s.run_timeout_ms == 30000
    assert s.model_command == "claude -p {prompt}"
    assert s.log_level == "debug"


@pytest.mark.parametrize(
    "name,value",
    [
        ("DAGRUN_CONCURRENCY", "0"),
        ("DAGRUN_CONCURRENCY", "many"),
        ("DAGRUN_STOP_ON_ERROR", "maybe"),
        ("DAGRUN_RUN_TIMEOUT_MS", "-5"),
        ("DAGRUN_MODEL_TIMEOUT_MS", "0"),
        ("DAGRUN_PORT", "70000"),
    ],
)
def test_invalid_values(monkeypatch: pytest.MonkeyPatch, name: str, value: str):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError) as exc:
        load_settings()
    assert name in str(exc.value)
