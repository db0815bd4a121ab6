from fastapi.testclient import TestClient


def test_healthz(client: TestClient):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


def test_list_and_get_tasks(client: TestClient):
    r = client.get("/tasks")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["total"] == 4
    assert [t["id"] for t in body["tasks"]] == ["fetch", "parse", "lint", "report"]

    r = client.get("/tasks/fetch")
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "pending"
    assert data["dependents"] == ["parse", "lint"]
    assert data["output"] is None


def test_get_unknown_task_returns_404(client: TestClient):
    r = client.get("/tasks/nope")
    assert r.status_code == 404
    assert r.json()["code"] == "NOT_FOUND"


def test_latest_run_is_404_before_any_run(client: TestClient):
    r = client.get("/runs/latest")
    assert r.status_code == 404


def test_run_default_entry(client: TestClient):
    r = client.post("/runs", json={})
    assert r.status_code == 200, r.text
    status = r.json()
    assert status["entry"] == "report"
    assert status["state"] == "completed"
    assert status["total_tasks"] == 3
    assert status["completed_tasks"] == 3
    assert set(status["outputs"]) == {"fetch", "parse", "report"}
    assert status["outputs"]["report"]["artifacts"]["stdout"].strip() == "reported"

    # lint is outside the closure of report
    assert client.get("/tasks/lint").json()["status"] == "pending"
    assert client.get("/tasks/report").json()["status"] == "completed"

    latest = client.get("/runs/latest").json()
    assert latest["state"] == "completed"
    assert latest["ended_at"] is not None


def test_run_explicit_entry_and_unknown_entry(client: TestClient):
    r = client.post("/runs", json={"entry": "lint", "concurrency": 1})
    assert r.status_code == 200, r.text
    assert set(r.json()["outputs"]) == {"fetch", "lint"}

    r = client.post("/runs", json={"entry": "ghost"})
    assert r.status_code == 404
    assert r.json()["code"] == "NOT_FOUND"


def test_run_rejects_invalid_concurrency(client: TestClient):
    r = client.post("/runs", json={"entry": "fetch", "concurrency": 0})
    assert r.status_code == 422


def test_failed_run_reports_failed_and_skipped(client_factory):
    pipeline = {
        "default_entry": "c",
        "tasks": [
            {"id": "a", "command": "exit 2"},
            {"id": "b", "depends_on": ["a"], "command": "echo b"},
            {"id": "c", "depends_on": ["b"], "command": "echo c"},
        ],
    }
    with client_factory(pipeline=pipeline) as client:
        r = client.post("/runs", json={})
        assert r.status_code == 200, r.text
        status = r.json()
        assert status["state"] == "failed"
        assert status["failed_tasks"] == 1
        assert status["outputs"]["a"]["status"] == "error"
        assert status["outputs"]["b"]["status"] == "skipped"
        assert status["outputs"]["c"]["error"] == "dependency failed"


def test_run_without_waiting(client: TestClient):
    r = client.post("/runs?wait=false", json={"entry": "parse"})
    assert r.status_code == 202, r.text
    assert r.json()["entry"] == "parse"

    # TestClient runs background tasks before returning the response.
    latest = client.get("/runs/latest").json()
    assert latest["entry"] == "parse"
    assert latest["state"] == "completed"


def test_run_while_running_returns_409(client: TestClient):
    scheduler = client.app.state.scheduler
    scheduler._run_lock.acquire()
    try:
        r = client.post("/runs", json={})
        assert r.status_code == 409
        assert r.json()["code"] == "CONFLICT"

        r = client.post("/runs?wait=false", json={})
        assert r.status_code == 409
    finally:
        scheduler._run_lock.release()


def test_pipeline_without_default_entry_needs_explicit_entry(client_factory):
    with client_factory(pipeline={"tasks": [{"id": "only", "command": "true"}]}) as client:
        r = client.post("/runs", json={})
        assert r.status_code == 400
        assert r.json()["code"] == "VALIDATION_ERROR"

        r = client.post("/runs", json={"entry": "only"})
        assert r.status_code == 200
