import pytest
from fastapi.testclient import TestClient

import gateci.webhook.app as webhook_app
from gateci.webhook.app import create_app

PUSH = {"kind": "push", "branch": "main", "changed_paths": ["horaedb/src/engine.rs"], "sha": "abc123"}


@pytest.fixture
def client_for(metric_engine, tmp_path):
    def _make(executor, **kw):
        kw.setdefault("repository", "https://example.invalid/horaedb.git")
        app = create_app(metric_engine, executor=executor, work_dir=tmp_path / "work", **kw)
        return TestClient(app)

    return _make


@pytest.mark.unit
def test_unmatched_event_starts_nothing(client_for, fake_executor):
    client = client_for(fake_executor)
    resp = client.post("/events", json={**PUSH, "branch": "feature-x"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["matched"] is False
    assert body["run_id"] is None
    assert client.get("/runs").json() == []
    assert fake_executor.calls == []


@pytest.mark.unit
def test_matched_event_runs_pipeline(client_for, fake_executor):
    client = client_for(fake_executor)
    resp = client.post("/events", json=PUSH)
    body = resp.json()
    assert body["matched"] is True

    run = client.get(f"/runs/{body['run_id']}").json()
    assert run["state"] == "success"
    assert run["pipeline"] == "Metric Engine CI"
    assert {j["job"]: j["outcome"] for j in run["jobs"]} == {"style-check": "success", "unit-test": "success"}
    assert run["event"]["repository"] == "https://example.invalid/horaedb.git"


@pytest.mark.unit
def test_failed_run_reports_job_and_step(client_for, make_executor):
    client = client_for(make_executor(fail={"make fmt sort clippy": 1}))
    run_id = client.post("/events", json={"kind": "merge_group"}).json()["run_id"]

    run = client.get(f"/runs/{run_id}").json()
    assert run["state"] == "failed"
    jobs = {j["job"]: j for j in run["jobs"]}
    assert jobs["style-check"]["outcome"] == "failed-at-step-3"
    assert jobs["style-check"]["step_name"] == "Run Style Check"
    assert jobs["unit-test"]["outcome"] == "success"


@pytest.mark.unit
def test_run_listing(client_for, fake_executor):
    client = client_for(fake_executor)
    run_id = client.post("/events", json={"kind": "workflow_dispatch"}).json()["run_id"]
    assert client.get("/runs").json() == [{"run_id": run_id, "state": "success"}]


@pytest.mark.unit
def test_unknown_run(client_for, fake_executor):
    assert client_for(fake_executor).get("/runs/nope").status_code == 404


@pytest.mark.unit
def test_unknown_event_kind_is_rejected(client_for, fake_executor):
    resp = client_for(fake_executor).post("/events", json={"kind": "tag"})
    assert resp.status_code == 422


@pytest.mark.unit
def test_crashed_background_run_is_marked_failed(client_for, fake_executor, monkeypatch):
    def crash(*args, **kwargs):
        raise OSError("work dir is read-only")

    monkeypatch.setattr(webhook_app, "run_pipeline", crash)
    client = client_for(fake_executor)
    run_id = client.post("/events", json=PUSH).json()["run_id"]

    run = client.get(f"/runs/{run_id}").json()
    assert run["state"] == "failed"
    assert {j["outcome"] for j in run["jobs"]} == {"cancelled"}
    assert client.get("/runs").json() == [{"run_id": run_id, "state": "failed"}]
