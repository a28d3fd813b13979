from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from relayci.server.app import create_app

from .conftest import FakeCommandRunner


@pytest.fixture
def client_for(ci_definition, make_runner):
    def _client(command_runner: FakeCommandRunner) -> TestClient:
        app = create_app(ci_definition, runner_factory=lambda d: make_runner(d, command_runner))
        return TestClient(app)

    return _client


def test_push_to_main_creates_a_run(client_for) -> None:
    client = client_for(FakeCommandRunner())

    response = client.post("/events", json={"kind": "push", "branch": "main", "sha": "abc", "repo_url": "file:///r"})
    assert response.status_code == 200
    body = response.json()
    assert body["triggered"] is True

    # background tasks finish before TestClient returns
    run = client.get(f"/runs/{body['run_id']}").json()
    assert run["status"] == "succeeded"
    assert run["event"] == "push"
    assert len(run["jobs"]) == 1
    assert run["jobs"][0]["axes"] == {"os": "ubuntu-latest", "rust": "stable"}


def test_failed_run_reports_the_failing_step(client_for) -> None:
    client = client_for(FakeCommandRunner(failures={"cargo fmt": 1}))

    body = client.post("/events", json={"kind": "pull_request", "repo_url": "file:///r"}).json()
    run = client.get(f"/runs/{body['run_id']}").json()

    assert run["status"] == "failed"
    job = run["jobs"][0]
    assert job["failed_step"] == {"position": 3, "name": "Check formatting"}
    assert [s["status"] for s in job["steps"]][3:] == ["skipped"] * 6


def test_events_that_do_not_trigger(client_for) -> None:
    client = client_for(FakeCommandRunner())

    body = client.post("/events", json={"kind": "push", "branch": "dev"}).json()
    assert body == {"triggered": False, "reason": body["reason"], "run_id": None}

    body = client.post("/events", json={"kind": "schedule", "timestamp": "2026-01-02T00:00:00Z"}).json()
    assert body["triggered"] is False


def test_schedule_tick(client_for) -> None:
    client = client_for(FakeCommandRunner())
    body = client.post(
        "/events",
        json={"kind": "schedule", "timestamp": "2026-01-15T00:00:00Z", "cron": "0 0 1,15 * *", "repo_url": "file:///r"},
    ).json()
    assert body["triggered"] is True


def test_invalid_event_kind(client_for) -> None:
    response = client_for(FakeCommandRunner()).post("/events", json={"kind": "release"})
    assert response.status_code == 422


def test_unknown_run(client_for) -> None:
    client = client_for(FakeCommandRunner())
    assert client.get("/runs/nope").status_code == 404
    assert client.post("/runs/nope/cancel").status_code == 404


def test_cancel_finished_run_is_harmless(client_for) -> None:
    client = client_for(FakeCommandRunner())
    body = client.post("/events", json={"kind": "push", "branch": "main", "repo_url": "file:///r"}).json()

    response = client.post(f"/runs/{body['run_id']}/cancel")
    assert response.status_code == 200
    assert response.json()["status"] == "succeeded"
