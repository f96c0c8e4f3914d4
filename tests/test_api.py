"""Tests for the submission and status API."""

import time

import pytest
from fastapi.testclient import TestClient

from planner.config import Settings
from planner.main import create_app
from planner.models.job import JobStatus
from planner.services.generation_client import GenerationAPIError
from planner.services.retry import RetryPolicy
from tests.conftest import PLAN_HTML, FakeGenerationClient

FAST_POLICY = RetryPolicy(initial_delay=0.0, max_delay=0.0, jitter=0.0, timeout_retry_delay=0.0)


@pytest.fixture
def generation_client():
    return FakeGenerationClient()


@pytest.fixture
def app(test_engine, generation_client):
    settings = Settings(RUN_MIGRATIONS=False, OPENAI_API_KEY="test-key", STALE_JOB_SECONDS=3600)
    return create_app(
        settings=settings,
        engine=test_engine,
        generation_client=generation_client,
        retry_policy=FAST_POLICY,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def wait_for_terminal(client, job_id, timeout=5.0):
    """Poll the status endpoint until the job is done or failed."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get("/jobs", params={"jobId": job_id}).json()
        if body["status"] in (JobStatus.DONE.value, JobStatus.ERROR.value):
            return body
        time.sleep(0.02)
    raise AssertionError(f"Job {job_id} did not finish within {timeout}s")


def test_submit_and_poll_until_done(client, generation_client):
    response = client.post("/jobs", json={"home_address": "1-1 Chiyoda, Tokyo"})

    assert response.status_code == 202
    accepted = response.json()
    job_id = accepted["jobId"]
    assert accepted["status"] == "accepted"
    assert accepted["checkRef"] == f"/jobs?jobId={job_id}"

    body = wait_for_terminal(client, job_id)

    assert body == {
        "jobId": job_id,
        "status": "done",
        "stage": 2,
        "error": None,
        "hasOutput": True,
        "metrics": {"attempts": 1},
    }
    assert generation_client.calls == 1


def test_raw_format_returns_html(client):
    job_id = client.post("/jobs", json={"home_address": "Yokohama"}).json()["jobId"]
    wait_for_terminal(client, job_id)

    response = client.get("/jobs", params={"jobId": job_id, "format": "raw"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    assert response.text == PLAN_HTML


@pytest.mark.parametrize(
    "generation_client",
    [FakeGenerationClient([GenerationAPIError("quota", status_code=429, code="insufficient_quota")])],
)
def test_failed_job_reports_structured_error(client, generation_client):
    job_id = client.post("/jobs", json={"home_address": "Yokohama"}).json()["jobId"]

    body = wait_for_terminal(client, job_id)

    assert body["status"] == "error"
    assert body["stage"] == 1
    assert body["hasOutput"] is False
    assert body["error"]["code"] == "QUOTA_EXHAUSTED"
    assert set(body["error"]) == {"code", "message", "occurred_at"}

    raw = client.get("/jobs", params={"jobId": job_id, "format": "raw"})
    assert raw.headers["content-type"].startswith("application/json")
    assert raw.json()["status"] == "error"


def test_submit_without_users_or_address(client, app, generation_client):
    response = client.post("/jobs", json={})

    assert response.status_code == 404
    assert app.state.job_store.count() == 0
    assert generation_client.calls == 0


def test_submit_with_user_missing_address(client, app):
    client.put("/users/user-1", json={"interests": ["zoo"]})

    response = client.post("/jobs", json={})

    assert response.status_code == 400
    assert response.json()["detail"] == "home_address is required"
    assert app.state.job_store.count() == 0


def test_submit_with_blank_address(client, app):
    client.put("/users/user-1", json={})

    response = client.post("/jobs", json={"home_address": "   "})

    assert response.status_code == 400
    assert app.state.job_store.count() == 0


def test_submit_resolves_user_profile(client, app, generation_client):
    client.put("/users/user-1", json={"home_address": "Kawasaki", "interests": ["aquarium"]})

    response = client.post("/jobs", json={"user_id": "user-1"})
    assert response.status_code == 202
    job_id = response.json()["jobId"]
    wait_for_terminal(client, job_id)

    job = app.state.job_store.get(job_id)
    assert job.input["user_id"] == "user-1"
    assert job.input["home_address"] == "Kawasaki"
    assert job.input["interests"] == ["aquarium"]
    assert "Kawasaki" in generation_client.requests[0].prompt


def test_submit_defaults_to_first_user(client, app):
    client.put("/users/first", json={"home_address": "Chiba"})
    client.put("/users/second", json={"home_address": "Saitama"})

    job_id = client.post("/jobs").json()["jobId"]

    job = app.state.job_store.get(job_id)
    assert job.input["user_id"] == "first"
    assert job.input["interests"] == ["family friendly", "toddlers"]


def test_submit_unknown_user(client, app):
    response = client.post("/jobs", json={"user_id": "nobody"})

    assert response.status_code == 404
    assert app.state.job_store.count() == 0


def test_submit_unknown_user_with_address(client, app):
    """Test that an explicit address is enough when the user has no profile."""
    response = client.post("/jobs", json={"user_id": "nobody", "home_address": "Nagoya"})

    assert response.status_code == 202
    job = app.state.job_store.get(response.json()["jobId"])
    assert job.input["user_id"] == "nobody"
    assert job.input["home_address"] == "Nagoya"
    assert job.input["interests"] == ["family friendly", "toddlers"]


def test_status_unknown_job(client):
    response = client.get("/jobs", params={"jobId": "does-not-exist"})

    assert response.status_code == 404
    assert response.json() == {"detail": "Job not found"}


def test_status_requires_job_id(client):
    assert client.get("/jobs").status_code == 400


def test_other_methods_not_allowed(client):
    assert client.delete("/jobs").status_code == 405


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "stale_jobs": 0}


def test_user_profile_roundtrip(client):
    assert client.get("/users/user-1").status_code == 404

    client.put("/users/user-1", json={"home_address": "Kobe", "interests": ["trains"]})
    client.put("/users/user-1", json={"interests": ["ferries"]})

    body = client.get("/users/user-1").json()
    assert body == {"user_id": "user-1", "home_address": "Kobe", "interests": ["ferries"]}


def test_shutdown_closes_generation_client(app, generation_client):
    with TestClient(app):
        pass

    assert generation_client.closed
