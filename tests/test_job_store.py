"""Tests for the job store."""

from datetime import timedelta

import pytest
from sqlalchemy import event, text

from planner.models.job import JobStatus
from planner.services.job_store import JobNotFound, JobStateError, JobStore, job_error


def test_create_pending_job(store, plan_input):
    """Test that a new job starts pending at stage 0."""
    job_id = store.create(plan_input)
    job = store.get(job_id)

    assert job.job_id == job_id
    assert job.status == JobStatus.PENDING.value
    assert job.stage == 0
    assert job.output is None
    assert job.error is None
    assert job.metrics == {"attempts": 0}
    assert job.input["home_address"] == plan_input.home_address
    assert job.input["date_from"] == "2026-10-17"
    assert job.updated_at == job.created_at


def test_create_assigns_unique_ids(store, plan_input):
    ids = {store.create(plan_input) for _ in range(5)}
    assert len(ids) == 5
    assert store.count() == 5


def test_get_unknown_job(store):
    with pytest.raises(JobNotFound):
        store.get("missing")


def test_update_merges_fields(store, plan_input):
    """Test that unspecified fields survive a partial update."""
    job_id = store.create(plan_input)
    store.update(job_id, status=JobStatus.RUNNING.value, stage=1)
    store.update(job_id, metrics={"attempts": 1})

    job = store.get(job_id)
    assert job.status == JobStatus.RUNNING.value
    assert job.stage == 1
    assert job.metrics == {"attempts": 1}
    assert job.input["interests"] == ["museums", "parks"]
    assert job.updated_at >= job.created_at


def test_update_merges_metrics_keywise(store, plan_input):
    job_id = store.create(plan_input)
    store.update(job_id, metrics={"calls": 3})

    assert store.get(job_id).metrics == {"attempts": 0, "calls": 3}


def test_update_stamps_updated_at(store, plan_input):
    job_id = store.create(plan_input)
    before = store.get(job_id).updated_at

    store.update(job_id, stage=1)

    assert store.get(job_id).updated_at >= before


def test_update_unknown_job(store):
    with pytest.raises(JobNotFound):
        store.update("missing", stage=1)


def test_update_rejects_unknown_fields(store, plan_input):
    job_id = store.create(plan_input)
    with pytest.raises(ValueError):
        store.update(job_id, input={"home_address": "elsewhere"})


def test_status_never_moves_backwards(store, plan_input):
    job_id = store.create(plan_input)
    store.update(job_id, status=JobStatus.RUNNING.value)

    with pytest.raises(JobStateError):
        store.update(job_id, status=JobStatus.PENDING.value)

    assert store.get(job_id).status == JobStatus.RUNNING.value


def test_terminal_job_is_immutable(store, plan_input):
    job_id = store.create(plan_input)
    store.update(job_id, status=JobStatus.RUNNING.value, stage=1)
    store.update(job_id, status=JobStatus.ERROR.value, error=job_error("INVALID_OUTPUT", "not html"))

    with pytest.raises(JobStateError):
        store.update(job_id, status=JobStatus.DONE.value, output="<html></html>")

    job = store.get(job_id)
    assert job.status == JobStatus.ERROR.value
    assert job.output is None
    assert job.error["code"] == "INVALID_OUTPUT"


def test_claim_only_once(store, plan_input):
    job_id = store.create(plan_input)

    assert store.claim(job_id) is True
    assert store.claim(job_id) is False

    job = store.get(job_id)
    assert job.status == JobStatus.RUNNING.value
    assert job.stage == 1


def test_claim_unknown_job(store):
    with pytest.raises(JobNotFound):
        store.claim("missing")


def test_list_stale(store, plan_input):
    pending_id = store.create(plan_input)
    done_id = store.create(plan_input)
    store.claim(done_id)
    store.update(done_id, status=JobStatus.DONE.value, stage=2, output="<html></html>")

    assert store.list_stale(timedelta(hours=1)) == []

    stale = store.list_stale(timedelta(seconds=-60))
    assert [job.job_id for job in stale] == [pending_id]


def test_creation_listeners(store, plan_input):
    seen = []
    store.subscribe(seen.append)

    job_id = store.create(plan_input)

    assert seen == [job_id]


def test_failing_listener_does_not_fail_create(session_factory, plan_input):
    store = JobStore(session_factory)

    def broken(job_id):
        raise RuntimeError("dispatch unavailable")

    store.subscribe(broken)
    job_id = store.create(plan_input)

    assert store.get(job_id).status == JobStatus.PENDING.value


@pytest.mark.parametrize("status", [JobStatus.DONE.value, JobStatus.ERROR.value])
def test_pending_job_cannot_finish_without_running(store, plan_input, status):
    """Test that a terminal status is only written to a running job."""
    job_id = store.create(plan_input)

    with pytest.raises(JobStateError):
        store.update(job_id, status=status, output="<html></html>")

    job = store.get(job_id)
    assert job.status == JobStatus.PENDING.value
    assert job.output is None


def test_concurrent_change_writes_nothing(store, plan_input, test_engine):
    """Test that an update racing another writer leaves no field changed."""
    job_id = store.create(plan_input)
    store.claim(job_id)
    before = store.get(job_id)
    fired = []

    def change_status_first(conn, cursor, statement, parameters, context, executemany):
        if fired or not statement.lstrip().upper().startswith("UPDATE JOBS"):
            return
        fired.append(statement)
        with test_engine.begin() as other:
            other.execute(
                text("UPDATE jobs SET status = 'error' WHERE job_id = :job_id"),
                {"job_id": job_id},
            )

    event.listen(test_engine, "before_cursor_execute", change_status_first)
    try:
        with pytest.raises(JobStateError):
            store.update(
                job_id,
                status=JobStatus.DONE.value,
                stage=2,
                output="<html></html>",
                metrics={"attempts": 1},
            )
    finally:
        event.remove(test_engine, "before_cursor_execute", change_status_first)

    assert fired
    job = store.get(job_id)
    assert job.status == JobStatus.ERROR.value
    assert job.stage == 1
    assert job.output is None
    assert job.metrics == {"attempts": 0}
    assert job.updated_at == before.updated_at
