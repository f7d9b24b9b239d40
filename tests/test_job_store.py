from datetime import timedelta

import pytest

from replay_pipeline.models.job import COMPLETED, FAILED, PROCESSING, QUEUED


def test_create_and_get(store, clock):
    job_id = store.create("/data/a.replay", player_id="p1", params={"k": "v"}, task_id="t-1")
    job = store.get(job_id)
    assert job.status == QUEUED
    assert job.file_path == "/data/a.replay"
    assert job.player_id == "p1"
    assert job.params == {"k": "v"}
    assert job.task_id == "t-1"
    assert job.attempts == 0
    assert job.created_at == clock.now()
    assert job.result_path is None and job.error_message is None


def test_get_unknown_returns_none(store):
    assert store.get(9999) is None


def test_full_lifecycle(store, clock):
    job_id = store.create("/data/a.replay", task_id="t-1")
    clock.advance(seconds=5)
    assert store.transition(job_id, QUEUED, PROCESSING, owner="t-1") is True
    job = store.get(job_id)
    assert job.status == PROCESSING
    assert job.attempts == 1
    assert job.updated_at == clock.now()

    assert store.transition(job_id, PROCESSING, COMPLETED, {"result_path": "/r/1.json"}, owner="t-1")
    job = store.get(job_id)
    assert job.status == COMPLETED
    assert job.result_path == "/r/1.json"


def test_guard_rejects_wrong_expected_status(store):
    job_id = store.create("/data/a.replay")
    assert store.transition(job_id, PROCESSING, COMPLETED, {"result_path": "/r.json"}) is False
    assert store.get(job_id).status == QUEUED


def test_guard_rejects_other_owner(store):
    job_id = store.create("/data/a.replay", task_id="mine")
    assert store.transition(job_id, QUEUED, PROCESSING, owner="someone-else") is False
    assert store.get(job_id).status == QUEUED
    assert store.get(job_id).attempts == 0


@pytest.mark.parametrize("expected,new", [
    (COMPLETED, PROCESSING),
    (FAILED, PROCESSING),
    (COMPLETED, FAILED),
    (FAILED, COMPLETED),
    (PROCESSING, QUEUED),
    (QUEUED, COMPLETED),
])
def test_illegal_transitions_raise(store, expected, new):
    job_id = store.create("/data/a.replay")
    with pytest.raises(ValueError):
        store.transition(job_id, expected, new, {"result_path": "/x", "error_message": "x"})
    assert store.get(job_id).status == QUEUED


def test_terminal_state_is_final(store):
    job_id = store.create("/data/a.replay", task_id="t")
    store.transition(job_id, QUEUED, PROCESSING, owner="t")
    store.transition(job_id, PROCESSING, FAILED, {"error_message": "boom", "error_kind": "input"}, owner="t")

    # a late worker heartbeat or completion is a no-op
    assert store.transition(job_id, PROCESSING, PROCESSING, owner="t") is False
    assert store.transition(job_id, PROCESSING, COMPLETED, {"result_path": "/r.json"}, owner="t") is False
    job = store.get(job_id)
    assert job.status == FAILED
    assert job.error_message == "boom"
    assert job.error_kind == "input"


def test_failed_requires_message(store):
    job_id = store.create("/data/a.replay")
    with pytest.raises(ValueError):
        store.transition(job_id, QUEUED, FAILED)


def test_completed_requires_result_path(store):
    job_id = store.create("/data/a.replay")
    store.transition(job_id, QUEUED, PROCESSING)
    with pytest.raises(ValueError):
        store.transition(job_id, PROCESSING, COMPLETED)


def test_unknown_fields_rejected(store):
    job_id = store.create("/data/a.replay")
    with pytest.raises(ValueError):
        store.transition(job_id, QUEUED, PROCESSING, {"status": COMPLETED})


def test_heartbeat_counts_attempts(store):
    job_id = store.create("/data/a.replay", task_id="t")
    store.transition(job_id, QUEUED, PROCESSING, owner="t")
    store.transition(job_id, PROCESSING, PROCESSING, owner="t")
    assert store.get(job_id).attempts == 2


def test_find_stale_and_delete_if(store, clock):
    old = store.create("/data/old.replay")
    store.transition(old, QUEUED, PROCESSING)
    clock.advance(hours=2)
    fresh = store.create("/data/fresh.replay")
    store.transition(fresh, QUEUED, PROCESSING)

    stale = store.find_stale(PROCESSING, clock.now() - timedelta(hours=1))
    assert [j.id for j in stale] == [old]

    assert store.delete_if(old, COMPLETED) is False
    assert store.get(old) is not None
    assert store.delete_if(old, PROCESSING) is True
    assert store.get(old) is None


def test_list_jobs_newest_first(store, clock):
    first = store.create("/data/1.replay")
    clock.advance(seconds=1)
    second = store.create("/data/2.replay")
    assert [j.id for j in store.list_jobs()] == [second, first]
