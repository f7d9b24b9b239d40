import os

import pytest

from replay_pipeline.errors import PersistenceError
from replay_pipeline.models.job import COMPLETED, FAILED, PROCESSING, QUEUED
from replay_pipeline.services.processor import OUTCOME_ABORTED
from replay_pipeline.supervisors.retention import RetentionSupervisor


@pytest.fixture()
def retention(ctx):
    return ctx.retention_supervisor()


def _processing_job(store, path="/data/a.replay"):
    job_id = store.create(path, task_id=f"t-{path}")
    store.transition(job_id, QUEUED, PROCESSING, owner=f"t-{path}")
    return job_id


def _completed_job(store, tmp_path, name):
    source = tmp_path / f"{name}.replay"
    source.write_bytes(b"replay")
    result = tmp_path / f"{name}.json"
    result.write_text("{}")
    job_id = store.create(str(source))
    store.transition(job_id, QUEUED, PROCESSING)
    store.transition(job_id, PROCESSING, COMPLETED, {"result_path": str(result)})
    return job_id, source, result


# ---------------------------
# Orphan sweep
# ---------------------------

def test_scenario_c_stuck_job_fails_with_timeout(retention, store, clock):
    job_id = _processing_job(store)
    clock.advance(hours=2)

    result = retention.orphan_sweep()

    assert (result.examined, result.recovered) == (1, 1)
    job = store.get(job_id)
    assert job.status == FAILED
    assert job.error_kind == "timeout"
    assert "timed out" in job.error_message
    assert "60 minutes" in job.error_message


def test_orphan_sweep_is_idempotent(retention, store, clock):
    job_id = _processing_job(store)
    clock.advance(hours=2)

    first = retention.orphan_sweep()
    failed_at = store.get(job_id).updated_at
    clock.advance(hours=2)
    second = retention.orphan_sweep()

    assert first.recovered == 1
    assert (second.examined, second.recovered) == (0, 0)
    assert store.get(job_id).updated_at == failed_at


def test_orphan_sweep_leaves_recent_and_other_states_alone(retention, store, clock):
    old_queued = store.create("/data/q.replay")
    clock.advance(hours=2)
    recent = _processing_job(store, "/data/recent.replay")
    clock.advance(minutes=30)

    result = retention.orphan_sweep()

    assert result.recovered == 0
    assert store.get(recent).status == PROCESSING
    assert store.get(old_queued).status == QUEUED


def test_orphan_sweep_skips_job_completed_meanwhile(retention, store, clock, monkeypatch):
    job_id = _processing_job(store)
    clock.advance(hours=2)

    real_find = store.find_stale

    def find_then_worker_completes(status, older_than):
        jobs = real_find(status, older_than)
        store.transition(job_id, PROCESSING, COMPLETED, {"result_path": "/r.json"})
        return jobs

    monkeypatch.setattr(store, "find_stale", find_then_worker_completes)
    result = retention.orphan_sweep()

    assert (result.examined, result.recovered) == (1, 0)
    assert store.get(job_id).status == COMPLETED


def test_short_threshold_is_reported_in_seconds(store, clock):
    retention = RetentionSupervisor(store, clock, orphan_threshold_seconds=30)
    job_id = _processing_job(store)
    clock.advance(minutes=1)

    retention.orphan_sweep()

    assert "more than 30 seconds" in store.get(job_id).error_message


# ---------------------------
# Stale queued sweep
# ---------------------------

def test_claim_lost_to_database_outage_is_failed_by_queued_sweep(ctx, retention, store, clock, replay_file, monkeypatch):
    job_id = store.create(replay_file, task_id="task-1")

    def database_down(*args, **kwargs):
        raise PersistenceError("Database error: connection refused")

    monkeypatch.setattr(store, "transition", database_down)
    outcome = ctx.processor.run_attempt(job_id, replay_file, owner="task-1", attempt=2, max_retries=2)
    monkeypatch.undo()

    assert outcome.outcome == OUTCOME_ABORTED
    assert store.get(job_id).status == QUEUED
    # the orphan sweep only looks at processing rows
    clock.advance(days=3)
    assert retention.orphan_sweep().examined == 0

    result = retention.stale_queued_sweep()

    assert (result.examined, result.recovered) == (1, 1)
    job = store.get(job_id)
    assert job.status == FAILED
    assert job.error_kind == "persistence"
    assert "never started" in job.error_message


def test_queued_sweep_leaves_backlog_alone(retention, store, clock):
    job_id = store.create("/data/waiting.replay")
    clock.advance(hours=2)

    result = retention.stale_queued_sweep()

    assert (result.examined, result.recovered) == (0, 0)
    assert store.get(job_id).status == QUEUED


def test_queued_sweep_skips_job_claimed_meanwhile(retention, store, clock, monkeypatch):
    job_id = store.create("/data/late.replay", task_id="task-1")
    clock.advance(days=2)

    real_find = store.find_stale

    def find_then_worker_claims(status, older_than):
        jobs = real_find(status, older_than)
        store.transition(job_id, QUEUED, PROCESSING, owner="task-1")
        return jobs

    monkeypatch.setattr(store, "find_stale", find_then_worker_claims)
    result = retention.stale_queued_sweep()

    assert (result.examined, result.recovered) == (1, 0)
    assert store.get(job_id).status == PROCESSING


# ---------------------------
# Expiry sweep
# ---------------------------

def test_expiry_deletes_old_completed_jobs_and_files(retention, store, clock, tmp_path):
    job_id, source, result_file = _completed_job(store, tmp_path, "old")
    clock.advance(days=31)

    result = retention.expiry_sweep()

    assert result.rows_deleted == 1
    assert result.files.deleted == 2
    assert result.files.failed == 0
    assert store.get(job_id) is None
    assert not source.exists()
    assert not result_file.exists()


def test_expiry_only_touches_completed_jobs_past_retention(retention, store, clock, tmp_path):
    queued = store.create("/data/q.replay")
    processing = _processing_job(store, "/data/p.replay")
    failed = store.create("/data/f.replay")
    store.transition(failed, QUEUED, FAILED, {"error_message": "bad input", "error_kind": "input"})
    clock.advance(days=10)
    young_id, young_source, _ = _completed_job(store, tmp_path, "young")
    clock.advance(days=90)
    recent_id, _, _ = _completed_job(store, tmp_path, "recent")

    result = retention.expiry_sweep()

    assert result.rows_deleted == 1
    assert store.get(young_id) is None
    assert not young_source.exists()
    for job_id in (queued, processing, failed, recent_id):
        assert store.get(job_id) is not None


def test_expiry_counts_missing_and_failed_file_deletions(retention, store, clock, tmp_path, monkeypatch):
    gone_id, gone_source, gone_result = _completed_job(store, tmp_path, "gone")
    stuck_id, stuck_source, stuck_result = _completed_job(store, tmp_path, "stuck")
    os.unlink(gone_result)
    clock.advance(days=31)

    real_unlink = os.unlink

    def unlink(path):
        if path == str(stuck_source):
            raise PermissionError(13, "Permission denied")
        return real_unlink(path)

    monkeypatch.setattr("replay_pipeline.services.storage.os.unlink", unlink)
    result = retention.expiry_sweep()

    assert result.rows_deleted == 2
    assert (result.files.deleted, result.files.missing, result.files.failed) == (2, 1, 1)
    assert store.get(gone_id) is None and store.get(stuck_id) is None
    assert stuck_source.exists()
    assert not stuck_result.exists()


def test_expiry_sweep_rerun_is_noop(retention, store, clock, tmp_path):
    _completed_job(store, tmp_path, "old")
    clock.advance(days=31)
    retention.expiry_sweep()

    again = retention.expiry_sweep()

    assert (again.examined, again.rows_deleted, again.files.deleted) == (0, 0, 0)
