# replay_pipeline/supervisors/retention.py
import logging
from dataclasses import dataclass, field
from datetime import timedelta

from replay_pipeline.clock import SystemClock
from replay_pipeline.errors import AnalysisTimeoutError, PersistenceError
from replay_pipeline.metrics import SWEEP_ITEMS
from replay_pipeline.models.job import COMPLETED, FAILED, PROCESSING, QUEUED
from replay_pipeline.services.storage import DELETED, MISSING, delete_file

logger = logging.getLogger(__name__)


@dataclass
class DeletionTally:
    deleted: int = 0
    missing: int = 0
    failed: int = 0

    def record(self, outcome: str):
        if outcome == DELETED:
            self.deleted += 1
        elif outcome == MISSING:
            self.missing += 1
        else:
            self.failed += 1


@dataclass
class ExpiryResult:
    examined: int = 0
    rows_deleted: int = 0
    files: DeletionTally = field(default_factory=DeletionTally)


def describe_threshold(threshold: timedelta) -> str:
    seconds = int(threshold.total_seconds())
    if seconds < 60:
        return f"{seconds} seconds"
    return f"{seconds // 60} minutes"


@dataclass
class OrphanResult:
    examined: int = 0
    recovered: int = 0


class RetentionSupervisor:
    """
    Sweeps over the job table:

    * ``expiry_sweep`` removes completed jobs (row, result artifact, source
      replay) once they are older than the retention window;
    * ``orphan_sweep`` fails jobs stuck in processing longer than the
      threshold, which is what a crashed or killed worker leaves behind;
    * ``stale_queued_sweep`` fails jobs that never left queued, e.g. a
      delivery that gave up because the database was down during its claim.

    They only write through the store's guarded operations, so they can
    overlap each other and running workers: a job that changed status since
    it was selected is skipped.
    """

    def __init__(
        self,
        store,
        clock=None,
        retention_days: int = 30,
        orphan_threshold_seconds: int = 3600,
        queued_threshold_seconds: int = 86400,
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.retention = timedelta(days=retention_days)
        self.orphan_threshold = timedelta(seconds=orphan_threshold_seconds)
        self.queued_threshold = timedelta(seconds=queued_threshold_seconds)

    def expiry_sweep(self) -> ExpiryResult:
        cutoff = self.clock.now() - self.retention
        logger.info(f"Running cleanup (completed jobs older than {self.retention.days} days)...", extra={"sweep": "expiry"})

        result = ExpiryResult()
        for job in self.store.find_stale(COMPLETED, cutoff):
            result.examined += 1
            if not self.store.delete_if(job.id, COMPLETED):
                continue
            result.rows_deleted += 1

            for path in (job.result_path, job.file_path):
                try:
                    outcome = delete_file(path)
                except OSError as e:
                    logger.warning(f"Failed to delete file {path}: {e}", extra={"job_id": job.id, "sweep": "expiry"})
                    outcome = "failed"
                result.files.record(outcome)

        SWEEP_ITEMS.labels(sweep="expiry", result="rows_deleted").inc(result.rows_deleted)
        SWEEP_ITEMS.labels(sweep="expiry", result="files_deleted").inc(result.files.deleted)
        SWEEP_ITEMS.labels(sweep="expiry", result="files_failed").inc(result.files.failed)
        logger.info(
            f"Cleanup complete: deleted {result.rows_deleted} jobs and {result.files.deleted} files "
            f"({result.files.failed} file deletions failed)",
            extra={"sweep": "expiry"},
        )
        return result

    def orphan_sweep(self) -> OrphanResult:
        cutoff = self.clock.now() - self.orphan_threshold
        message = f"Job timed out (stuck in processing for more than {describe_threshold(self.orphan_threshold)})"

        result = OrphanResult()
        for job in self.store.find_stale(PROCESSING, cutoff):
            result.examined += 1
            applied = self.store.transition(
                job.id, PROCESSING, FAILED,
                {"error_message": message, "error_kind": AnalysisTimeoutError.kind},
            )
            if applied:
                result.recovered += 1
                logger.warning("Orphaned job marked as failed", extra={"job_id": job.id, "sweep": "orphan"})

        SWEEP_ITEMS.labels(sweep="orphan", result="recovered").inc(result.recovered)
        if result.recovered:
            logger.info(f"Cleaned up {result.recovered} orphaned jobs", extra={"sweep": "orphan"})
        return result

    def stale_queued_sweep(self) -> OrphanResult:
        cutoff = self.clock.now() - self.queued_threshold
        message = f"Job never started (queued for more than {describe_threshold(self.queued_threshold)})"

        result = OrphanResult()
        for job in self.store.find_stale(QUEUED, cutoff):
            result.examined += 1
            applied = self.store.transition(
                job.id, QUEUED, FAILED,
                {"error_message": message, "error_kind": PersistenceError.kind},
            )
            if applied:
                result.recovered += 1
                logger.warning("Stale queued job marked as failed", extra={"job_id": job.id, "sweep": "queued"})

        SWEEP_ITEMS.labels(sweep="queued", result="recovered").inc(result.recovered)
        if result.recovered:
            logger.info(f"Failed {result.recovered} jobs that never left the queue", extra={"sweep": "queued"})
        return result
