# replay_pipeline/services/processor.py
import os
import time
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from replay_pipeline.errors import (
    PermanentInputError,
    PersistenceError,
    PipelineError,
    TransientDependencyError,
)
from replay_pipeline.metrics import JOB_DURATION, JOBS_TOTAL
from replay_pipeline.models.job import COMPLETED, FAILED, PROCESSING, QUEUED
from replay_pipeline.services.heatmap import DEFAULT_GRID_SIZE, generate_heatmap
from replay_pipeline.services.heuristics import run_heuristics
from replay_pipeline.services.storage import delete_file

logger = logging.getLogger(__name__)

# attempt outcomes
OUTCOME_COMPLETED = COMPLETED
OUTCOME_FAILED = FAILED
OUTCOME_RETRY = "retry"        # transient error, the queue should redeliver
OUTCOME_SKIPPED = "skipped"    # job terminal or owned by another task
OUTCOME_ABORTED = "aborted"    # state store unreachable and retries exhausted


@dataclass
class AttemptResult:
    outcome: str
    result_path: Optional[str] = None
    error: Optional[BaseException] = None


class JobProcessor:
    """
    Runs one delivery of an analysis task.

    ``run_attempt`` never raises: every error is classified, recorded on the
    job row when that is the right thing to do, and reported through the
    returned ``AttemptResult`` so the task wrapper only has to decide whether
    to ask the queue for a retry.
    """

    def __init__(self, store, parser, storage, rules=None, grid_size: int = DEFAULT_GRID_SIZE):
        self.store = store
        self.parser = parser
        self.storage = storage
        self.rules = rules
        self.grid_size = grid_size

    def run_attempt(
        self,
        job_id: int,
        file_path: str,
        owner: str,
        attempt: int = 0,
        max_retries: int = 0,
    ) -> AttemptResult:
        extra = {"job_id": job_id, "task_id": owner, "attempt": attempt}
        started = time.monotonic()
        retries_left = attempt < max_retries

        try:
            result = self._process(job_id, file_path, owner)
        except TransientDependencyError as e:
            if retries_left:
                logger.warning(f"Transient failure, will retry: {e}", extra=extra)
                result = AttemptResult(OUTCOME_RETRY, error=e)
            else:
                msg = f"{e} (gave up after {attempt + 1} attempts)"
                result = self._fail(job_id, owner, e.kind, msg, e)
        except PermanentInputError as e:
            result = self._fail(job_id, owner, e.kind, str(e), e)
        except PersistenceError as e:
            if retries_left:
                logger.error(f"State store unavailable, will retry: {e}", extra=extra)
                result = AttemptResult(OUTCOME_RETRY, error=e)
            else:
                logger.error(f"State store unavailable, giving up on this delivery: {e}", extra=extra)
                result = AttemptResult(OUTCOME_ABORTED, error=e)
        except Exception as e:
            logger.exception("Unexpected error while processing job", extra=extra)
            kind = e.kind if isinstance(e, PipelineError) else "internal"
            result = self._fail(job_id, owner, kind, f"Internal error: {e}", e)

        elapsed = time.monotonic() - started
        JOBS_TOTAL.labels(outcome=result.outcome).inc()
        JOB_DURATION.labels(outcome=result.outcome).observe(elapsed)

        if result.outcome == OUTCOME_COMPLETED:
            logger.info(f"Job completed in {elapsed:.2f}s -> {result.result_path}", extra=extra)
        elif result.outcome == OUTCOME_FAILED:
            logger.error(f"Job failed: {result.error}", extra=extra)
        return result

    def enrich(self, telemetry: Dict[str, Any]) -> Dict[str, Any]:
        payload = dict(telemetry)
        payload["heuristics"] = run_heuristics(telemetry, self.rules)
        payload["heatmap"] = generate_heatmap(telemetry.get("timeline") or [], self.grid_size)
        return payload

    # ---------------------------
    # Internals
    # ---------------------------

    def _claim(self, job_id: int, owner: str) -> bool:
        if self.store.transition(job_id, QUEUED, PROCESSING, owner=owner):
            return True
        # redelivery or retry of our own task: refresh the heartbeat
        return self.store.transition(job_id, PROCESSING, PROCESSING, owner=owner)

    def _process(self, job_id: int, file_path: str, owner: str) -> AttemptResult:
        if not self._claim(job_id, owner):
            logger.info("Job not claimable, skipping", extra={"job_id": job_id, "task_id": owner})
            return AttemptResult(OUTCOME_SKIPPED)

        if not file_path or not os.path.isfile(file_path):
            raise PermanentInputError(f"Replay file not found: {file_path}")

        telemetry = self.parser.parse(file_path)
        payload = self.enrich(telemetry)
        path = self.storage.write(job_id, payload)

        if not self.store.transition(job_id, PROCESSING, COMPLETED, {"result_path": path}, owner=owner):
            # the orphan sweep got there first; the row says failed, drop the artifact
            logger.warning("Job no longer processing, discarding result", extra={"job_id": job_id})
            try:
                delete_file(path)
            except OSError as e:
                logger.warning(f"Could not remove discarded result {path}: {e}", extra={"job_id": job_id})
            return AttemptResult(OUTCOME_SKIPPED)

        return AttemptResult(OUTCOME_COMPLETED, result_path=path)

    def _fail(self, job_id: int, owner: str, kind: str, message: str, error: BaseException) -> AttemptResult:
        fields = {"error_message": message, "error_kind": kind}
        try:
            applied = self.store.transition(job_id, PROCESSING, FAILED, fields, owner=owner)
        except PersistenceError as e:
            logger.error(f"Could not record failure: {e}", extra={"job_id": job_id, "task_id": owner})
            return AttemptResult(OUTCOME_ABORTED, error=error)
        if not applied:
            return AttemptResult(OUTCOME_SKIPPED, error=error)
        return AttemptResult(OUTCOME_FAILED, error=error)
