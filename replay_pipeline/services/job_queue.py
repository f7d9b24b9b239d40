# replay_pipeline/services/job_queue.py
import uuid
import logging
from typing import Any, Dict, Optional, Tuple

from kombu.exceptions import OperationalError

from replay_pipeline.errors import PersistenceError
from replay_pipeline.models.job import FAILED, QUEUED

logger = logging.getLogger(__name__)

PROCESS_TASK_NAME = "analysis.process_replay"


def new_task_id() -> str:
    return str(uuid.uuid4())


class JobQueue:
    """Submission side of the pipeline: persists the job row, then hands it to Celery."""

    def __init__(self, store, celery_app):
        self.store = store
        self.celery = celery_app

    def enqueue(self, job_id: int, file_path: str, task_id: Optional[str] = None) -> str:
        """
        Fire-and-forget delivery of an already persisted job. ``task_id`` must
        be the one stored on the row, it is how the worker proves ownership.
        """
        task_id = task_id or new_task_id()
        task = self.celery.tasks[PROCESS_TASK_NAME]
        try:
            task.apply_async(args=[job_id, file_path], task_id=task_id)
        except OperationalError as e:
            raise PersistenceError(f"Broker unavailable: {e}") from e
        logger.info("Job enqueued", extra={"job_id": job_id, "task_id": task_id})
        return task_id

    def submit(
        self,
        file_path: str,
        player_id: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Tuple[int, str]:
        task_id = new_task_id()
        job_id = self.store.create(file_path, player_id=player_id, params=params, task_id=task_id)
        try:
            self.enqueue(job_id, file_path, task_id)
        except PersistenceError as e:
            # never leave a row queued that no worker will ever see
            self.store.transition(
                job_id, QUEUED, FAILED,
                {"error_message": f"Could not enqueue job: {e}", "error_kind": "persistence"},
            )
            raise
        return job_id, task_id
