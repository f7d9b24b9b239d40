# replay_pipeline/tasks/analysis_tasks.py
from celery import shared_task

from replay_pipeline.services.job_queue import PROCESS_TASK_NAME
from replay_pipeline.services.processor import OUTCOME_RETRY
from replay_pipeline.tasks.celery_app import retry_countdown


@shared_task(bind=True, name=PROCESS_TASK_NAME, acks_late=True)
def process_replay(self, job_id: int, file_path: str):
    """
    Analyze one uploaded replay: parser call, heuristics, heatmap, artifact.

    The processor records every outcome on the job row; the only thing left
    to the task is asking the broker for a delayed redelivery on transient
    errors.
    """
    ctx = self.app.service_context
    cfg = ctx.app.config
    max_retries = cfg["MAX_RETRIES"]

    result = ctx.processor.run_attempt(
        job_id,
        file_path,
        owner=self.request.id,
        attempt=self.request.retries,
        max_retries=max_retries,
    )

    if result.outcome == OUTCOME_RETRY:
        countdown = retry_countdown(
            self.request.retries,
            cfg["RETRY_BACKOFF_SECONDS"],
            cfg["RETRY_BACKOFF_MAX_SECONDS"],
        )
        raise self.retry(exc=result.error, countdown=countdown, max_retries=max_retries)

    return {"job_id": job_id, "outcome": result.outcome, "result_path": result.result_path}
