# replay_pipeline/services/job_store.py
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select, text, update
from sqlalchemy.exc import SQLAlchemyError

from replay_pipeline.clock import SystemClock
from replay_pipeline.errors import PersistenceError
from replay_pipeline.models import db
from replay_pipeline.models.job import (
    AnalysisJob,
    COMPLETED,
    FAILED,
    PROCESSING,
    QUEUED,
    STATUSES,
)

logger = logging.getLogger(__name__)

# (expected, new). processing -> processing is the owner's heartbeat on
# retry/redelivery; nothing ever leaves completed or failed.
ALLOWED_TRANSITIONS = frozenset({
    (QUEUED, PROCESSING),
    (QUEUED, FAILED),
    (PROCESSING, PROCESSING),
    (PROCESSING, COMPLETED),
    (PROCESSING, FAILED),
})

TRANSITION_FIELDS = frozenset({"result_path", "error_message", "error_kind"})


@dataclass(frozen=True)
class JobRecord:
    id: int
    task_id: Optional[str]
    status: str
    file_path: str
    player_id: Optional[str]
    params: Optional[Dict[str, Any]]
    result_path: Optional[str]
    error_message: Optional[str]
    error_kind: Optional[str]
    attempts: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, job: AnalysisJob) -> "JobRecord":
        return cls(
            id=job.id,
            task_id=job.task_id,
            status=job.status,
            file_path=job.file_path,
            player_id=job.player_id,
            params=job.params,
            result_path=job.result_path,
            error_message=job.error_message,
            error_kind=job.error_kind,
            attempts=job.attempts or 0,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class JobStore:
    """
    Canonical record of the job lifecycle.

    Every status change goes through ``transition``, a compare-and-set UPDATE
    that only applies when the row still has the status the caller expects
    (and, for workers, is still owned by the caller's task id). Each operation
    runs in its own app context, so its session is discarded afterwards and
    the next read hits the database instead of a stale identity map.
    """

    def __init__(self, app, clock=None):
        self._app = app
        self._clock = clock or SystemClock()

    @contextmanager
    def _session(self):
        with self._app.app_context():
            try:
                yield db.session
            except SQLAlchemyError as e:
                db.session.rollback()
                raise PersistenceError(f"Database error: {e}") from e

    def create(
        self,
        file_path: str,
        player_id: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        task_id: Optional[str] = None,
    ) -> int:
        now = self._clock.now()
        job = AnalysisJob(
            status=QUEUED,
            file_path=file_path,
            player_id=player_id,
            params=params,
            task_id=task_id,
            attempts=0,
            created_at=now,
            updated_at=now,
        )
        with self._session() as session:
            session.add(job)
            session.commit()
            job_id = job.id
        logger.info("Job created", extra={"job_id": job_id, "task_id": task_id})
        return job_id

    def transition(
        self,
        job_id: int,
        expected_status: str,
        new_status: str,
        fields: Optional[Dict[str, Any]] = None,
        owner: Optional[str] = None,
    ) -> bool:
        """
        Move ``job_id`` from ``expected_status`` to ``new_status``.

        Returns False without writing anything when the row is missing, its
        status differs from ``expected_status``, or ``owner`` is given and the
        row belongs to another task. Raises ValueError for transitions that
        the lifecycle never allows.
        """
        if (expected_status, new_status) not in ALLOWED_TRANSITIONS:
            raise ValueError(f"Illegal transition {expected_status} -> {new_status}")

        values = dict(fields or {})
        unknown = set(values) - TRANSITION_FIELDS
        if unknown:
            raise ValueError(f"Fields not writable through a transition: {sorted(unknown)}")
        if new_status == FAILED and not values.get("error_message"):
            raise ValueError("A failed job needs an error_message")
        if new_status == COMPLETED and not values.get("result_path"):
            raise ValueError("A completed job needs a result_path")

        values["status"] = new_status
        values["updated_at"] = self._clock.now()
        if new_status == PROCESSING:
            values["attempts"] = AnalysisJob.attempts + 1

        stmt = update(AnalysisJob).where(
            AnalysisJob.id == job_id,
            AnalysisJob.status == expected_status,
        )
        if owner is not None:
            stmt = stmt.where(AnalysisJob.task_id == owner)
        stmt = stmt.values(**values).execution_options(synchronize_session=False)

        with self._session() as session:
            result = session.execute(stmt)
            session.commit()
            applied = result.rowcount == 1

        if applied:
            logger.info(
                f"Job {expected_status} -> {new_status}",
                extra={"job_id": job_id, "task_id": owner},
            )
        else:
            logger.debug(
                f"Guarded transition {expected_status} -> {new_status} not applied",
                extra={"job_id": job_id, "task_id": owner},
            )
        return applied

    def get(self, job_id: int) -> Optional[JobRecord]:
        with self._session() as session:
            job = session.get(AnalysisJob, job_id, populate_existing=True)
            return JobRecord.from_model(job) if job else None

    def list_jobs(self, limit: int = 100) -> List[JobRecord]:
        stmt = select(AnalysisJob).order_by(AnalysisJob.created_at.desc(), AnalysisJob.id.desc()).limit(limit)
        with self._session() as session:
            return [JobRecord.from_model(j) for j in session.scalars(stmt)]

    def find_stale(self, status: str, older_than: datetime) -> List[JobRecord]:
        if status not in STATUSES:
            raise ValueError(f"Unknown status {status!r}")
        stmt = (
            select(AnalysisJob)
            .where(AnalysisJob.status == status, AnalysisJob.updated_at < older_than)
            .order_by(AnalysisJob.updated_at)
        )
        with self._session() as session:
            return [JobRecord.from_model(j) for j in session.scalars(stmt)]

    def delete_if(self, job_id: int, expected_status: str) -> bool:
        """Guarded delete: removes the row only while it still has ``expected_status``."""
        stmt = (
            delete(AnalysisJob)
            .where(AnalysisJob.id == job_id, AnalysisJob.status == expected_status)
            .execution_options(synchronize_session=False)
        )
        with self._session() as session:
            result = session.execute(stmt)
            session.commit()
            return result.rowcount == 1

    def ping(self, timeout: Optional[float] = None) -> None:
        """``SELECT 1`` roundtrip; on Postgres the server cancels it after ``timeout`` seconds."""
        with self._session() as session:
            if timeout and session.get_bind().dialect.name == "postgresql":
                session.execute(text(f"SET LOCAL statement_timeout = {int(timeout * 1000)}"))
            session.execute(select(1))
            session.rollback()
