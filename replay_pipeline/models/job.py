from replay_pipeline.clock import utcnow
from replay_pipeline.models import db

QUEUED = "queued"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"

STATUSES = (QUEUED, PROCESSING, COMPLETED, FAILED)
TERMINAL_STATUSES = (COMPLETED, FAILED)


class AnalysisJob(db.Model):
    __tablename__ = "analysis_jobs"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.String(50), index=True, unique=True, nullable=True)   # owner of "processing"
    status = db.Column(db.String(20), nullable=False, default=QUEUED, index=True)
    file_path = db.Column(db.Text, nullable=False)
    player_id = db.Column(db.String(255), nullable=True)
    params = db.Column(db.JSON, nullable=True)

    result_path = db.Column(db.Text, nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    error_kind = db.Column(db.String(20), nullable=True)    # transient|timeout|input|internal
    attempts = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    __table_args__ = (
        db.Index("ix_analysis_jobs_status_updated_at", "status", "updated_at"),
    )
