# replay_pipeline/metrics.py
from prometheus_client import Counter, Gauge, Histogram

JOBS_TOTAL = Counter(
    "replay_jobs_total",
    "Analysis jobs finished by the worker pool",
    ["outcome"],  # completed|failed|retried|skipped
)

JOB_DURATION = Histogram(
    "replay_job_duration_seconds",
    "Wall time of one processing attempt",
    ["outcome"],
)

SWEEP_ITEMS = Counter(
    "replay_sweep_items_total",
    "Rows and files touched by the retention supervisor",
    ["sweep", "result"],
)

DEPENDENCY_UP = Gauge(
    "replay_dependency_up",
    "1 when the last health probe succeeded, 0 otherwise",
    ["dependency"],
)

HEALTH_ALERTS = Counter(
    "replay_health_alerts_total",
    "Alerts sent by the health supervisor",
)
