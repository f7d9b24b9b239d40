# replay_pipeline/context.py
import logging
from datetime import timedelta

import redis

from replay_pipeline.clock import SystemClock
from replay_pipeline.config import parse_http_services
from replay_pipeline.models import db
from replay_pipeline.services.alerts import make_alert_sink
from replay_pipeline.services.job_queue import JobQueue
from replay_pipeline.services.job_store import JobStore
from replay_pipeline.services.parser_client import ParserClient
from replay_pipeline.services.processor import JobProcessor
from replay_pipeline.services.storage import ResultStorage
from replay_pipeline.supervisors import (
    HealthSupervisor,
    PeriodicTicker,
    RetentionSupervisor,
    Scheduler,
)
from replay_pipeline.supervisors.health import DatabaseProbe, HttpProbe, RedisProbe
from replay_pipeline.tasks.celery_app import make_celery

logger = logging.getLogger(__name__)

EXTENSION_KEY = "replay_pipeline"


class ServiceContext:
    """
    Every shared handle of one process: Flask app (and through it the
    SQLAlchemy engine), Redis client, Celery app, job store, clock.

    Built once at startup by ``create_app`` and handed to the HTTP routes
    (``app.extensions``), the Celery tasks (``celery.service_context``) and the
    supervisors. ``close()`` releases the connections on shutdown.
    """

    def __init__(self, app, clock=None, redis_client=None, http_session=None):
        cfg = app.config
        self.app = app
        self.clock = clock or SystemClock()
        self.store = JobStore(app, self.clock)
        self.storage = ResultStorage(cfg["RESULTS_DIR"])
        self.parser = ParserClient(cfg["PARSER_URL"], cfg["PARSER_TIMEOUT_SECONDS"], session=http_session)
        self.processor = JobProcessor(self.store, self.parser, self.storage)
        self.redis = redis_client or redis.Redis.from_url(
            cfg["REDIS_URL"],
            socket_timeout=cfg["HEALTH_TIMEOUT_SECONDS"],
            socket_connect_timeout=cfg["HEALTH_TIMEOUT_SECONDS"],
        )
        self.alerts = make_alert_sink(cfg["ALERT_WEBHOOK_URL"], timeout=cfg["HEALTH_TIMEOUT_SECONDS"])

        self.celery = make_celery(app)
        self.celery.service_context = self
        self.queue = JobQueue(self.store, self.celery)

        self._http_session = http_session
        self._health_supervisors = []
        app.extensions[EXTENSION_KEY] = self

    @classmethod
    def of(cls, app) -> "ServiceContext":
        return app.extensions[EXTENSION_KEY]

    # ---------------------------
    # Supervisors
    # ---------------------------

    def health_supervisor(self) -> HealthSupervisor:
        cfg = self.app.config
        probes = [HttpProbe("parser", cfg["PARSER_URL"], session=self._http_session)]
        for name, url in parse_http_services(cfg["HEALTH_HTTP_SERVICES"]).items():
            probes.append(HttpProbe(name, url, session=self._http_session))
        probes.append(RedisProbe(self.redis))
        probes.append(DatabaseProbe(self.store))
        supervisor = HealthSupervisor(probes, self.alerts, timeout=cfg["HEALTH_TIMEOUT_SECONDS"])
        self._health_supervisors.append(supervisor)
        return supervisor

    def retention_supervisor(self) -> RetentionSupervisor:
        cfg = self.app.config
        return RetentionSupervisor(
            self.store,
            clock=self.clock,
            retention_days=cfg["RETENTION_DAYS"],
            orphan_threshold_seconds=cfg["ORPHAN_THRESHOLD_SECONDS"],
            queued_threshold_seconds=cfg["STALE_QUEUED_THRESHOLD_SECONDS"],
        )

    def scheduler(self) -> Scheduler:
        cfg = self.app.config
        health = self.health_supervisor()
        retention = self.retention_supervisor()
        tickers = [
            PeriodicTicker("health", timedelta(seconds=cfg["HEALTH_INTERVAL_SECONDS"]),
                           health.run_cycle, self.clock, run_immediately=True),
            PeriodicTicker("orphan_sweep", timedelta(seconds=cfg["ORPHAN_INTERVAL_SECONDS"]),
                           retention.orphan_sweep, self.clock, run_immediately=True),
            PeriodicTicker("queued_sweep", timedelta(seconds=cfg["ORPHAN_INTERVAL_SECONDS"]),
                           retention.stale_queued_sweep, self.clock, run_immediately=True),
            PeriodicTicker("expiry_sweep", timedelta(seconds=cfg["EXPIRY_INTERVAL_SECONDS"]),
                           retention.expiry_sweep, self.clock),
        ]
        return Scheduler(tickers, self.clock)

    def close(self):
        logger.info("Closing service connections")
        for supervisor in self._health_supervisors:
            supervisor.close()
        self.parser.close()
        self.redis.close()
        self.celery.close()
        with self.app.app_context():
            db.session.remove()
            db.engine.dispose()
