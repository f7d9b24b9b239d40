# Celery entrypoint:
#   celery -A worker.celery worker --loglevel=INFO
# Concurrency, prefetch and rate limit come from the Flask config.
import os

from celery.signals import worker_shutdown

from replay_pipeline import create_app
from replay_pipeline.context import ServiceContext

context = ServiceContext.of(create_app(os.getenv("FLASK_ENV", "production")))
celery = context.celery


@worker_shutdown.connect
def _close_connections(**_):
    context.close()
