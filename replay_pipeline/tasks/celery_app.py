import logging
from celery import Celery, Task

from replay_pipeline.services.job_queue import PROCESS_TASK_NAME

logger = logging.getLogger(__name__)

# únicos sufijos de ventana que celery entiende de forma nativa
_WINDOW_SUFFIX = {1: "s", 60: "m", 3600: "h"}


def rate_limit_expr(max_tasks: int, window_seconds: int) -> str:
    """
    Rate limit de Celery para ``max_tasks`` cada ``window_seconds``.
    Ventanas distintas de 1s/1m/1h se expresan como tasa fraccional por segundo.
    """
    if max_tasks <= 0 or window_seconds <= 0:
        raise ValueError("rate limit needs a positive count and window")
    suffix = _WINDOW_SUFFIX.get(window_seconds)
    if suffix:
        return f"{max_tasks}/{suffix}"
    return f"{max_tasks / window_seconds:.6f}/s"


def retry_countdown(retries: int, base: int, cap: int) -> int:
    """Backoff exponencial: base, 2*base, 4*base ... con tope de ``cap`` segundos."""
    return min(cap, base * (2 ** retries))


def make_celery(flask_app) -> Celery:
    """
    Crea la instancia de Celery a partir de la config de Flask.

    Cada task corre dentro del app context de Flask. Concurrency, prefetch y
    acks tardíos hacen del pool de workers el punto de contrapresión: como
    máximo WORKER_CONCURRENCY jobs en vuelo por worker y el resto espera en el
    broker. Una task cuyo worker muere se vuelve a entregar.
    """
    cfg = flask_app.config

    class ContextTask(Task):
        def __call__(self, *args, **kwargs):
            with flask_app.app_context():
                return super().__call__(*args, **kwargs)

    celery_app = Celery("replay_pipeline", task_cls=ContextTask)
    celery_app.conf.update(
        broker_url=cfg["CELERY_BROKER_URL"],
        result_backend=cfg["CELERY_RESULT_BACKEND"],
        task_ignore_result=False,
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,
        worker_concurrency=cfg["WORKER_CONCURRENCY"],
        worker_prefetch_multiplier=1,
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        task_always_eager=cfg.get("CELERY_TASK_ALWAYS_EAGER", False),
        broker_connection_retry_on_startup=True,
        task_annotations={
            PROCESS_TASK_NAME: {
                "rate_limit": rate_limit_expr(cfg["RATE_LIMIT_MAX"], cfg["RATE_LIMIT_WINDOW_SECONDS"]),
                "max_retries": cfg["MAX_RETRIES"],
            },
        },
    )

    # registra las tasks en esta app
    from replay_pipeline.tasks import analysis_tasks  # noqa: F401

    logger.info(
        f"Celery configured: broker={cfg['CELERY_BROKER_URL']} "
        f"concurrency={cfg['WORKER_CONCURRENCY']} "
        f"rate_limit={celery_app.conf.task_annotations[PROCESS_TASK_NAME]['rate_limit']}"
    )
    return celery_app
