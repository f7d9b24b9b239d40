# replay_pipeline/config.py
import os


def _int(name: str, default: int) -> int:
    return int(os.environ.get(name, default))


def _float(name: str, default: float) -> float:
    return float(os.environ.get(name, default))


class BaseConfig:
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL", "redis://redis:6379/0")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND", "redis://redis:6379/0")
    CELERY_TASK_ALWAYS_EAGER = False
    REDIS_URL = os.environ.get("REDIS_URL", CELERY_BROKER_URL)

    # --- DB ---
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", "postgresql+psycopg2://app_user:app_pass@db:5432/app_db"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # connect and pool checkout give up instead of hanging on a dead database
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_timeout": _int("DB_POOL_TIMEOUT_SECONDS", 10),
        "connect_args": {"connect_timeout": _int("DB_CONNECT_TIMEOUT_SECONDS", 5)},
    }
    JSON_SORT_KEYS = False

    # --- Parser service ---
    PARSER_URL = os.environ.get("PARSER_URL", "http://parser:5000")
    PARSER_TIMEOUT_SECONDS = _float("PARSER_TIMEOUT_SECONDS", 60)

    # --- Worker pool ---
    WORKER_CONCURRENCY = _int("WORKER_CONCURRENCY", 5)
    RATE_LIMIT_MAX = _int("RATE_LIMIT_MAX", 10)
    RATE_LIMIT_WINDOW_SECONDS = _int("RATE_LIMIT_WINDOW_SECONDS", 60)
    MAX_RETRIES = _int("MAX_RETRIES", 2)
    RETRY_BACKOFF_SECONDS = _int("RETRY_BACKOFF_SECONDS", 5)
    RETRY_BACKOFF_MAX_SECONDS = _int("RETRY_BACKOFF_MAX_SECONDS", 300)

    # --- Storage ---
    RESULTS_DIR = os.environ.get("RESULTS_DIR", "/app/results")
    UPLOAD_DIR = os.environ.get("UPLOAD_DIR", "/app/data/replays")
    MAX_CONTENT_LENGTH = _int("MAX_CONTENT_LENGTH", 500 * 1024 * 1024)

    # --- Supervisors ---
    RETENTION_DAYS = _int("RETENTION_DAYS", 30)
    ORPHAN_THRESHOLD_SECONDS = _int("ORPHAN_THRESHOLD_SECONDS", 3600)
    # queued rows no worker ever claimed (claim lost to a database outage)
    STALE_QUEUED_THRESHOLD_SECONDS = _int("STALE_QUEUED_THRESHOLD_SECONDS", 86400)
    EXPIRY_INTERVAL_SECONDS = _int("EXPIRY_INTERVAL_SECONDS", 86400)
    ORPHAN_INTERVAL_SECONDS = _int("ORPHAN_INTERVAL_SECONDS", 3600)
    HEALTH_INTERVAL_SECONDS = _int("HEALTH_INTERVAL_SECONDS", 300)
    HEALTH_TIMEOUT_SECONDS = _float("HEALTH_TIMEOUT_SECONDS", 5)
    # "name=url,name=url"; the parser service is always probed
    HEALTH_HTTP_SERVICES = os.environ.get("HEALTH_HTTP_SERVICES", "")
    ALERT_WEBHOOK_URL = os.environ.get("ALERT_WEBHOOK_URL", "")


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    ENV = "development"


class ProductionConfig(BaseConfig):
    DEBUG = False
    ENV = "production"


class TestingConfig(BaseConfig):
    TESTING = True
    ENV = "testing"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    CELERY_BROKER_URL = "memory://"
    CELERY_RESULT_BACKEND = "cache+memory://"
    CELERY_TASK_ALWAYS_EAGER = True
    REDIS_URL = "redis://localhost:6379/15"
    PARSER_URL = "http://parser.test"
    RESULTS_DIR = os.path.join(os.getcwd(), ".test-results")
    UPLOAD_DIR = os.path.join(os.getcwd(), ".test-uploads")
    RETRY_BACKOFF_SECONDS = 0


CONFIG_MAP = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}


def parse_http_services(raw: str) -> dict:
    """Parse ``"api=http://api:4000,cdn=http://cdn"`` into ``{name: url}``."""
    services = {}
    for chunk in (raw or "").split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        name, sep, url = chunk.partition("=")
        if not sep or not name.strip() or not url.strip():
            raise ValueError(f"Invalid HEALTH_HTTP_SERVICES entry: {chunk!r}")
        services[name.strip()] = url.strip().rstrip("/")
    return services
