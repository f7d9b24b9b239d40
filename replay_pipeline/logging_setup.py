import logging
import json
import time
from flask import has_request_context, request

# los health checks llegan cada pocos minutos; sus logs de request son ruido
QUIET_PATHS = ("/healthz", "/health")

# claves de extra=... que se copian a la línea JSON si están presentes
CONTEXT_FIELDS = ("job_id", "task_id", "attempt", "dependency", "sweep")


class JsonRequestFormatter(logging.Formatter):
    def format(self, record):
        if has_request_context() and request.path in QUIET_PATHS:
            return ""

        data = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                data[field] = value

        if has_request_context():
            data.update({
                "method": request.method,
                "path": request.path,
                "remote_addr": request.headers.get("X-Forwarded-For", request.remote_addr),
                "request_id": request.headers.get("X-Request-ID"),
            })

        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(data, ensure_ascii=False, default=str)


def setup_logging(app=None, level=logging.INFO):
    root = logging.getLogger()
    root.setLevel(level)

    # limpia handlers duplicados en reload
    for h in list(root.handlers):
        root.removeHandler(h)

    h = logging.StreamHandler()
    h.setFormatter(JsonRequestFormatter())
    root.addHandler(h)

    if app:
        # app.logger es "replay_pipeline", padre de todos los loggers del paquete:
        # sin handler propio, sus records llegan una sola vez al handler de root
        app.logger.handlers = []
        app.logger.propagate = True
        app.logger.setLevel(level)
