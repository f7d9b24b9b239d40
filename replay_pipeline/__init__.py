from flask import Flask
from flasgger import Swagger
from prometheus_client import CollectorRegistry
from prometheus_flask_exporter import PrometheusMetrics
from flask_cors import CORS
import os

from .logging_setup import setup_logging
from .config import CONFIG_MAP, DevelopmentConfig


def create_app(config_name: str = "development", config_overrides=None, **context_kwargs):
    """
    Crea la app Flask y el ServiceContext que es dueño de todas las conexiones.

    ``context_kwargs`` pasan directo a ``ServiceContext`` (clock, redis_client,
    http_session); así los tests inyectan fakes.
    """
    app = Flask(__name__)
    app.config.from_object(CONFIG_MAP.get(config_name.lower(), DevelopmentConfig))
    if config_overrides:
        app.config.update(config_overrides)

    setup_logging(app)

    # CORS_ORIGINS no seteada o '*' -> todos los orígenes; si no, lista separada por comas
    cors_origin = os.getenv("CORS_ORIGINS", "*").strip()
    cors_common_kwargs = dict(
        supports_credentials=False,
        methods=["GET", "POST", "OPTIONS", "HEAD"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With", "Accept", "Origin"],
    )
    if cors_origin == "*" or cors_origin == "":
        CORS(app, resources={r"/*": {"origins": "*"}}, **cors_common_kwargs)
    else:
        origins_list = [o.strip() for o in cors_origin.split(",") if o.strip()]
        CORS(app, resources={r"/*": {"origins": origins_list}}, **cors_common_kwargs)

    from .models import init_app as init_models
    init_models(app)

    swagger_template = {
        "swagger": "2.0",
        "info": {
            "title": "Replay Analysis API",
            "description": "Upload replays for asynchronous analysis and poll job status.",
            "version": "1.0.0",
        },
        "basePath": "/",
    }
    swagger_config = {
        "headers": [],
        "specs": [
            {
                "endpoint": "apispec_1",
                "route": "/apispec_1.json",
                "rule_filter": lambda rule: True,
                "model_filter": lambda tag: True,
            }
        ],
        "static_url_path": "/flasgger_static",
        "swagger_ui": True,
        "specs_route": "/apidocs/",
    }
    Swagger(app, template=swagger_template, config=swagger_config)

    from .routes import analysis_routes, health
    app.register_blueprint(analysis_routes.bp, url_prefix="/api")
    app.register_blueprint(health.bp)

    # los tests crean muchas apps; cada una con su propio registry
    registry = CollectorRegistry(auto_describe=True) if app.testing else None
    metrics = PrometheusMetrics(app, path="/metrics", registry=registry)
    metrics.info("app_info", "Replay analysis pipeline", version="1.0.0")

    from .context import ServiceContext
    ServiceContext(app, **context_kwargs)

    return app
