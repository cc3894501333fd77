"""Schema gateway application factory."""
import atexit
from pathlib import Path
from typing import Any, Dict

import requests
from flask import Flask, g, jsonify
from flask_cors import CORS
from requests.adapters import HTTPAdapter
from werkzeug.exceptions import HTTPException

from .config import (
    ConfigResolver,
    ConfigStore,
    create_config_store,
    seed_config_store,
)
from .middleware.logging import setup_request_logging
from .observability import (
    configure_metrics,
    configure_structured_logging,
    configure_tracing,
)
from .transformations import TransformationEngine
from .utils.config import (
    EnvironmentSettings,
    load_environment_settings,
    log_configuration_snapshot,
    parse_bool,
    split_env_list,
)
from .utils.responses import error_response

_VERSION_HEADERS = ["API-Version", "X-API-Version"]


def _configure_http_session(app: Flask) -> requests.Session:
    """Initialise a pooled HTTP session for upstream calls."""

    session = requests.Session()
    adapter = HTTPAdapter(
        pool_connections=int(app.config.get("PROXY_POOL_CONNECTIONS", 10)),
        pool_maxsize=int(app.config.get("PROXY_POOL_MAXSIZE", 10)),
    )
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    app.extensions["http_session"] = session
    return session


def _configure_pipeline(app: Flask, store: ConfigStore | None) -> None:
    """Wire the configuration store, resolver and transformation engine."""

    if store is None:
        store = create_config_store(app.config, logger=app.logger)
        seed_config_store(
            store,
            config_key=app.config["CONFIG_STORE_KEY"],
            document_path=app.config["TRANSFORMATIONS_FILE"] or None,
            expressions_dir=app.config["TRANSFORMATIONS_DIR"] or None,
            logger=app.logger,
        )
    app.extensions["config_store"] = store

    app.extensions["config_resolver"] = ConfigResolver(
        store,
        logger=app.logger,
        ttl_seconds=app.config["CACHE_TTL_SECONDS"],
        config_key=app.config["CONFIG_STORE_KEY"],
    )

    engine = TransformationEngine(
        logger=app.logger,
        cache_size=app.config["EXPRESSION_CACHE_SIZE"],
        default_timeout_ms=app.config["TRANSFORMATION_TIMEOUT_MS"],
        max_workers=app.config["TRANSFORMATION_WORKERS"],
    )
    app.extensions["transformation_engine"] = engine
    atexit.register(engine.shutdown)


def _register_health_endpoint(app: Flask) -> None:
    @app.route("/health")
    def health():
        resolver: ConfigResolver = app.extensions["config_resolver"]
        engine: TransformationEngine = app.extensions["transformation_engine"]
        config = resolver.load_config()

        payload: Dict[str, Any] = {
            "service": "schema-gateway",
            "status": "ok" if app.config.get("UPSTREAM_API") else "degraded",
            "configuration": {
                "source": resolver.source,
                "schemaVersion": config.schema_version,
                "defaultVersion": config.default_version,
                "upstreamVersion": config.upstream_version,
                "versions": list(config.transformations),
            },
            "expressionCache": engine.cache_stats(),
            "upstreamConfigured": bool(app.config.get("UPSTREAM_API")),
        }
        return jsonify(payload), 200


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(HTTPException)
    def http_error_handler(error: HTTPException):
        """Return JSON envelopes for Werkzeug HTTP exceptions."""

        status_code = error.code or 500
        return error_response(
            status_code,
            error.name or "Error",
            error.description or "",
            api_version=getattr(g, "api_version", None),
        )

    @app.errorhandler(requests.RequestException)
    def upstream_error_handler(error: requests.RequestException):
        app.logger.error(
            "Upstream request failed: %s",
            error,
            extra={"request_id": getattr(g, "request_id", None)},
        )
        return error_response(
            502,
            "Bad gateway",
            "The upstream service could not be reached",
            api_version=getattr(g, "api_version", None),
        )

    @app.errorhandler(Exception)
    def generic_error_handler(error: Exception):  # noqa: D401 - brief message sufficient
        """Return a JSON envelope for unexpected errors."""

        app.logger.exception(
            "Unhandled error",
            exc_info=error,
            extra={"request_id": getattr(g, "request_id", None)},
        )
        return error_response(
            500,
            "Internal server error",
            "An unexpected error occurred",
            api_version=getattr(g, "api_version", None),
        )


def create_app(*, config_store: ConfigStore | None = None) -> Flask:
    """Create and configure the Flask application.

    Args:
        config_store: Store to read transformation configuration from. When
            omitted the store selected by ``CONFIG_STORE_BACKEND`` is created
            and seeded from ``TRANSFORMATIONS_FILE``/``TRANSFORMATIONS_DIR``.
    """

    project_root = Path(__file__).resolve().parent.parent
    settings: EnvironmentSettings = load_environment_settings(project_root=project_root)
    app = Flask(__name__)

    app.config["APP_ENV"] = settings.name
    app.config["CONFIG_ENV_FILES"] = settings.loaded_files
    app.config["UPSTREAM_API"] = settings.get("UPSTREAM_API", "") or ""
    app.config["LOG_LEVEL"] = (settings.get("LOG_LEVEL", "INFO") or "INFO").upper()
    app.config["LOGGER_NAME"] = settings.get("LOGGER_NAME", "schema_gateway") or "schema_gateway"
    app.config["TRANSFORMATION_TIMEOUT_MS"] = settings.get_float("TRANSFORMATION_TIMEOUT_MS", 50.0)
    app.config["TRANSFORMATION_WORKERS"] = settings.get_int("TRANSFORMATION_WORKERS", 4)
    app.config["EXPRESSION_CACHE_SIZE"] = settings.get_int("EXPRESSION_CACHE_SIZE", 100)
    app.config["CACHE_TTL_SECONDS"] = settings.get_float("CACHE_TTL_SECONDS", 3600.0)
    app.config["CONFIG_STORE_BACKEND"] = settings.get("CONFIG_STORE_BACKEND", "memory") or "memory"
    app.config["CONFIG_STORE_REDIS_URL"] = settings.get("CONFIG_STORE_REDIS_URL", "") or ""
    app.config["CONFIG_STORE_NAMESPACE"] = (
        settings.get("CONFIG_STORE_NAMESPACE", "schema-gateway") or "schema-gateway"
    )
    app.config["CONFIG_STORE_KEY"] = settings.get("CONFIG_STORE_KEY", "config:main") or "config:main"
    app.config["TRANSFORMATIONS_FILE"] = settings.get("TRANSFORMATIONS_FILE", "") or ""
    app.config["TRANSFORMATIONS_DIR"] = settings.get("TRANSFORMATIONS_DIR", "") or ""
    app.config["PROXY_TIMEOUT_CONNECT"] = settings.get_float("PROXY_TIMEOUT_CONNECT", 2.0)
    app.config["PROXY_TIMEOUT_READ"] = settings.get_float("PROXY_TIMEOUT_READ", 10.0)
    app.config["PROXY_POOL_CONNECTIONS"] = settings.get_int("PROXY_POOL_CONNECTIONS", 10)
    app.config["PROXY_POOL_MAXSIZE"] = settings.get_int("PROXY_POOL_MAXSIZE", 10)
    app.config["PROXY_STREAM_CHUNK_SIZE"] = settings.get_int("PROXY_STREAM_CHUNK_SIZE", 65536)
    app.config["CORS_ORIGINS"] = tuple(split_env_list(settings.get("CORS_ORIGINS", "")))
    app.config["OTEL_EXPORTER"] = settings.get("OTEL_EXPORTER", "none") or "none"
    app.config["OTEL_EXPORTER_OTLP_ENDPOINT"] = settings.get("OTEL_EXPORTER_OTLP_ENDPOINT", "") or ""
    app.config["OTEL_EXPORTER_OTLP_HEADERS"] = settings.get("OTEL_EXPORTER_OTLP_HEADERS", "") or ""
    app.config["OTEL_USE_SIMPLE_PROCESSOR"] = parse_bool(settings.get("OTEL_USE_SIMPLE_PROCESSOR"))
    app.config["APP_PORT"] = int(settings.get("APP_PORT") or settings.get("PORT") or "8787")

    configure_structured_logging(app)
    configure_metrics(app)
    setup_request_logging(app)

    log_configuration_snapshot(
        logger=app.logger,
        settings=settings,
        config=app.config,
        keys_of_interest=[
            "APP_ENV",
            "CONFIG_ENV_FILES",
            "UPSTREAM_API",
            "LOG_LEVEL",
            "TRANSFORMATION_TIMEOUT_MS",
            "TRANSFORMATION_WORKERS",
            "EXPRESSION_CACHE_SIZE",
            "CACHE_TTL_SECONDS",
            "CONFIG_STORE_BACKEND",
            "CONFIG_STORE_REDIS_URL",
            "CONFIG_STORE_KEY",
            "TRANSFORMATIONS_FILE",
            "TRANSFORMATIONS_DIR",
            "PROXY_TIMEOUT_CONNECT",
            "PROXY_TIMEOUT_READ",
        ],
    )

    origins = list(app.config["CORS_ORIGINS"])
    CORS(
        app,
        origins=origins or "*",
        allow_headers=["Content-Type", "Authorization", "X-Request-ID", *_VERSION_HEADERS],
        expose_headers=["X-Request-ID", "X-API-Version", "X-Upstream-Version"],
        max_age=86400,
    )

    _configure_pipeline(app, config_store)
    session = _configure_http_session(app)
    atexit.register(session.close)

    _register_health_endpoint(app)
    _register_error_handlers(app)
    configure_tracing(app)

    from .routes import register_proxy_blueprint

    register_proxy_blueprint(app)
    return app


if __name__ == "__main__":
    application = create_app()
    application.run(host="0.0.0.0", port=int(application.config.get("APP_PORT", 8787)))
