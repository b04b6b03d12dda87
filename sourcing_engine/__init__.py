import os

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

from sourcing_engine.config import Config
from sourcing_engine.db import close_db, init_db
from sourcing_engine.db_migrations import register_db_cli
from sourcing_engine.errors import AppError, UnexpectedError
from sourcing_engine.observability import (
    configure_json_logging,
    ensure_request_id,
    mark_request_start,
    metrics_snapshot,
    observe_response,
)
from sourcing_engine.tenant import resolve_request_tenant


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)
    configure_json_logging(app)

    database_dir = app.config.get("DATABASE_DIR")
    if database_dir:
        os.makedirs(database_dir, exist_ok=True)

    _register_request_hooks(app)
    _register_error_handlers(app)
    _register_blueprints(app)
    _register_health(app)
    register_db_cli(app)
    _maybe_init_schema(app)

    app.teardown_appcontext(close_db)
    return app


def _maybe_init_schema(app: Flask) -> None:
    # Test databases are throwaway files; they get the schema without alembic.
    if not (app.testing or app.config.get("DB_AUTO_INIT", False)):
        return
    flask_env = (os.environ.get("FLASK_ENV") or "development").strip().lower()
    if not app.testing and flask_env != "development":
        app.logger.warning("db_auto_init_skipped", extra={"flask_env": flask_env})
        return
    with app.app_context():
        init_db()


def _register_blueprints(app: Flask) -> None:
    from sourcing_engine.routes.procurement_routes import procurement_bp

    app.register_blueprint(procurement_bp)


def _register_request_hooks(app: Flask) -> None:
    @app.before_request
    def _bind_request() -> None:
        ensure_request_id()
        mark_request_start()
        g.tenant_id = resolve_request_tenant()

    @app.after_request
    def _finish_request(response):
        response.headers["X-Request-Id"] = ensure_request_id()
        return observe_response(response)


def _register_error_handlers(app: Flask) -> None:
    def _respond(error: AppError):
        request_id = ensure_request_id()
        log_method = app.logger.error if error.critical else app.logger.warning
        log_method(
            "application_error",
            extra={
                "error_code": error.code,
                "http_status": error.http_status,
                "message_key": error.message_key,
                "details": error.details,
            },
            exc_info=error.critical,
        )
        return jsonify(error.to_response_payload(request_id)), error.http_status

    @app.errorhandler(AppError)
    def _handle_app_error(exc: AppError):
        return _respond(exc)

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc
        # Exception text goes to the log only; the caller sees the generic message.
        return _respond(UnexpectedError(details=f"{type(exc).__name__}: {exc}"))


def _register_health(app: Flask) -> None:
    @app.route("/health")
    def health():
        db_path = str(app.config.get("DB_PATH") or "")
        return {
            "status": "ok",
            "db": "postgres" if db_path.startswith("postgres") else "sqlite",
            "env": app.config.get("ENV", "unknown"),
            "metrics": metrics_snapshot(),
        }, 200
