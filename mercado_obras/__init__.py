import os

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from mercado_obras.config import Config
from mercado_obras.db import close_db, init_db
from mercado_obras.db_migrations import register_db_cli
from mercado_obras.integrations.mailer import mail
from mercado_obras.observability import (
    configure_json_logging,
    ensure_request_id,
    mark_request_start,
    metrics_snapshot,
    observe_response,
)
from mercado_obras.policies import register_identity


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)
    configure_json_logging(app)

    _ensure_database_dir(app)
    _register_error_handlers(app)
    register_identity(app)
    mail.init_app(app)
    _register_blueprints(app)
    _register_health(app)
    _register_chat_feeds(app)
    register_db_cli(app)
    _maybe_init_schema(app)

    _register_scheduler(app)
    app.teardown_appcontext(close_db)
    return app


def _ensure_database_dir(app: Flask) -> None:
    for key in ("DATABASE_DIR", "UPLOAD_DIR"):
        directory = app.config.get(key)
        if directory:
            os.makedirs(directory, exist_ok=True)


def _maybe_init_schema(app: Flask) -> None:
    auto_init = bool(app.config.get("DB_AUTO_INIT", False))
    if app.testing:
        # Testes criam o schema direto, sem depender de migration externa.
        auto_init = True
    if not auto_init:
        return

    flask_env = (os.environ.get("FLASK_ENV", "development") or "development").strip().lower()
    if not app.testing and flask_env != "development":
        app.logger.warning("DB_AUTO_INIT ignorado fora de development.")
        return

    with app.app_context():
        init_db()


def _register_blueprints(app: Flask) -> None:
    from mercado_obras.routes.chat_routes import chat_bp
    from mercado_obras.routes.order_routes import order_bp
    from mercado_obras.routes.quotation_routes import quotation_bp

    app.register_blueprint(quotation_bp)
    app.register_blueprint(order_bp)
    app.register_blueprint(chat_bp)


def _register_chat_feeds(app: Flask) -> None:
    from mercado_obras.application.chat_service import RoomFeeds
    from mercado_obras.core import get_event_bus

    app.extensions["chat_feeds"] = RoomFeeds().register_event_handlers(get_event_bus())


def _register_scheduler(app: Flask) -> None:
    from mercado_obras.scheduler import start_expiry_scheduler

    start_expiry_scheduler(app)


def _register_error_handlers(app: Flask) -> None:
    from mercado_obras.errors import AppError, SystemError

    @app.before_request
    def _ensure_request_id() -> None:
        ensure_request_id()
        mark_request_start()

    @app.after_request
    def _append_request_id(response):
        response.headers["X-Request-Id"] = ensure_request_id()
        return observe_response(response)

    def _log_error(error: AppError, request_id: str) -> None:
        log_method = app.logger.error if error.critical else app.logger.warning
        log_method(
            "application_error",
            extra={
                "request_id": request_id,
                "error_code": error.code,
                "http_status": error.http_status,
                "message_key": error.message_key,
                "details": error.details,
                "request_path": request.path,
                "http_method": request.method,
            },
            exc_info=error.critical,
        )

    @app.errorhandler(AppError)
    def _handle_app_error(exc: AppError):
        request_id = ensure_request_id()
        _log_error(exc, request_id)
        return jsonify(exc.to_response_payload(request_id)), exc.http_status

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc

        request_id = ensure_request_id()
        mapped = SystemError(
            code="unexpected_error",
            message_key="unexpected_error",
            http_status=500,
            critical=True,
            details=str(exc),
        )
        app.logger.exception(
            "unexpected_exception",
            extra={
                "request_id": request_id,
                "error_code": mapped.code,
                "request_path": request.path,
                "http_method": request.method,
            },
        )
        return jsonify(mapped.to_response_payload(request_id)), mapped.http_status


def _register_health(app: Flask) -> None:
    @app.route("/health")
    def health():
        db_path = app.config.get("DB_PATH") or "unknown"
        backend = "postgres" if str(db_path).startswith("postgres") else "sqlite"
        return {
            "status": "ok",
            "db": backend,
            "metrics": metrics_snapshot(),
        }, 200
