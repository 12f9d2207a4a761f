"""Lab agenda package exposing the Flask application factory."""

from __future__ import annotations

import os
from pathlib import Path

from flask import Flask, jsonify
from flask_wtf.csrf import CSRFError
from werkzeug.exceptions import HTTPException

from .blueprints import register_blueprints
from .cli import register_cli
from .extensions import init_extensions
from .services.audit import init_audit
from .services.bootstrap import ensure_base_tables
from .services.errors import AgendaError, record_exception
from .services.migrations import auto_upgrade

APP_HOST = "127.0.0.1"
APP_PORT = 8080


def _data_root(base_dir: Path, override: Path | None = None) -> Path:
    root = override if override else base_dir / "data"
    root.mkdir(parents=True, exist_ok=True)
    (root / "logs").mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def create_app() -> Flask:
    base_dir = Path(__file__).resolve().parent.parent
    db_override = os.getenv("LAB_DB_PATH")
    override_root = Path(db_override).parent if db_override else None
    data_root = _data_root(base_dir, override_root)
    db_path = Path(db_override) if db_override else data_root / "app.db"

    app = Flask(__name__)

    secret_key = os.getenv("LAB_SECRET_KEY")
    if not secret_key:
        secret_key = os.urandom(32)

    app.config.update(
        SECRET_KEY=secret_key,
        SESSION_COOKIE_NAME="lab_agenda_session",
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE="Lax",
        SQLALCHEMY_DATABASE_URI=f"sqlite:///{db_path}",
        SQLALCHEMY_ENGINE_OPTIONS={"connect_args": {"check_same_thread": False}},
        RATELIMIT_STORAGE_URI=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
        RATELIMIT_ENABLED=_env_flag("RATELIMIT_ENABLED", "1"),
        DATA_ROOT=str(data_root),
        LAB_DB_PATH=str(db_path),
        AGENDA_TX_TIMEOUT_SECONDS=float(os.getenv("AGENDA_TX_TIMEOUT_SECONDS", "10")),
        AGENDA_CREATE_RETRIES=int(os.getenv("AGENDA_CREATE_RETRIES", "3")),
        AGENDA_MAX_SLOTS_PER_CALL=int(os.getenv("AGENDA_MAX_SLOTS_PER_CALL", "5000")),
        AGENDA_DEFAULT_CAPACITY=int(os.getenv("AGENDA_DEFAULT_CAPACITY", "5")),
        AGENDA_DEFAULT_STEP_MINUTES=int(os.getenv("AGENDA_DEFAULT_STEP_MINUTES", "30")),
        AGENDA_AUTO_PROVISION_CATALOG=_env_flag("AGENDA_AUTO_PROVISION_CATALOG"),
        AGENDA_BOOKING_RATE_LIMIT=os.getenv("AGENDA_BOOKING_RATE_LIMIT", "30 per minute"),
    )

    init_extensions(app)
    register_blueprints(app)
    auto_upgrade(app)
    ensure_base_tables(Path(app.config["LAB_DB_PATH"]))
    init_audit(app)
    register_cli(app)

    @app.errorhandler(AgendaError)
    def handle_agenda_error(exc: AgendaError):
        return jsonify(exc.to_dict()), exc.http_status

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        app.logger.info("CSRF validation failed: %s", e.description)
        return jsonify({"success": False, "error": "csrf_failed", "message": e.description}), 400

    @app.errorhandler(400)
    def handle_bad_request(e):
        return jsonify({"success": False, "error": "bad_request", "message": e.description}), 400

    @app.errorhandler(429)
    def handle_rate_limited(e):
        return jsonify({"success": False, "error": "rate_limited", "message": e.description}), 429

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc
        record_exception("request", exc)
        app.logger.exception("Unhandled error")
        return jsonify({"success": False, "error": "internal_error"}), 500

    return app


__all__ = ["create_app", "APP_HOST", "APP_PORT"]
