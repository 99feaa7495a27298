"""
Module: clerva/app.py
Unified comment style: module docstring + minimal inline notes.
"""
from __future__ import annotations
import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from dotenv import find_dotenv, load_dotenv
from flask import Flask, g, jsonify, request
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from werkzeug.exceptions import HTTPException

from clerva import __version__
from clerva.utils.db import init_engine_session
from clerva.utils.error_logger import configure_logging, log_exception
from clerva.utils.errors import APIError
from clerva.routes.routes_admin_ai import bp as admin_ai_bp
from clerva.routes.routes_admin_analytics import bp as admin_analytics_bp
from clerva.routes.routes_admin_announcements import bp as admin_announcements_bp
from clerva.routes.routes_admin_audit import bp as admin_audit_bp
from clerva.routes.routes_admin_feedback import bp as admin_feedback_bp
from clerva.routes.routes_admin_flagged import bp as admin_flagged_bp
from clerva.routes.routes_admin_reports import bp as admin_reports_bp
from clerva.routes.routes_admin_settings import bp as admin_settings_bp
from clerva.routes.routes_admin_users import bp as admin_users_bp
from clerva.routes.routes_announcements import bp as announcements_bp
from clerva.routes.routes_feedback import bp as feedback_bp
from clerva.routes.routes_groups import bp as groups_bp
from clerva.routes.routes_partners import bp as partners_bp
from clerva.routes.routes_reports import bp as reports_bp
from clerva.routes.routes_status import bp as status_bp

logger = logging.getLogger(__name__)

BLUEPRINTS = (
    status_bp,
    announcements_bp,
    reports_bp,
    feedback_bp,
    partners_bp,
    groups_bp,
    admin_announcements_bp,
    admin_audit_bp,
    admin_reports_bp,
    admin_feedback_bp,
    admin_flagged_bp,
    admin_analytics_bp,
    admin_ai_bp,
    admin_settings_bp,
    admin_users_bp,
)

DEFAULT_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


def _load_env() -> None:
    dotenv_path = os.environ.get("DOTENV_PATH")
    if dotenv_path and os.path.exists(dotenv_path):
        load_dotenv(dotenv_path)
    else:
        load_dotenv(find_dotenv(usecwd=True))


def _env_flag(name: str, default: str = "1") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _base_config() -> Dict[str, Any]:
    secret_key = os.getenv("SECRET_KEY")
    if not secret_key or secret_key == "dev":
        if os.getenv("FLASK_ENV") == "production":
            raise ValueError("生產環境必須設定 SECRET_KEY 環境變數")
        secret_key = "dev-only-key-not-for-production"

    audience = os.getenv("SUPABASE_JWT_AUDIENCE", "authenticated")
    origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()]
    return {
        "SECRET_KEY": secret_key,
        # Supabase 簽發的 access token（HS256，sub = users.id）
        "JWT_SECRET_KEY": os.getenv("SUPABASE_JWT_SECRET") or os.getenv("JWT_SECRET_KEY", "devkey"),
        "JWT_DECODE_AUDIENCE": audience,
        "JWT_ENCODE_AUDIENCE": audience,
        "JWT_TOKEN_LOCATION": ["headers"],
        "DATABASE_URL": os.getenv("DATABASE_URL") or None,
        "RATELIMIT_ENABLED": _env_flag("RATELIMIT_ENABLED"),
        "CORS_ORIGINS": origins or list(DEFAULT_ORIGINS),
        "PROPAGATE_EXCEPTIONS": False,
    }


def _register_jwt_loaders(jwt: JWTManager) -> None:
    @jwt.unauthorized_loader
    def _jwt_missing(reason: str):
        return jsonify({"ok": False, "error": {"code": "JWT_MISSING", "message": "Not authenticated", "hint": reason}}), 401

    @jwt.invalid_token_loader
    def _jwt_invalid(reason: str):
        return jsonify({"ok": False, "error": {"code": "JWT_INVALID", "message": "Invalid token", "hint": reason}}), 401

    @jwt.expired_token_loader
    def _jwt_expired(h, p):
        return jsonify({"ok": False, "error": {"code": "JWT_EXPIRED", "message": "Token has expired", "hint": None}}), 401


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(APIError)
    def handle_api_error(e: APIError):
        if e.status_code >= 500:
            logger.error("%s %s -> %s", request.method, request.path, e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(404)
    def handle_not_found(e):
        return jsonify({"ok": False, "error": "Not found"}), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(e):
        return jsonify({"ok": False, "error": "Method not allowed"}), 405

    @app.errorhandler(Exception)
    def handle_any(e: Exception):
        if isinstance(e, HTTPException):
            logger.info("HTTP %s: %s", e.code, e.description)
            return jsonify({"ok": False, "error": e.description or "HTTP error"}), e.code
        log_exception(logger, f"{request.method} {request.path}", e, request_id=g.get("request_id"))
        return jsonify({"ok": False, "error": "Internal server error"}), 500


def create_app(config: Optional[Dict[str, Any]] = None) -> Flask:
    _load_env()
    configure_logging()

    app = Flask(__name__)
    app.config.update(_base_config())
    if config:
        app.config.update(config)

    jwt = JWTManager(app)
    _register_jwt_loaders(jwt)
    CORS(app, resources={r"/api/*": {"origins": app.config["CORS_ORIGINS"]}})

    @app.before_request
    def _request_context():
        g.request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        g.request_ts = datetime.now(timezone.utc).isoformat()

    @app.after_request
    def _request_id_header(resp):
        resp.headers.setdefault("X-Request-ID", g.get("request_id", ""))
        return resp

    _register_error_handlers(app)
    for bp in BLUEPRINTS:
        app.register_blueprint(bp)

    init_engine_session(app.config.get("DATABASE_URL"))
    logger.info("Clerva %s started (ratelimit=%s)", __version__, app.config["RATELIMIT_ENABLED"])
    return app


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=int(os.getenv("PORT", "5000")))
