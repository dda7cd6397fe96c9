"""
Delivery Workspace
Flask Application Factory.

Usage:
    from delivery_workspace import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event
from sqlalchemy.exc import SQLAlchemyError

from delivery_workspace.config import config
from delivery_workspace.middleware.jwt_auth import init_jwt_middleware
from delivery_workspace.middleware.logging_config import configure_logging
from delivery_workspace.middleware.rate_limiter import init_rate_limits
from delivery_workspace.middleware.tenant_context import init_tenant_context
from delivery_workspace.models import db
from delivery_workspace.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit, applied per blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),  # Redis in production, memory for dev
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    # Instantiate so ProductionConfig can refuse to start without its env vars
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── JWT auth → tenant context (identity + server-side role) ──────────
    init_jwt_middleware(app)
    init_tenant_context(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    @app.before_request
    def _guard_request():
        from flask import abort
        from flask import request as _req

        max_len = app.config.get("MAX_CONTENT_LENGTH")
        if max_len and _req.content_length and _req.content_length > max_len:
            abort(413, description="Request body too large")
        if _req.method in ("POST", "PUT", "PATCH") and _req.path.startswith("/api/"):
            ct = _req.content_type or ""
            # Document upload is the only multipart endpoint
            if _req.path.startswith("/api/v1/documents") and "multipart/form-data" in ct:
                return None
            if _req.content_length and "json" not in ct:
                abort(415, description="Content-Type must be application/json")
        return None

    # ── Import all models so Alembic can detect them ─────────────────────
    from delivery_workspace.models import attachments as _attachment_models  # noqa: F401
    from delivery_workspace.models import audit as _audit_models            # noqa: F401
    from delivery_workspace.models import crm as _crm_models                # noqa: F401
    from delivery_workspace.models import delivery as _delivery_models      # noqa: F401
    from delivery_workspace.models import notification as _notification_models  # noqa: F401
    from delivery_workspace.models import tenancy as _tenancy_models        # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except SQLAlchemyError as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from delivery_workspace.blueprints.client_bp import client_bp
    from delivery_workspace.blueprints.contact_bp import contact_bp
    from delivery_workspace.blueprints.discussion_bp import discussion_bp
    from delivery_workspace.blueprints.document_bp import document_bp
    from delivery_workspace.blueprints.health_bp import health_bp
    from delivery_workspace.blueprints.lead_bp import lead_bp
    from delivery_workspace.blueprints.note_bp import note_bp
    from delivery_workspace.blueprints.notification_bp import notification_bp
    from delivery_workspace.blueprints.phase_bp import phase_bp
    from delivery_workspace.blueprints.project_bp import project_bp
    from delivery_workspace.blueprints.set_bp import set_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(client_bp)
    app.register_blueprint(contact_bp)
    app.register_blueprint(project_bp)
    app.register_blueprint(phase_bp)
    app.register_blueprint(set_bp)
    app.register_blueprint(lead_bp)
    app.register_blueprint(document_bp)
    app.register_blueprint(discussion_bp)
    app.register_blueprint(note_bp)
    app.register_blueprint(notification_bp)

    # ── Error handlers ───────────────────────────────────────────────────
    register_error_handlers(app)

    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Resource not found")

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(413)
    def too_large(e):
        return api_error(E.VALIDATION_INVALID, "Request body too large", status=413)

    @app.errorhandler(415)
    def unsupported_media(e):
        return api_error(E.VALIDATION_INVALID, "Content-Type must be application/json", status=415)

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def internal_error(e):
        db.session.rollback()
        return api_error(E.INTERNAL, "Internal server error")

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("init-storage")
    def init_storage_cmd():
        """Create the local document bucket directory."""
        bucket_dir = os.path.join(app.config["STORAGE_ROOT"], app.config["STORAGE_BUCKET"])
        os.makedirs(bucket_dir, exist_ok=True)
        print(f"Storage bucket ready at {bucket_dir}")

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
