"""
LunaManager
Flask Application Factory.

Usage:
    from lunamanager import create_app
    app = create_app()           # defaults to APP_ENV, else "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event
from sqlalchemy.exc import SQLAlchemyError

from lunamanager.config import config
from lunamanager.core.exceptions import NotFoundError
from lunamanager.middleware.jwt_auth import init_jwt_middleware
from lunamanager.middleware.logging_config import configure_logging
from lunamanager.middleware.rate_limiter import init_rate_limits
from lunamanager.middleware.security_headers import init_security_headers
from lunamanager.middleware.timing import init_request_timing
from lunamanager.models import db
from lunamanager.utils.errors import SERVICE_ERRORS, service_error_response

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
    default_limits=[],                     # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL") or "memory://",
)


def _register_error_handlers(app):
    """Service exceptions and HTTP errors as JSON under /api/."""

    def _service_error(e):
        db.session.rollback()
        if isinstance(e, NotFoundError):
            logger.info("Not found: %s", e)
        return service_error_response(e)

    for exc_type in SERVICE_ERRORS:
        app.register_error_handler(exc_type, _service_error)

    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"error": "Request body too large"}, 413

    @app.errorhandler(415)
    def unsupported_media(e):
        return {"error": "Content-Type must be application/json"}, 415

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        db.session.rollback()
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500


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
    # ProductionConfig checks its env vars in __init__
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

    # ── Middleware ───────────────────────────────────────────────────────
    init_security_headers(app)
    init_request_timing(app)
    init_jwt_middleware(app)

    # ── Request guards (body size + Content-Type) ────────────────────────
    @app.before_request
    def _guard_request():
        max_len = app.config.get("MAX_CONTENT_LENGTH")
        if max_len and request.content_length and request.content_length > max_len:
            abort(413)
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.get_data(cache=True) and "json" not in ct:
                abort(415)

    # ── Import all models so Alembic and create_all see them ─────────────
    from lunamanager.models import activity as _activity_models            # noqa: F401
    from lunamanager.models import auth as _auth_models                    # noqa: F401
    from lunamanager.models import business_entity as _entity_models       # noqa: F401
    from lunamanager.models import company as _company_models              # noqa: F401
    from lunamanager.models import hr as _hr_models                        # noqa: F401
    from lunamanager.models import invitation as _invitation_models        # noqa: F401
    from lunamanager.models import policy as _policy_models                # noqa: F401
    from lunamanager.models import product as _product_models              # noqa: F401
    from lunamanager.models import rbac as _rbac_models                    # noqa: F401
    from lunamanager.models import settings as _settings_models            # noqa: F401
    from lunamanager.models import talep as _talep_models                  # noqa: F401
    from lunamanager.models import workspace as _workspace_models          # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
        except SQLAlchemyError as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from lunamanager.blueprints.activity_bp import activity_bp
    from lunamanager.blueprints.auth_bp import auth_bp
    from lunamanager.blueprints.business_entity_bp import business_entity_bp
    from lunamanager.blueprints.company_bp import company_bp
    from lunamanager.blueprints.health_bp import health_bp
    from lunamanager.blueprints.hr_bp import hr_bp
    from lunamanager.blueprints.invitation_bp import invitation_bp, public_invitation_bp
    from lunamanager.blueprints.onboarding_bp import onboarding_bp
    from lunamanager.blueprints.product_bp import product_bp
    from lunamanager.blueprints.settings_bp import settings_bp
    from lunamanager.blueprints.system_bp import system_bp
    from lunamanager.blueprints.talep_bp import talep_bp
    from lunamanager.blueprints.user_bp import user_bp
    from lunamanager.blueprints.workspace_bp import workspace_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(workspace_bp)
    app.register_blueprint(company_bp)
    app.register_blueprint(business_entity_bp)
    app.register_blueprint(talep_bp)
    app.register_blueprint(hr_bp)
    app.register_blueprint(product_bp)
    app.register_blueprint(invitation_bp)
    app.register_blueprint(public_invitation_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(system_bp)
    app.register_blueprint(user_bp)
    app.register_blueprint(onboarding_bp)
    app.register_blueprint(activity_bp)

    _register_error_handlers(app)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-modules")
    def seed_modules_cmd():
        """Seed the default module catalogue (hr, talep, crm, settings)."""
        from lunamanager.services.rbac_service import seed_modules
        counts = seed_modules()
        db.session.commit()
        logger.info("Seeded module catalogue: %s", counts)

    @app.cli.command("seed-activity-types")
    def seed_activity_types_cmd():
        """Create the default activity types."""
        from lunamanager.services.activity_service import seed_activity_types
        added = seed_activity_types()
        db.session.commit()
        logger.info("Seeded %d activity types", added)

    @app.cli.command("purge-activities")
    def purge_activities_cmd():
        """Delete user activities past their retention period."""
        from lunamanager.services.activity_service import purge_expired
        purge_expired()
        db.session.commit()

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
