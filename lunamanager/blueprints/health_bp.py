"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        — service name and status
    GET /api/v1/health/ready  — 200 whenever the process is serving
    GET /api/v1/health/live   — database round-trip with latency
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from lunamanager.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
def health():
    return jsonify({"status": "ok", "app": "LunaManager"}), 200


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Liveness check; 503 when the database does not answer."""
    checks = {}
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        checks["database"] = {"status": "ok", "latency_ms": round((time.perf_counter() - t0) * 1000, 1)}
        healthy = True
    except SQLAlchemyError as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        healthy = False
        logger.error("Health check: database failed: %s", exc)

    checks["app"] = {
        "name": "LunaManager",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }
    return jsonify({
        "status": "healthy" if healthy else "degraded",
        "checks": checks,
    }), 200 if healthy else 503
