"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        — liveness with database status
    GET /api/v1/health/ready  — simple 200 for load balancers
"""

import logging
import time

from flask import Blueprint, jsonify
from sqlalchemy.exc import SQLAlchemyError

from delivery_workspace.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
def health():
    """Liveness check with database status."""
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        database = {"status": "ok", "latency_ms": round(db_ms, 1)}
        status, code = "ok", 200
    except SQLAlchemyError as exc:
        logger.error("Health check — database failed: %s", exc)
        database = {"status": "error", "detail": str(exc)}
        status, code = "degraded", 503
    return jsonify({"status": status, "checks": {"database": database}}), code


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe — always 200 if app is running."""
    return jsonify({"status": "ok"}), 200
