"""
Health probes. No token required.

    GET /api/v1/health/ready   process is up (load balancer probe)
    GET /api/v1/health/live    database round-trip; 503 "degraded" when it fails
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from civicworks.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


def _database_check() -> dict:
    started = time.perf_counter()
    try:
        db.session.execute(db.text("SELECT 1"))
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Liveness probe: database unreachable: %s", exc)
        return {"status": "error", "detail": str(exc)}
    return {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"})


@health_bp.route("/live", methods=["GET"])
def live():
    database = _database_check()
    healthy = database["status"] == "ok"
    body = {
        "status": "ok" if healthy else "degraded",
        "checks": {
            "database": database,
            "engine": {
                "dialect": db.engine.dialect.name,
                "testing": current_app.testing,
            },
        },
    }
    return jsonify(body), 200 if healthy else 503
