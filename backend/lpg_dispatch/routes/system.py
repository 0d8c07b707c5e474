# backend/lpg_dispatch/routes/system.py
"""
System health and version endpoints.
"""

import sys
import time
from flask import Blueprint, current_app, send_from_directory
from ..extensions import db
from ..models import Tenant, SessionToken
from ..models.cylinders import Cylinder, CYLINDER_HANDOVER_PENDING
from lpg_dispatch.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Check database connectivity with a couple of cheap counts."""
    start_time = time.time()
    try:
        tenant_count = db.session.query(Tenant).count()
        active_sessions = db.session.query(SessionToken).filter_by(is_revoked=False).count()
        held_cylinders = db.session.query(Cylinder).filter_by(status=CYLINDER_HANDOVER_PENDING).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "tenants": tenant_count,
                "active_sessions": active_sessions,
                "cylinders_on_hold": held_cylinders,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: database reachable
    - 503: database unhealthy
    """
    database_health = check_database_health()
    http_status = 200 if database_health["status"] == "healthy" else 503

    return {
        "status": database_health["status"],
        "timestamp": utcnow().isoformat() + "Z",
        "checks": {"database": database_health},
    }, http_status


@system_bp.get("/version")
def version():
    """Non-sensitive deployment information."""
    env = "production" if not current_app.debug else "development"

    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": utcnow().isoformat() + "Z",
    }


@system_bp.get("/uploads/receipts/<path:file_name>")
def delivery_proof(file_name: str):
    """Serve a stored proof-of-delivery file."""
    return send_from_directory(current_app.config["PROOF_UPLOAD_DIR"], file_name)
