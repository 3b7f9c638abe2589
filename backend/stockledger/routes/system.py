# backend/stockledger/routes/system.py
"""
System health and version endpoints.
"""

import sys
import time
from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..services.inventory_service import get_inventory_failure_policy, get_stock_shortfall_policy
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity with a trivial round trip.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"dialect": db.engine.dialect.name},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_policy_config() -> dict:
    """Unknown policy names would fail every order transition; surface them here."""
    try:
        return {
            "status": "healthy",
            "details": {
                "inventory_failure_policy": get_inventory_failure_policy(),
                "stock_shortfall_policy": get_stock_shortfall_policy(),
            },
        }
    except ValueError as e:
        return {"status": "unhealthy", "error": str(e)}


@system_bp.get("/api/health")
def health():
    """
    Returns:
    - 200: All checks healthy
    - 503: One or more checks unhealthy
    """
    start_time = time.time()

    checks = {
        "database": check_database_health(),
        "config": check_policy_config(),
    }
    healthy = all(check["status"] == "healthy" for check in checks.values())

    response = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }
    return response, 200 if healthy else 503


@system_bp.get("/api/version")
def version():
    env = "production" if not current_app.debug else "development"

    return {
        "api_version": "0.1.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": utcnow().isoformat() + "Z",
    }
