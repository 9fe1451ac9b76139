# backend/aurora/routes/system.py
"""System health and version endpoints."""

import sys
import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Product, User, PDV
from aurora.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        details = {
            "products": db.session.query(Product).count(),
            "users": db.session.query(User).count(),
            "pdvs": db.session.query(PDV).count(),
        }
        return {
            "status": "healthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "details": details,
        }
    except Exception:
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": "Database error",
        }


def check_gateway_config() -> dict:
    config = current_app.config
    configured = {
        "mercadopago": bool(config.get("MERCADOPAGO_ACCESS_TOKEN")),
        "asaas": bool(config.get("ASAAS_API_KEY")),
    }
    return {
        "status": "healthy" if configured.get(config.get("DEFAULT_GATEWAY")) else "degraded",
        "default": config.get("DEFAULT_GATEWAY"),
        "configured": configured,
    }


@system_bp.get("/health")
def health():
    """
    Health check.

    Returns 503 when the database is unreachable; a missing gateway
    credential only degrades the status.
    """
    database_health = check_database_health()
    gateway_health = check_gateway_config()

    checks = [database_health, gateway_health]
    if any(check["status"] == "unhealthy" for check in checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "checks": {
            "database": database_health,
            "payment_gateways": gateway_health,
        },
    }, http_status


@system_bp.get("/version")
def version():
    return {
        "api_version": "1.0.0",
        "environment": "production" if not current_app.debug else "development",
        "python_version": sys.version.split()[0],
        "server_time": utcnow().isoformat() + "Z",
    }
