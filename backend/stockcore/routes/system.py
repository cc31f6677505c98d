# backend/stockcore/routes/system.py
"""
System health endpoint.

Checks database connectivity and the stock tables the engine depends on.
"""

import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Order, Product, StockMovement, Tenant
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api/system")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        details = {
            "tenants": db.session.query(Tenant).count(),
            "products": db.session.query(Product).count(),
            "orders": db.session.query(Order).count(),
            "stock_movements": db.session.query(StockMovement).count(),
        }
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": details,
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_stock_integrity() -> dict:
    """Products whose quantity is negative or whose stored status is stale."""
    from ..services.stock_service import derive_stock_status

    start_time = time.time()
    try:
        negative = db.session.query(Product).filter(Product.quantity < 0).count()
        stale = 0
        for quantity, minimum, status in db.session.query(
            Product.quantity, Product.minimum_stock_quantity, Product.stock_status
        ):
            if derive_stock_status(quantity, minimum) != status:
                stale += 1

        elapsed_ms = (time.time() - start_time) * 1000
        result = {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"negative_quantity": negative, "stale_status": stale},
        }
        if negative or stale:
            result["status"] = "degraded"
            result["warning"] = "Stock records out of sync; run `flask stock reconcile`"
        return result
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Stock integrity check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Stock integrity check error",
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    stock_health = check_stock_integrity()

    all_checks = [database_health, stock_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status = "unhealthy"
        http_status = 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status = "degraded"
        http_status = 200  # Degraded is still operational
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "stock": stock_health,
        },
    }
    return response, http_status
