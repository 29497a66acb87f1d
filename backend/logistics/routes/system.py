# backend/logistics/routes/system.py
"""
System health endpoint.

Checks database connectivity and that the cashbox singleton exists.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Cashbox, Order, CASHBOX_ID
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        order_count = db.session.query(Order).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"orders": order_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_cashbox_health() -> dict:
    """Degraded (still operational) when the cashbox was never initialized."""
    start_time = time.time()
    try:
        cashbox = db.session.get(Cashbox, CASHBOX_ID)
        elapsed_ms = (time.time() - start_time) * 1000
        if cashbox is None:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": "Cashbox not initialized; run 'flask system init'",
            }
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "balance_consistent": (
                    cashbox.balance_usd == cashbox.cash_balance_usd + cashbox.wish_balance_usd
                    and cashbox.balance_lbp == cashbox.cash_balance_lbp + cashbox.wish_balance_lbp
                ),
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Cashbox health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Cashbox error",
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database or cashbox unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    cashbox_health = check_cashbox_health()

    all_checks = [database_health, cashbox_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "cashbox": cashbox_health,
        },
    }, http_status
