# backend/orderengine/routes/system.py
"""
System health endpoint.

Reports database reachability and the in-process collaborators the commit
path depends on (terminal registry, change notifier).
"""

import time
from flask import Blueprint, current_app
from ..extensions import db, notifier
from ..models import Product, Order, OrderSequence
from ..services.terminal_service import get_registry
from orderengine.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        order_count = db.session.query(Order).count()
        sequence = db.session.query(OrderSequence).filter_by(name="orders").first()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "orders": order_count,
                "next_order_number": sequence.next_number if sequence else 1,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_terminal_health() -> dict:
    registry = get_registry()
    return {
        "status": "healthy",
        "details": {
            "active_terminals": len(registry),
            "commit_cooldown_seconds": registry.cooldown_seconds,
        }
    }


def check_notifier_health() -> dict:
    if not notifier.dispatch_enabled:
        return {
            "status": "degraded",
            "warning": "In-process dispatch disabled; events are only written to the outbox",
        }
    return {"status": "healthy", "details": {"pending_events": notifier.pending}}


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
    terminal_health = check_terminal_health()
    notifier_health = check_notifier_health()

    all_checks = [database_health, terminal_health, notifier_health]
    unhealthy_count = sum(1 for check in all_checks if check["status"] == "unhealthy")
    degraded_count = sum(1 for check in all_checks if check["status"] == "degraded")

    if unhealthy_count > 0:
        overall_status = "unhealthy"
        http_status = 503
    elif degraded_count > 0:
        overall_status = "degraded"
        http_status = 200
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
            "terminals": terminal_health,
            "notifier": notifier_health,
        }
    }

    return response, http_status
