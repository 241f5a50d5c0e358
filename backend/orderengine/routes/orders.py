# Overview: Flask API routes for orders and settlement; parses input and returns JSON responses.

# backend/orderengine/routes/orders.py
"""Order read and settlement routes"""

from flask import Blueprint, request, jsonify, g, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..decorators import require_identity
from ..models.orders import ORDER_STATUSES
from ..services import order_service, settlement_service, audit_service
from ..services.settlement_service import (
    OrderNotFoundError,
    SettlementPermissionError,
    SettlementError,
)
from ..validation import (
    ValidationError,
    require_int,
    optional_int,
    optional_str,
    require_json_object,
)


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _parse_bool(value: str | None) -> bool | None:
    if value is None:
        return None
    return value.strip().lower() in ("1", "true", "yes")


def _settlement_call(fn, *args, description: str):
    """Run a settlement transition and map its errors to a response."""
    try:
        order = fn(g.session_context, *args)
        return jsonify({"order": order.to_dict(include_lines=True)}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except OrderNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except SettlementPermissionError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except SettlementError as e:
        return jsonify({"error": str(e)}), 409
    except SQLAlchemyError:
        current_app.logger.exception("Storage failure while trying to %s", description)
        return jsonify({"error": f"Could not {description}; please retry", "retryable": True}), 503
    except Exception:
        current_app.logger.exception("Failed to %s", description)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_identity
def list_orders_route():
    """Query params: status, payment_status, needs_review, limit, offset."""
    try:
        status = request.args.get("status")
        if status and status not in ORDER_STATUSES:
            return jsonify({"error": f"Invalid status: {status}"}), 400

        limit = optional_int(request.args, "limit", default=100)
        offset = optional_int(request.args, "offset", default=0)
        orders, total = order_service.list_orders(
            status=status,
            payment_status=request.args.get("payment_status"),
            needs_review=_parse_bool(request.args.get("needs_review")),
            limit=limit,
            offset=offset,
        )
        return jsonify({"orders": [o.to_dict() for o in orders], "total": total}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@orders_bp.get("/review")
@require_identity
def review_queue_route():
    """Orders flagged needs_review by the commit pipeline, newest first."""
    orders, total = order_service.list_orders(needs_review=True, limit=500)
    return jsonify({
        "orders": [o.to_dict(include_lines=True) for o in orders],
        "total": total,
    }), 200


@orders_bp.get("/<int:order_id>")
@require_identity
def get_order_route(order_id: int):
    order = order_service.get_order(order_id)
    if not order:
        return jsonify({"error": "Order not found"}), 404
    return jsonify({"order": order.to_dict(include_lines=True)}), 200


@orders_bp.get("/<int:order_id>/history")
@require_identity
def order_history_route(order_id: int):
    order = order_service.get_order(order_id)
    if not order:
        return jsonify({"error": "Order not found"}), 404
    entries = audit_service.get_order_history(order_id)
    return jsonify({"order_id": order_id, "history": [e.to_dict() for e in entries]}), 200


@orders_bp.post("/<int:order_id>/complete")
@require_identity
def complete_order_route(order_id: int):
    return _settlement_call(settlement_service.complete_order, order_id, description="complete order")


@orders_bp.post("/<int:order_id>/payments")
@require_identity
def add_payment_route(order_id: int):
    """Body: {amount_cents, payment_method}"""
    try:
        data = require_json_object(request.get_json(silent=True))
        amount = require_int(data, "amount_cents")
        payment_method = optional_str(data, "payment_method", max_length=16)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    return _settlement_call(
        settlement_service.add_payment, order_id, amount, payment_method, description="add payment"
    )


@orders_bp.post("/<int:order_id>/settle")
@require_identity
def settle_order_route(order_id: int):
    """Body: {payment_method}"""
    try:
        data = require_json_object(request.get_json(silent=True))
        payment_method = optional_str(data, "payment_method", max_length=16)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    return _settlement_call(
        settlement_service.settle_payment, order_id, payment_method, description="settle order"
    )


@orders_bp.post("/<int:order_id>/cancel")
@require_identity
def cancel_order_route(order_id: int):
    """
    Body: {reason}

    Cancelling a completed order requires an admin role (403 otherwise).
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        reason = optional_str(data, "reason", max_length=500)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    return _settlement_call(
        settlement_service.cancel_order, order_id, reason, description="cancel order"
    )
