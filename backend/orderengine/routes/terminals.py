# Overview: Flask API routes for terminal carts and checkout; parses input and returns JSON responses.

# backend/orderengine/routes/terminals.py
"""Terminal cart and checkout routes"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_identity
from ..models.orders import ORDER_STATUS_COMPLETED
from ..services import order_service
from ..services.cart_service import CartError, InsufficientStockError
from ..services.concurrency import DuplicateSubmissionError
from ..services.order_service import OrderCommitError, TableUnavailableError, STEP_HOLD_TABLE
from ..services.terminal_service import get_terminal
from ..validation import (
    ValidationError,
    require_int,
    optional_int,
    optional_str,
    require_json_object,
)


terminals_bp = Blueprint("terminals", __name__, url_prefix="/api/terminals")


def _cart_response(terminal, status: int = 200):
    return jsonify({"terminal_id": terminal.terminal_id, "cart": terminal.cart.to_dict()}), status


@terminals_bp.get("/<terminal_id>/cart")
@require_identity
def get_cart_route(terminal_id: str):
    return _cart_response(get_terminal(terminal_id))


@terminals_bp.post("/<terminal_id>/cart/lines")
@require_identity
def add_cart_line_route(terminal_id: str):
    """
    Add an item to the terminal's cart.

    Body: {product_id, variant_id?, quantity?, note?}
    409 when the advisory stock check fails.
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        product_id = require_int(data, "product_id")
        variant_id = optional_int(data, "variant_id")
        quantity = optional_int(data, "quantity", default=1)
        note = optional_str(data, "note")

        terminal = get_terminal(terminal_id)
        terminal.cart.add_line(product_id, variant_id, quantity, note)
        return _cart_response(terminal, 201)

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except InsufficientStockError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except CartError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to add cart line")
        return jsonify({"error": "Internal server error"}), 500


@terminals_bp.patch("/<terminal_id>/cart/lines/<int:index>")
@require_identity
def update_cart_line_route(terminal_id: str, index: int):
    """Body: {delta}. A line that drops to zero is removed."""
    try:
        data = require_json_object(request.get_json(silent=True))
        delta = require_int(data, "delta")

        terminal = get_terminal(terminal_id)
        terminal.cart.update_quantity(index, delta)
        return _cart_response(terminal)

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except InsufficientStockError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except CartError as e:
        return jsonify({"error": str(e), "details": e.details}), 404
    except Exception:
        current_app.logger.exception("Failed to update cart line")
        return jsonify({"error": "Internal server error"}), 500


@terminals_bp.delete("/<terminal_id>/cart/lines/<int:index>")
@require_identity
def remove_cart_line_route(terminal_id: str, index: int):
    terminal = get_terminal(terminal_id)
    try:
        terminal.cart.remove_line(index)
    except CartError as e:
        return jsonify({"error": str(e)}), 404
    return _cart_response(terminal)


@terminals_bp.delete("/<terminal_id>/cart")
@require_identity
def clear_cart_route(terminal_id: str):
    terminal = get_terminal(terminal_id)
    terminal.cart.clear()
    return _cart_response(terminal)


@terminals_bp.post("/<terminal_id>/checkout")
@require_identity
def checkout_route(terminal_id: str):
    """
    Commit the terminal's cart as an order.

    Body: {payment_method?, amount_tendered_cents, target_status?, table_id?, customer_id?}

    Returns:
    - 201: order created (check needs_review / stock_failures)
    - 400: validation failed, nothing written
    - 409: a checkout is already in flight for this terminal, or the table
      was taken by another order
    - 503: a storage step failed; error names the step, order_id is set when
      the order exists and needs review
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        amount = require_int(data, "amount_tendered_cents")
        payment_method = optional_str(data, "payment_method", max_length=16)
        target_status = optional_str(data, "target_status", max_length=16) or ORDER_STATUS_COMPLETED
        table_id = optional_int(data, "table_id")
        customer_id = optional_int(data, "customer_id")

        result = order_service.commit_order(
            g.session_context,
            get_terminal(terminal_id),
            payment_method,
            amount,
            target_status=target_status,
            table_id=table_id,
            customer_id=customer_id,
        )
        return jsonify(result.to_dict()), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except DuplicateSubmissionError as e:
        return jsonify({"error": str(e), "step": "single_flight"}), 409
    except TableUnavailableError as e:
        return jsonify({"error": str(e), "step": STEP_HOLD_TABLE}), 409
    except OrderCommitError as e:
        return jsonify({
            "error": str(e),
            "step": e.step,
            "order_id": e.order_id,
            "retryable": e.retryable,
        }), 503
    except Exception:
        current_app.logger.exception("Checkout failed")
        return jsonify({"error": "Internal server error"}), 500
