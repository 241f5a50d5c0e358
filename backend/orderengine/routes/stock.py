# backend/orderengine/routes/stock.py
"""
Stock routes.

- Availability reads are advisory snapshots for the UI.
- Manual adjustments (restock after a cancellation, recount) require an admin role.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_identity, require_role
from ..services import stock_service
from ..services.catalog_service import CatalogError
from ..services.identity_service import ROLE_ADMIN, ROLE_SUPER_ADMIN
from ..services.stock_service import StockLedgerError
from ..validation import (
    ValidationError,
    require_int,
    optional_int,
    optional_str,
    require_json_object,
)


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.get("/products/<int:product_id>")
@require_identity
def product_stock_route(product_id: int):
    try:
        return jsonify(stock_service.get_product_availability(product_id)), 200
    except (CatalogError, StockLedgerError) as e:
        return jsonify({"error": str(e)}), 404


@stock_bp.post("/adjust")
@require_identity
@require_role(ROLE_ADMIN, ROLE_SUPER_ADMIN)
def adjust_stock_route():
    """
    Body: {product_id, variant_id?, delta, note?}

    Returns the unit and its new quantity. 409 when the adjustment would
    make stock negative.
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        product_id = require_int(data, "product_id")
        variant_id = optional_int(data, "variant_id")
        delta = require_int(data, "delta")
        note = optional_str(data, "note")

        key = stock_service.resolve_stock_unit(product_id, variant_id)
        if key is None:
            return jsonify({"error": "Stock unit not found"}), 404

        new_quantity = stock_service.adjust(
            key, delta, actor_id=g.session_context.employee_id, note=note
        )
        return jsonify({"unit": key.to_dict(), "stock_quantity": new_quantity}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except StockLedgerError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except Exception:
        current_app.logger.exception("Stock adjustment failed")
        return jsonify({"error": "Internal server error"}), 500
