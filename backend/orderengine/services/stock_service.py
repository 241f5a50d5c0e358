# Overview: Stock ledger; the only authoritative writer of product and variant stock counters.

from __future__ import annotations

"""
Stock Ledger Invariants (authoritative)

- quantity >= 0 for every stock unit, always. Enforced here with conditional
  updates and at the storage layer with CHECK constraints, never by client-side
  pre-checks.
- A stock unit is either a bare product counter or a variant counter. If a
  product has any variant, its variant counters are the authoritative units.
- decrement() is ONE conditional UPDATE:
      UPDATE ... SET stock_quantity = stock_quantity - :q
      WHERE id = :id AND stock_quantity >= :q
  Terminals racing on the same unit serialize in the database; a lost race is
  reported as insufficient stock, exactly like a plain shortage.
- Reads (get_available, advisory_available) are snapshots for UI feedback only.
- Cancellation never restocks; operators use adjust() to reconcile by hand.
"""

from dataclasses import dataclass

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Product, ProductVariant
from .concurrency import run_with_retry


STOCK_UNIT_PRODUCT = "product"
STOCK_UNIT_VARIANT = "variant"

DECREMENT_SUCCESS = "success"
DECREMENT_INSUFFICIENT_STOCK = "insufficient_stock"
DECREMENT_NOT_FOUND = "not_found"


class StockLedgerError(Exception):
    """Raised for invalid ledger requests (bad quantities, failed adjustments)."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass(frozen=True)
class StockUnitKey:
    kind: str
    unit_id: int
    product_id: int

    def to_dict(self) -> dict:
        return {"kind": self.kind, "unit_id": self.unit_id, "product_id": self.product_id}


def _model_for(key: StockUnitKey):
    return ProductVariant if key.kind == STOCK_UNIT_VARIANT else Product


def resolve_stock_unit(product_id: int, variant_id: int | None = None) -> StockUnitKey | None:
    """
    Resolve the authoritative counter for a product/variant pair.

    Returns None when no counter applies: unknown product, a variant that does
    not belong to the product, or a product with variants referenced without one.
    """
    if variant_id is not None:
        owner = (
            db.session.query(ProductVariant.product_id)
            .filter_by(id=variant_id)
            .scalar()
        )
        if owner is None or owner != product_id:
            return None
        return StockUnitKey(STOCK_UNIT_VARIANT, variant_id, product_id)

    exists = db.session.query(Product.id).filter_by(id=product_id).scalar()
    if exists is None:
        return None

    has_variants = db.session.query(
        db.session.query(ProductVariant.id).filter_by(product_id=product_id).exists()
    ).scalar()
    if has_variants:
        return None
    return StockUnitKey(STOCK_UNIT_PRODUCT, product_id, product_id)


def get_available(key: StockUnitKey | None) -> int | None:
    """Current counter value, or None if the unit does not exist. Not a reservation."""
    if key is None:
        return None
    model = _model_for(key)
    return db.session.query(model.stock_quantity).filter_by(id=key.unit_id).scalar()


def advisory_available(product_id: int, variant_id: int | None = None) -> int:
    """Counter for a product/variant pair, 0 when nothing can be sold."""
    return get_available(resolve_stock_unit(product_id, variant_id)) or 0


def get_product_availability(product_id: int) -> dict:
    """Availability snapshot for a product and its variants (UI only)."""
    product = db.session.get(Product, product_id)
    if product is None:
        raise StockLedgerError(f"Product {product_id} not found")

    variants = (
        db.session.query(ProductVariant.id, ProductVariant.name, ProductVariant.stock_quantity)
        .filter_by(product_id=product_id)
        .order_by(ProductVariant.id)
        .all()
    )
    if variants:
        return {
            "product_id": product_id,
            "counted_by": STOCK_UNIT_VARIANT,
            "available": sum(v.stock_quantity for v in variants),
            "variants": [
                {"variant_id": v.id, "name": v.name, "available": v.stock_quantity}
                for v in variants
            ],
        }

    available = db.session.query(Product.stock_quantity).filter_by(id=product_id).scalar()
    return {
        "product_id": product_id,
        "counted_by": STOCK_UNIT_PRODUCT,
        "available": available,
        "variants": [],
    }


def decrement(key: StockUnitKey | None, quantity: int) -> str:
    """
    Atomically take quantity units from a stock unit.

    Returns DECREMENT_SUCCESS, DECREMENT_INSUFFICIENT_STOCK or DECREMENT_NOT_FOUND.
    Commits its own transaction. Lock timeouts are retried; a persistent storage
    failure propagates to the caller. Once issued it runs to completion.
    """
    if quantity < 1:
        raise StockLedgerError("Decrement quantity must be positive", {"quantity": quantity})
    if key is None:
        return DECREMENT_NOT_FOUND

    model = _model_for(key)

    def _op():
        stmt = (
            update(model)
            .where(model.id == key.unit_id, model.stock_quantity >= quantity)
            .values(stock_quantity=model.stock_quantity - quantity)
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)
        if result.rowcount == 1:
            db.session.commit()
            return DECREMENT_SUCCESS

        db.session.rollback()
        exists = db.session.query(model.id).filter_by(id=key.unit_id).scalar()
        return DECREMENT_INSUFFICIENT_STOCK if exists is not None else DECREMENT_NOT_FOUND

    return run_with_retry(_op)


def adjust(key: StockUnitKey | None, delta: int, *, actor_id: str | None = None, note: str | None = None) -> int:
    """
    Manual stock correction (restock after a cancellation, recount, shrink).

    Conditional like decrement: a negative delta larger than the counter is
    rejected instead of clamping. Returns the new quantity.
    """
    if key is None:
        raise StockLedgerError("Stock unit not found")
    if delta == 0:
        raise StockLedgerError("Adjustment delta must be non-zero")

    model = _model_for(key)

    def _op():
        stmt = (
            update(model)
            .where(model.id == key.unit_id, model.stock_quantity + delta >= 0)
            .values(stock_quantity=model.stock_quantity + delta)
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)
        if result.rowcount != 1:
            db.session.rollback()
            current = db.session.query(model.stock_quantity).filter_by(id=key.unit_id).scalar()
            if current is None:
                raise StockLedgerError("Stock unit not found", key.to_dict())
            raise StockLedgerError(
                "Adjustment would make stock negative",
                {**key.to_dict(), "available": current, "delta": delta},
            )
        db.session.commit()
        return db.session.query(model.stock_quantity).filter_by(id=key.unit_id).scalar()

    new_quantity = run_with_retry(_op)
    current_app.logger.info(
        "Stock adjusted: %s %s delta=%s new_quantity=%s actor=%s note=%s",
        key.kind, key.unit_id, delta, new_quantity, actor_id, note,
    )
    return new_quantity
