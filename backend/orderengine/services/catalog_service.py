# Overview: Catalog lookups used while building a cart; prices are quoted here and snapshotted into lines.

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import update

from ..extensions import db
from ..models import Product, ProductVariant, DiningTable
from ..models.catalog import TABLE_STATUS_AVAILABLE, TABLE_STATUS_OCCUPIED
from ..validation import validate_price_cents


class CatalogError(Exception):
    """Raised for catalog lookup errors."""
    def __init__(self, message: str, *, not_found: bool = False):
        super().__init__(message)
        self.not_found = not_found


@dataclass(frozen=True)
class PriceQuote:
    product_id: int
    variant_id: int | None
    unit_price_cents: int
    product_name: str
    variant_name: str | None = None


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise CatalogError(f"Product {product_id} not found", not_found=True)
    return product


def get_variant(product_id: int, variant_id: int) -> ProductVariant:
    variant = db.session.get(ProductVariant, variant_id)
    if variant is None or variant.product_id != product_id:
        raise CatalogError(f"Variant {variant_id} not found for product {product_id}", not_found=True)
    return variant


def has_variants(product_id: int) -> bool:
    return db.session.query(
        db.session.query(ProductVariant.id).filter_by(product_id=product_id).exists()
    ).scalar()


def quote(product_id: int, variant_id: int | None = None) -> PriceQuote:
    """
    Quote the unit price for a product or one of its variants.

    Unit price = product base price + variant price modifier. Products that have
    variants can only be sold through a variant.
    """
    product = get_product(product_id)
    if not product.is_active:
        raise CatalogError(f"Product {product.name!r} is inactive")

    if variant_id is None:
        if has_variants(product_id):
            raise CatalogError(f"Product {product.name!r} must be sold by variant")
        return PriceQuote(
            product_id=product.id,
            variant_id=None,
            unit_price_cents=product.base_price_cents,
            product_name=product.name,
        )

    variant = get_variant(product_id, variant_id)
    if not variant.is_active:
        raise CatalogError(f"Variant {variant.name!r} of {product.name!r} is inactive")

    return PriceQuote(
        product_id=product.id,
        variant_id=variant.id,
        unit_price_cents=product.base_price_cents + variant.price_modifier_cents,
        product_name=product.name,
        variant_name=variant.name,
    )


# =============================================================================
# CATALOG WRITES (operator CLI)
# =============================================================================

def create_product(
    sku: str,
    name: str,
    base_price_cents: int,
    stock_quantity: int = 0,
) -> Product:
    sku = (sku or "").strip()
    name = (name or "").strip()
    if not sku or not name:
        raise CatalogError("sku and name are required")
    validate_price_cents(base_price_cents, "base_price_cents")
    if stock_quantity < 0:
        raise CatalogError("stock_quantity must be >= 0")

    if db.session.query(Product.id).filter_by(sku=sku).scalar() is not None:
        raise CatalogError(f"SKU {sku!r} already exists")

    product = Product(
        sku=sku,
        name=name,
        base_price_cents=base_price_cents,
        stock_quantity=stock_quantity,
    )
    db.session.add(product)
    db.session.commit()
    return product


def create_variant(
    product_id: int,
    name: str,
    price_modifier_cents: int = 0,
    stock_quantity: int = 0,
) -> ProductVariant:
    """Add a variant. From then on the product is counted by its variants."""
    product = get_product(product_id)
    name = (name or "").strip()
    if not name:
        raise CatalogError("Variant name is required")
    if stock_quantity < 0:
        raise CatalogError("stock_quantity must be >= 0")
    if product.base_price_cents + price_modifier_cents < 0:
        raise CatalogError("Variant price cannot be negative")

    exists = (
        db.session.query(ProductVariant.id)
        .filter_by(product_id=product_id, name=name)
        .scalar()
    )
    if exists is not None:
        raise CatalogError(f"Variant {name!r} already exists for {product.name!r}")

    variant = ProductVariant(
        product_id=product_id,
        name=name,
        price_modifier_cents=price_modifier_cents,
        stock_quantity=stock_quantity,
    )
    db.session.add(variant)
    db.session.commit()
    return variant


def create_table(label: str) -> DiningTable:
    label = (label or "").strip()
    if not label:
        raise CatalogError("Table label is required")
    if db.session.query(DiningTable.id).filter_by(label=label).scalar() is not None:
        raise CatalogError(f"Table {label!r} already exists")

    table = DiningTable(label=label)
    db.session.add(table)
    db.session.commit()
    return table


def claim_table(table_id: int, order_id: int) -> bool:
    """
    Mark a table occupied by order_id, only if it is currently available.

    Runs in the caller's transaction. Returns False when another order got
    there first (or the table does not exist).
    """
    stmt = (
        update(DiningTable)
        .where(DiningTable.id == table_id, DiningTable.status == TABLE_STATUS_AVAILABLE)
        .values(status=TABLE_STATUS_OCCUPIED, held_by_order_id=order_id)
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt).rowcount == 1


def release_table(table_id: int, order_id: int) -> bool:
    """Free a table, but only while order_id is still the one holding it."""
    stmt = (
        update(DiningTable)
        .where(DiningTable.id == table_id, DiningTable.held_by_order_id == order_id)
        .values(status=TABLE_STATUS_AVAILABLE, held_by_order_id=None)
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt).rowcount == 1
