from __future__ import annotations

from ..extensions import db
from orderengine.time_utils import to_utc_z


TABLE_STATUS_AVAILABLE = "available"
TABLE_STATUS_OCCUPIED = "occupied"


class Product(db.Model):
    """
    Product master data plus the bare stock counter.

    STOCK UNITS:
    - A product without variants is counted by products.stock_quantity.
    - As soon as a product has at least one ProductVariant row, the variant
      counters are authoritative and stock_quantity is ignored for availability.

    The CHECK constraint is the last line of defence for quantity >= 0; the
    stock ledger never issues an update that could violate it.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)

    # Authoritative storage in cents (frontend may only format for display)
    base_price_cents = db.Column(db.Integer, nullable=False, default=0)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    variants = db.relationship("ProductVariant", backref="product", lazy=True, order_by="ProductVariant.id")

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "base_price_cents": self.base_price_cents,
            "stock_quantity": self.stock_quantity,
            "is_active": self.is_active,
            "variants": [v.to_dict() for v in self.variants],
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductVariant(db.Model):
    """Sellable variant of a product (e.g. a size) with its own stock counter."""
    __tablename__ = "product_variants"
    __table_args__ = (
        db.UniqueConstraint("product_id", "name", name="uq_product_variants_product_name"),
        db.CheckConstraint("stock_quantity >= 0", name="ck_product_variants_stock_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    name = db.Column(db.String(64), nullable=False)

    # Added to the product base price
    price_modifier_cents = db.Column(db.Integer, nullable=False, default=0)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<ProductVariant id={self.id} product_id={self.product_id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.name,
            "price_modifier_cents": self.price_modifier_cents,
            "stock_quantity": self.stock_quantity,
            "is_active": self.is_active,
        }


class DiningTable(db.Model):
    """
    Table resource held by an open order and released on settlement or cancellation.

    held_by_order_id names the order that claimed the table. Claim and release
    are conditional updates: a table is claimed only while available, and only
    its holder can release it.
    """
    __tablename__ = "dining_tables"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    label = db.Column(db.String(64), nullable=False, unique=True)
    status = db.Column(db.String(16), nullable=False, default=TABLE_STATUS_AVAILABLE, index=True)

    # No FK: orders.table_id already points here
    held_by_order_id = db.Column(db.Integer, nullable=True, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "status": self.status,
            "held_by_order_id": self.held_by_order_id,
        }
