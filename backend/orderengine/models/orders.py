from __future__ import annotations

from ..extensions import db
from orderengine.time_utils import to_utc_z


ORDER_STATUS_PREPARING = "preparing"
ORDER_STATUS_COMPLETED = "completed"
ORDER_STATUS_CANCELLED = "cancelled"

ORDER_STATUSES = (ORDER_STATUS_PREPARING, ORDER_STATUS_COMPLETED, ORDER_STATUS_CANCELLED)

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_PARTIAL = "partial"
PAYMENT_STATUS_PAID = "paid"


class Order(db.Model):
    """
    Order header created once by the commit pipeline.

    Mutated afterwards only by settlement (status, payment_status,
    amount_paid_cents, payment_method) and cancellation (status). Orders are
    never deleted; cancellation is a status change plus a CancellationRecord.

    PAYMENT INVARIANTS (also enforced by CHECK constraints):
    - 0 <= amount_paid_cents <= total_cents
    - payment_status == "paid" exactly when amount_paid_cents == total_cents

    needs_review is raised by the pipeline when the order was committed but its
    lines or stock decrements did not all go through; operators reconcile by hand.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.CheckConstraint("amount_paid_cents >= 0", name="ck_orders_amount_paid_non_negative"),
        db.CheckConstraint("amount_paid_cents <= total_cents", name="ck_orders_amount_paid_within_total"),
        db.CheckConstraint(
            "(payment_status = 'paid' AND amount_paid_cents = total_cents)"
            " OR (payment_status <> 'paid' AND amount_paid_cents < total_cents)",
            name="ck_orders_paid_matches_amount",
        ),
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Sequential, display-only
    order_number = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_PREPARING, index=True)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PENDING, index=True)

    total_cents = db.Column(db.Integer, nullable=False)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_method = db.Column(db.String(16), nullable=True)

    # Identity collaborator values; employees are not managed here
    employee_id = db.Column(db.String(64), nullable=False, index=True)
    terminal_id = db.Column(db.String(64), nullable=True, index=True)

    customer_id = db.Column(db.Integer, nullable=True, index=True)
    table_id = db.Column(db.Integer, db.ForeignKey("dining_tables.id"), nullable=True, index=True)

    needs_review = db.Column(db.Boolean, nullable=False, default=False, index=True)
    review_note = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship("OrderLine", backref="order", lazy=True, order_by="OrderLine.id")
    table = db.relationship("DiningTable")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def balance_due_cents(self) -> int:
        return self.total_cents - (self.amount_paid_cents or 0)

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "status": self.status,
            "payment_status": self.payment_status,
            "total_cents": self.total_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "balance_due_cents": self.balance_due_cents,
            "payment_method": self.payment_method,
            "employee_id": self.employee_id,
            "terminal_id": self.terminal_id,
            "customer_id": self.customer_id,
            "table_id": self.table_id,
            "needs_review": self.needs_review,
            "review_note": self.review_note,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class OrderLine(db.Model):
    """
    Line item captured at commit time.

    unit_price_cents and subtotal_cents are copied from the cart snapshot and
    never re-read from the catalog. stock_outcome is written once, right after
    the line's stock decrement.
    """
    __tablename__ = "order_lines"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_order_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    note = db.Column(db.String(255), nullable=True)

    # success, insufficient_stock, not_found, error (NULL until decremented)
    stock_outcome = db.Column(db.String(32), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")
    variant = db.relationship("ProductVariant")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "subtotal_cents": self.subtotal_cents,
            "note": self.note,
            "stock_outcome": self.stock_outcome,
            "created_at": to_utc_z(self.created_at),
        }


class OrderSequence(db.Model):
    """
    Atomic order number counter.

    WHY: Terminals commit concurrently; numbers are allocated with a single
    UPDATE ... SET next_number = next_number + 1 so no two orders share one.
    """
    __tablename__ = "order_sequences"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(32), nullable=False, unique=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
