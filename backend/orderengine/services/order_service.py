# Overview: Service-layer operations for committing carts as orders; header, lines, stock and history.

"""
Order Commit Pipeline

WHY: Turns a terminal's cart into a persisted order, takes the stock, and
records the creation. This is the one path where money, inventory and
duplicate protection meet.

PIPELINE (one logical operation per checkout):
1. Validate the cart snapshot and payment input before any write.
2. Single-flight guard for the terminal: a second checkout while one is in
   flight (or cooling down) is rejected, not queued.
3. Insert the order header and claim the table, if any (one transaction).
   A table another order already holds rejects the checkout here.
4. Insert every line with the price captured in the cart (own transaction).
5. Decrement stock once per line. Failures do NOT roll back the order or the
   other lines; they are recorded on the line and the order is flagged for
   review. There is no cross-line atomicity.
6. Take the committed lines out of the cart, append the "created" history row.
7. Publish a completion event if the order was created completed.

A failure after the header exists leaves a flagged order for an operator to
reconcile; nothing is rolled back automatically.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db, notifier
from ..models import Order, OrderLine, DiningTable
from ..models.catalog import TABLE_STATUS_AVAILABLE
from ..models.orders import (
    ORDER_STATUS_PREPARING,
    ORDER_STATUS_COMPLETED,
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUS_PARTIAL,
    PAYMENT_STATUS_PAID,
)
from ..models.audit import ACTION_CREATED
from ..validation import ValidationError, ConflictError
from orderengine.time_utils import utcnow
from . import audit_service, catalog_service, stock_service
from .cart_service import CartSnapshot
from .concurrency import run_with_retry
from .identity_service import SessionContext
from .sequence_service import next_order_number
from .terminal_service import TerminalSession


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

PAYMENT_METHOD_CASH = "cash"
PAYMENT_METHOD_CARD = "card"
PAYMENT_METHOD_DIGITAL = "digital"

VALID_PAYMENT_METHODS = [
    PAYMENT_METHOD_CASH,
    PAYMENT_METHOD_CARD,
    PAYMENT_METHOD_DIGITAL,
]

COMMIT_TARGET_STATUSES = (ORDER_STATUS_PREPARING, ORDER_STATUS_COMPLETED)

STOCK_OUTCOME_ERROR = "error"

STEP_INSERT_HEADER = "insert_header"
STEP_INSERT_LINES = "insert_lines"
STEP_HOLD_TABLE = "hold_table"
STEP_AUDIT = "audit"


class OrderCommitError(Exception):
    """
    Raised when a pipeline step fails.

    step names the failing step. order_id is set when the header was already
    written, in which case the order is flagged needs_review.
    """
    def __init__(
        self,
        message: str,
        *,
        step: str,
        order_id: int | None = None,
        retryable: bool = True,
        details: dict | None = None,
    ):
        super().__init__(message)
        self.step = step
        self.order_id = order_id
        self.retryable = retryable
        self.details = details or {}


class TableUnavailableError(ConflictError):
    """The table was taken by another order between validation and the claim."""
    pass


@dataclass(frozen=True)
class StockFailure:
    line_id: int
    product_id: int
    variant_id: int | None
    quantity: int
    outcome: str

    def to_dict(self) -> dict:
        return {
            "line_id": self.line_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "outcome": self.outcome,
        }


@dataclass
class CommitResult:
    order: Order
    stock_failures: list[StockFailure] = field(default_factory=list)

    @property
    def needs_review(self) -> bool:
        return bool(self.stock_failures) or bool(self.order.needs_review)

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(include_lines=True),
            "stock_failures": [f.to_dict() for f in self.stock_failures],
            "needs_review": self.needs_review,
        }


def derive_payment_status(amount_paid_cents: int, total_cents: int) -> str:
    """paid when fully covered, pending when nothing was paid, partial otherwise."""
    if amount_paid_cents == total_cents:
        return PAYMENT_STATUS_PAID
    if amount_paid_cents == 0:
        return PAYMENT_STATUS_PENDING
    return PAYMENT_STATUS_PARTIAL


def validate_payment_method(payment_method: str | None, *, required: bool) -> str | None:
    if payment_method is None:
        if required:
            raise ValidationError("payment_method required")
        return None
    if payment_method not in VALID_PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method: {payment_method}. Must be one of {VALID_PAYMENT_METHODS}"
        )
    return payment_method


def _validate_commit(
    snapshot: CartSnapshot,
    payment_method: str | None,
    amount_tendered_cents: int,
    target_status: str,
    table_id: int | None,
) -> None:
    if snapshot.is_empty:
        raise ValidationError("Cart is empty")

    if target_status not in COMMIT_TARGET_STATUSES:
        raise ValidationError(f"Invalid target status: {target_status}")

    if amount_tendered_cents < 0:
        raise ValidationError("Amount tendered cannot be negative")

    total = snapshot.total_cents
    if amount_tendered_cents == 0 and total > 0 and target_status == ORDER_STATUS_COMPLETED:
        raise ValidationError("Amount tendered must be positive for a validated order")

    if amount_tendered_cents > total:
        raise ValidationError("Amount tendered exceeds order total")

    validate_payment_method(payment_method, required=amount_tendered_cents > 0)

    if table_id is not None:
        table = db.session.get(DiningTable, table_id)
        if table is None:
            raise ValidationError(f"Table {table_id} not found")
        if table.status != TABLE_STATUS_AVAILABLE:
            raise ValidationError(f"Table {table.label} is not available")


def _flag_for_review(order_id: int, note: str) -> None:
    """Mark an order for manual reconciliation. Never masks the original failure."""
    stmt = (
        update(Order)
        .where(Order.id == order_id)
        .values(needs_review=True, review_note=note[:255])
        .execution_options(synchronize_session=False)
    )

    def _op():
        db.session.execute(stmt)
        db.session.commit()

    try:
        run_with_retry(_op)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to flag order %s for review", order_id)
        return
    current_app.logger.warning("Order %s flagged for review: %s", order_id, note)


def _insert_header(
    ctx: SessionContext,
    snapshot: CartSnapshot,
    payment_method: str | None,
    amount_tendered_cents: int,
    target_status: str,
    table_id: int | None,
    customer_id: int | None,
) -> Order:
    total = snapshot.total_cents

    def _op():
        order = Order(
            order_number=next_order_number(),
            status=target_status,
            payment_status=derive_payment_status(amount_tendered_cents, total),
            total_cents=total,
            amount_paid_cents=amount_tendered_cents,
            payment_method=payment_method,
            employee_id=ctx.employee_id,
            terminal_id=ctx.terminal_id,
            customer_id=customer_id,
            table_id=table_id,
            completed_at=utcnow() if target_status == ORDER_STATUS_COMPLETED else None,
        )
        db.session.add(order)
        if table_id is not None:
            db.session.flush()
            if not catalog_service.claim_table(table_id, order.id):
                raise TableUnavailableError(f"Table {table_id} is not available")
        db.session.commit()
        return order

    try:
        return run_with_retry(_op)
    except TableUnavailableError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to insert order header")
        raise OrderCommitError(
            "Could not create the order; nothing was saved. Please retry.",
            step=STEP_INSERT_HEADER,
        ) from exc


def _insert_lines(order: Order, snapshot: CartSnapshot) -> list[OrderLine]:
    order_id = order.id
    order_number = order.order_number
    try:
        lines = [
            OrderLine(
                order_id=order_id,
                product_id=cart_line.product_id,
                variant_id=cart_line.variant_id,
                quantity=cart_line.quantity,
                unit_price_cents=cart_line.unit_price_cents,
                subtotal_cents=cart_line.subtotal_cents,
                note=cart_line.note,
            )
            for cart_line in snapshot.lines
        ]
        db.session.add_all(lines)
        db.session.commit()
        return lines
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to insert lines for order %s", order_id)
        _flag_for_review(order_id, "Line items could not be saved")
        raise OrderCommitError(
            f"Order #{order_number} was created but its items could not be saved; "
            "it needs manual review.",
            step=STEP_INSERT_LINES,
            order_id=order_id,
        ) from exc


def _decrement_stock(order_id: int, lines: list[OrderLine]) -> list[StockFailure]:
    """One ledger decrement per line, in order. Each one stands alone."""
    # Plain values first: the ledger commits/rolls back the shared session.
    plan = [(line.id, line.product_id, line.variant_id, line.quantity) for line in lines]
    outcomes: dict[int, str] = {}
    failures: list[StockFailure] = []

    for line_id, product_id, variant_id, quantity in plan:
        try:
            key = stock_service.resolve_stock_unit(product_id, variant_id)
            outcome = stock_service.decrement(key, quantity)
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception(
                "Stock decrement failed for order %s line %s", order_id, line_id
            )
            outcome = STOCK_OUTCOME_ERROR

        outcomes[line_id] = outcome
        if outcome != stock_service.DECREMENT_SUCCESS:
            current_app.logger.warning(
                "Stock discrepancy on order %s: product=%s variant=%s quantity=%s outcome=%s",
                order_id, product_id, variant_id, quantity, outcome,
            )
            failures.append(StockFailure(line_id, product_id, variant_id, quantity, outcome))

    try:
        for line_id, outcome in outcomes.items():
            db.session.execute(
                update(OrderLine)
                .where(OrderLine.id == line_id)
                .values(stock_outcome=outcome)
                .execution_options(synchronize_session=False)
            )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to record stock outcomes for order %s", order_id)

    if failures:
        _flag_for_review(order_id, f"Stock not taken for {len(failures)} line(s)")
    return failures


def _record_created(order_id: int, ctx: SessionContext) -> None:
    def _op():
        order = db.session.get(Order, order_id)
        audit_service.record_transition(order, ACTION_CREATED, ctx.employee_id)
        db.session.commit()

    try:
        run_with_retry(_op)
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to write creation history for order %s", order_id)
        _flag_for_review(order_id, "Creation history record missing")
        raise OrderCommitError(
            "Order was created but its history record could not be written",
            step=STEP_AUDIT,
            order_id=order_id,
        ) from exc


def commit_order(
    ctx: SessionContext,
    terminal: TerminalSession,
    payment_method: str | None,
    amount_tendered_cents: int,
    *,
    target_status: str = ORDER_STATUS_COMPLETED,
    table_id: int | None = None,
    customer_id: int | None = None,
) -> CommitResult:
    """
    Commit the terminal's cart as an order.

    Raises:
        ValidationError: bad input; nothing written
        DuplicateSubmissionError: terminal already committing; nothing written
        TableUnavailableError: another order holds the table; nothing written
        OrderCommitError: a step failed; see .step and .order_id
    """
    _validate_commit(
        terminal.cart.snapshot(), payment_method, amount_tendered_cents, target_status, table_id
    )

    with terminal.guard.hold():
        # A concurrent checkout may have committed and cleared the cart since
        snapshot = terminal.cart.snapshot()
        _validate_commit(snapshot, payment_method, amount_tendered_cents, target_status, table_id)
        if customer_id is None:
            customer_id = snapshot.customer_id

        order = _insert_header(
            ctx, snapshot, payment_method, amount_tendered_cents, target_status, table_id, customer_id
        )
        order_id = order.id

        lines = _insert_lines(order, snapshot)
        failures = _decrement_stock(order_id, lines)

        # Stock has been taken: from here on a retry must not re-submit these lines.
        # Lines added while the checkout was running stay in the cart.
        terminal.cart.discard_committed(snapshot)

        _record_created(order_id, ctx)

        order = db.session.get(Order, order_id)
        if order.status == ORDER_STATUS_COMPLETED:
            notifier.publish(order.id, order.total_cents)

    return CommitResult(order=order, stock_failures=failures)


# =============================================================================
# READ SIDE
# =============================================================================

def get_order(order_id: int) -> Order | None:
    return db.session.get(Order, order_id)


def list_orders(
    *,
    status: str | None = None,
    payment_status: str | None = None,
    needs_review: bool | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[Order], int]:
    query = db.session.query(Order)
    if status:
        query = query.filter(Order.status == status)
    if payment_status:
        query = query.filter(Order.payment_status == payment_status)
    if needs_review is not None:
        query = query.filter(Order.needs_review == needs_review)

    total = query.count()
    limit = max(1, min(limit, 500))
    offset = max(0, offset)
    rows = query.order_by(Order.id.desc()).offset(offset).limit(limit).all()
    return rows, total
