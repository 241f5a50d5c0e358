# Overview: Service-layer operations for order settlement; completion, payments and cancellation.

"""
Settlement State Machine

WHY: After the commit pipeline an order only moves forward: it is completed,
paid, or cancelled. Stock is never touched again here.

TRANSITIONS:
- status:  preparing -> completed, preparing -> cancelled, completed -> cancelled
- payment: pending -> partial -> paid (amount_paid_cents only grows)

Every transition is a locked read, a status check, the update and one history
row, all in one transaction. The completion event is published after commit.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db, notifier
from ..models import Order
from ..models.orders import (
    ORDER_STATUS_PREPARING,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_CANCELLED,
    PAYMENT_STATUS_PAID,
)
from ..models.audit import ACTION_UPDATED, ACTION_COMPLETED, ACTION_CANCELLED
from ..validation import ValidationError, ConflictError
from orderengine.time_utils import utcnow
from . import audit_service, catalog_service
from .concurrency import lock_for_update, run_with_retry
from .identity_service import SessionContext
from .order_service import derive_payment_status, validate_payment_method


class SettlementError(ConflictError):
    """Raised for illegal transitions (business conflicts)."""
    pass


class OrderNotFoundError(SettlementError):
    pass


class SettlementPermissionError(SettlementError):
    """Raised when the acting role may not perform the transition."""
    pass


def _load_order_locked(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise OrderNotFoundError(f"Order {order_id} not found")
    return order


def _release_table(order: Order) -> None:
    if order.table_id is None:
        return
    # A table re-seated for a newer order is left alone
    if not catalog_service.release_table(order.table_id, order.id):
        current_app.logger.info(
            "Table %s not released by order %s: no longer its holder", order.table_id, order.id
        )


def _run(op):
    """run_with_retry, with the session left clean when a business rule rejects."""
    try:
        return run_with_retry(op)
    except (SettlementError, ValidationError):
        db.session.rollback()
        raise


# =============================================================================
# TRANSITIONS
# =============================================================================

def complete_order(ctx: SessionContext, order_id: int) -> Order:
    """Mark a preparing order completed. Payment is left as it is."""
    def _op():
        order = _load_order_locked(order_id)
        if order.status != ORDER_STATUS_PREPARING:
            raise SettlementError(f"Cannot complete an order with status {order.status}")

        order.status = ORDER_STATUS_COMPLETED
        order.completed_at = utcnow()
        audit_service.record_transition(order, ACTION_COMPLETED, ctx.employee_id)
        db.session.commit()
        return order

    order = _run(_op)
    current_app.logger.info("Order %s completed by %s", order.id, ctx.employee_id)
    notifier.publish(order.id, order.total_cents)
    return order


def add_payment(ctx: SessionContext, order_id: int, amount_cents: int, payment_method: str) -> Order:
    """
    Record a partial payment.

    Adds to amount_paid_cents; never lowers it and never exceeds the total.
    Status is unchanged.
    """
    if amount_cents is None or amount_cents <= 0:
        raise ValidationError("Payment amount must be positive")
    validate_payment_method(payment_method, required=True)

    def _op():
        order = _load_order_locked(order_id)
        if order.status == ORDER_STATUS_CANCELLED:
            raise SettlementError("Cannot add payment to a cancelled order")
        if order.payment_status == PAYMENT_STATUS_PAID:
            raise SettlementError("Order is already paid")

        new_paid = order.amount_paid_cents + amount_cents
        if new_paid > order.total_cents:
            raise SettlementError(
                f"Payment exceeds balance due ({order.balance_due_cents} cents remaining)"
            )

        order.amount_paid_cents = new_paid
        order.payment_status = derive_payment_status(new_paid, order.total_cents)
        order.payment_method = payment_method
        audit_service.record_transition(order, ACTION_UPDATED, ctx.employee_id)
        db.session.commit()
        return order

    order = _run(_op)
    current_app.logger.info(
        "Payment of %s cents recorded on order %s (%s)", amount_cents, order.id, order.payment_status
    )
    return order


def settle_payment(ctx: SessionContext, order_id: int, payment_method: str) -> Order:
    """
    Settle an order in full.

    amount_paid_cents becomes the total (a full payment, not the remainder),
    payment_status paid, status completed, and the held table is released.
    """
    validate_payment_method(payment_method, required=True)

    def _op():
        order = _load_order_locked(order_id)
        if order.status == ORDER_STATUS_CANCELLED:
            raise SettlementError("Cannot settle a cancelled order")
        if order.status == ORDER_STATUS_COMPLETED and order.payment_status == PAYMENT_STATUS_PAID:
            raise SettlementError("Order is already completed and paid")

        status_changed = order.status != ORDER_STATUS_COMPLETED

        order.amount_paid_cents = order.total_cents
        order.payment_status = PAYMENT_STATUS_PAID
        order.payment_method = payment_method
        if status_changed:
            order.status = ORDER_STATUS_COMPLETED
            order.completed_at = utcnow()
        _release_table(order)

        action = ACTION_COMPLETED if status_changed else ACTION_UPDATED
        audit_service.record_transition(order, action, ctx.employee_id)
        db.session.commit()
        return order, status_changed

    order, status_changed = _run(_op)
    current_app.logger.info("Order %s settled by %s via %s", order.id, ctx.employee_id, payment_method)
    if status_changed:
        notifier.publish(order.id, order.total_cents)
    return order


def cancel_order(ctx: SessionContext, order_id: int, reason: str | None) -> Order:
    """
    Cancel an order with a mandatory reason.

    Writes one CancellationRecord, sets status cancelled, releases the table
    and appends a "cancelled" history row. Stock is NOT restored; use a stock
    adjustment for items that go back on the shelf.
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A cancellation reason is required")

    legacy_sync = bool(current_app.config.get("AUDIT_LEGACY_CANCEL_SYNC", False))

    def _op():
        order = _load_order_locked(order_id)
        if order.status == ORDER_STATUS_CANCELLED:
            raise SettlementError("Order is already cancelled")
        if order.status == ORDER_STATUS_COMPLETED and not ctx.is_admin:
            raise SettlementPermissionError("Only an admin can cancel a completed order")

        audit_service.record_cancellation(order, ctx.employee_id, reason)

        order.status = ORDER_STATUS_CANCELLED
        order.cancelled_at = utcnow()
        _release_table(order)

        entry = audit_service.record_transition(order, ACTION_CANCELLED, ctx.employee_id)
        if legacy_sync:
            audit_service.sync_cancellation_legacy(order, exclude_id=entry.id)
        db.session.commit()
        return order

    order = _run(_op)
    current_app.logger.info("Order %s cancelled by %s: %s", order.id, ctx.employee_id, reason)
    return order
