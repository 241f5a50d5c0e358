# Overview: Append-only order history and cancellation records.

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..models import Order, OrderHistory, CancellationRecord
from ..models.audit import HISTORY_ACTIONS, ACTION_CANCELLED
"""
Order History Invariants (authoritative)

- One OrderHistory row per state transition, snapshotting status, total and
  order number at that instant.
- Rows are written inside the same DB transaction as the change they record;
  the caller commits.
- No deletes. No updates, except the opt-in legacy cancellation mirror below.
- The live orders row may be corrected later; history keeps what happened.
"""


class AuditError(Exception):
    """Raised for invalid audit writes."""
    pass


def record_transition(order: Order, action: str, actor_id: str | None) -> OrderHistory:
    """Append a history row for order in its current state. Flushes, does not commit."""
    if action not in HISTORY_ACTIONS:
        raise AuditError(f"Unknown history action: {action}")

    entry = OrderHistory(
        order_id=order.id,
        order_number=order.order_number,
        action=action,
        status=order.status,
        total_cents=order.total_cents,
        employee_id=actor_id,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def snapshot_lines(order: Order) -> list[dict]:
    """Denormalized copy of an order's lines, names included."""
    items = []
    for line in order.lines:
        items.append({
            "product_id": line.product_id,
            "product_name": line.product.name if line.product else None,
            "variant_id": line.variant_id,
            "variant_name": line.variant.name if line.variant else None,
            "quantity": line.quantity,
            "unit_price_cents": line.unit_price_cents,
            "subtotal_cents": line.subtotal_cents,
        })
    return items


def record_cancellation(order: Order, actor_id: str, reason: str) -> CancellationRecord:
    """Write the one CancellationRecord for an order. Flushes, does not commit."""
    reason = (reason or "").strip()
    if not reason:
        raise AuditError("Cancellation reason is required")

    record = CancellationRecord(
        order_id=order.id,
        order_number=order.order_number,
        total_cents=order.total_cents,
        items=snapshot_lines(order),
        cancelled_by=actor_id,
        reason=reason,
    )
    db.session.add(record)
    db.session.flush()
    return record


def sync_cancellation_legacy(order: Order, *, exclude_id: int | None = None) -> OrderHistory | None:
    """
    Mirror a cancellation onto the latest earlier history row of the order.

    Legacy dashboards read only the newest row per order and expect it to say
    "cancelled". Best effort: returns None when there is nothing to update.
    """
    query = db.session.query(OrderHistory).filter(OrderHistory.order_id == order.id)
    if exclude_id is not None:
        query = query.filter(OrderHistory.id != exclude_id)
    entry = query.order_by(OrderHistory.id.desc()).first()
    if entry is None:
        return None

    entry.status = order.status
    entry.action = ACTION_CANCELLED
    db.session.flush()
    return entry


def get_order_history(order_id: int) -> list[OrderHistory]:
    return (
        db.session.query(OrderHistory)
        .filter_by(order_id=order_id)
        .order_by(OrderHistory.id)
        .all()
    )


def list_history(
    *,
    order_id: int | None = None,
    action: str | None = None,
    employee_id: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[OrderHistory], int]:
    query = db.session.query(OrderHistory)
    if order_id is not None:
        query = query.filter(OrderHistory.order_id == order_id)
    if action:
        if action not in HISTORY_ACTIONS:
            raise AuditError(f"Unknown history action: {action}")
        query = query.filter(OrderHistory.action == action)
    if employee_id:
        query = query.filter(OrderHistory.employee_id == employee_id)
    if since is not None:
        query = query.filter(OrderHistory.created_at >= since)
    if until is not None:
        query = query.filter(OrderHistory.created_at <= until)

    total = query.count()
    limit = max(1, min(limit, 500))
    offset = max(0, offset)
    rows = query.order_by(OrderHistory.id.desc()).offset(offset).limit(limit).all()
    return rows, total


def list_cancellations(
    *,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[CancellationRecord], int]:
    query = db.session.query(CancellationRecord)
    if since is not None:
        query = query.filter(CancellationRecord.created_at >= since)
    if until is not None:
        query = query.filter(CancellationRecord.created_at <= until)

    total = query.count()
    limit = max(1, min(limit, 500))
    offset = max(0, offset)
    rows = query.order_by(CancellationRecord.id.desc()).offset(offset).limit(limit).all()
    return rows, total
