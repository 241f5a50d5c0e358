from __future__ import annotations

from ..extensions import db
from orderengine.time_utils import to_utc_z


ACTION_CREATED = "created"
ACTION_UPDATED = "updated"
ACTION_COMPLETED = "completed"
ACTION_CANCELLED = "cancelled"

HISTORY_ACTIONS = (ACTION_CREATED, ACTION_UPDATED, ACTION_COMPLETED, ACTION_CANCELLED)

EVENT_ORDER_COMPLETED = "order.completed"


class OrderHistory(db.Model):
    """
    Append-only snapshot of an order at each transition.

    IMMUTABLE: rows are written by audit_service.record_transition only. The one
    exception is the opt-in legacy cancellation mirror (AUDIT_LEGACY_CANCEL_SYNC).
    Reporting reads this table, not the live orders row.
    """
    __tablename__ = "order_history"
    __table_args__ = (
        db.Index("ix_order_history_order_created", "order_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    # Snapshots at the moment of the transition
    order_number = db.Column(db.Integer, nullable=False)
    action = db.Column(db.String(16), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    employee_id = db.Column(db.String(64), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "order_number": self.order_number,
            "action": self.action,
            "status": self.status,
            "total_cents": self.total_cents,
            "employee_id": self.employee_id,
            "created_at": to_utc_z(self.created_at),
        }


class CancellationRecord(db.Model):
    """
    Loss/shrink record written once per cancelled order.

    items is a denormalized copy of the lines at cancellation time so the record
    stays meaningful even if products are renamed or removed later.
    """
    __tablename__ = "order_cancellations"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_order_cancellations_order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    order_number = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)
    items = db.Column(db.JSON, nullable=False)
    cancelled_by = db.Column(db.String(64), nullable=False, index=True)
    reason = db.Column(db.String(500), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "order_number": self.order_number,
            "total_cents": self.total_cents,
            "items": self.items,
            "cancelled_by": self.cancelled_by,
            "reason": self.reason,
            "created_at": to_utc_z(self.created_at),
        }


class OrderEvent(db.Model):
    """Outbox of published completion events; pollers track the last id they saw."""
    __tablename__ = "order_events"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(32), nullable=False, default=EVENT_ORDER_COMPLETED, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    total_cents = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "order_id": self.order_id,
            "total_cents": self.total_cents,
            "created_at": to_utc_z(self.created_at),
        }
