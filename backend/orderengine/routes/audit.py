# backend/orderengine/routes/audit.py
"""
Reporting reads: order history, cancellations and the completion event outbox.

Time semantics:
- since/until accept ISO-8601 datetimes with Z/offsets; normalized to UTC-naive.
- Both bounds are inclusive.
"""
from flask import Blueprint, request, jsonify

from ..decorators import require_identity
from ..services import audit_service
from ..services.audit_service import AuditError
from ..services.notifier_service import list_events
from orderengine.time_utils import parse_iso_datetime
from ..validation import ValidationError, optional_int


audit_bp = Blueprint("audit", __name__, url_prefix="/api")


def _time_window():
    try:
        since = parse_iso_datetime(request.args.get("since"))
        until = parse_iso_datetime(request.args.get("until"))
    except ValueError:
        raise ValidationError("since/until must be ISO-8601 datetimes")
    return since, until


@audit_bp.get("/history")
@require_identity
def history_route():
    """Query params: order_id, action, employee_id, since, until, limit, offset."""
    try:
        since, until = _time_window()
        rows, total = audit_service.list_history(
            order_id=optional_int(request.args, "order_id"),
            action=request.args.get("action"),
            employee_id=request.args.get("employee_id"),
            since=since,
            until=until,
            limit=optional_int(request.args, "limit", default=100),
            offset=optional_int(request.args, "offset", default=0),
        )
        return jsonify({"history": [r.to_dict() for r in rows], "total": total}), 200
    except (ValidationError, AuditError) as e:
        return jsonify({"error": str(e)}), 400


@audit_bp.get("/cancellations")
@require_identity
def cancellations_route():
    try:
        since, until = _time_window()
        rows, total = audit_service.list_cancellations(
            since=since,
            until=until,
            limit=optional_int(request.args, "limit", default=100),
            offset=optional_int(request.args, "offset", default=0),
        )
        return jsonify({"cancellations": [r.to_dict() for r in rows], "total": total}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@audit_bp.get("/events")
@require_identity
def events_route():
    """
    Completion event outbox, oldest first.

    Pollers pass after_id = the last id they processed. Delivery is
    at-least-once; consumers must be idempotent on event id.
    """
    try:
        after_id = optional_int(request.args, "after_id", default=0)
        limit = optional_int(request.args, "limit", default=100)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    events = list_events(after_id=after_id, limit=limit)
    last_id = events[-1].id if events else after_id
    return jsonify({"events": [e.to_dict() for e in events], "last_id": last_id}), 200
