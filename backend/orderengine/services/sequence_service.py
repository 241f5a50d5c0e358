# Overview: Service-layer operations for order numbering; atomic counter allocation.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import OrderSequence


ORDER_SEQUENCE = "orders"


class SequenceError(Exception):
    """Raised when sequence operations fail."""
    pass


def next_order_number(name: str = ORDER_SEQUENCE) -> int:
    """
    Atomically allocate the next display number for a sequence.

    Runs inside the caller's transaction: the counter row stays write-locked
    until the caller commits, so concurrent terminals never share a number.
    """
    if not name:
        raise SequenceError("sequence name is required")

    stmt = (
        update(OrderSequence)
        .where(OrderSequence.name == name)
        .values(next_number=OrderSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(OrderSequence.next_number)
            .filter_by(name=name)
            .scalar()
        )
        return current - 1

    try:
        with db.session.begin_nested():
            db.session.add(OrderSequence(name=name, next_number=2))
        return 1
    except IntegrityError:
        # Another terminal created the row first
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise
        current = (
            db.session.query(OrderSequence.next_number)
            .filter_by(name=name)
            .scalar()
        )
        return current - 1
