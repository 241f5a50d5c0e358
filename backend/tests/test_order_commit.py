"""Order commit pipeline: happy path, partial stock failure, single-flight, step failures."""

import pytest
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from orderengine.extensions import db, notifier
from orderengine.models import Order, OrderLine, OrderHistory, OrderEvent, Product, DiningTable
from orderengine.models.catalog import TABLE_STATUS_OCCUPIED
from orderengine.services import order_service, stock_service, audit_service
from orderengine.services.concurrency import DuplicateSubmissionError, SingleFlightGuard
from orderengine.services.order_service import OrderCommitError, TableUnavailableError, commit_order
from orderengine.services.terminal_service import TerminalSession
from orderengine.services.cart_service import Cart
from orderengine.validation import ValidationError


def _stock(product_id):
    return db.session.query(Product.stock_quantity).filter_by(id=product_id).scalar()


def test_two_of_a_paid_in_full(db_session, cashier, terminal, product_a):
    terminal.cart.add_line(product_a.id, quantity=2)

    result = commit_order(cashier, terminal, "cash", 2000)

    order = result.order
    assert order.total_cents == 2000
    assert order.amount_paid_cents == 2000
    assert order.payment_status == "paid"
    assert order.status == "completed"
    assert order.completed_at is not None
    assert order.order_number == 1
    assert order.employee_id == "emp-cashier"
    assert order.terminal_id == "T1"
    assert not result.needs_review

    assert _stock(product_a.id) == 8
    lines = db.session.query(OrderLine).filter_by(order_id=order.id).all()
    assert len(lines) == 1
    assert lines[0].quantity == 2
    assert lines[0].stock_outcome == stock_service.DECREMENT_SUCCESS

    assert len(terminal.cart) == 0


def test_order_numbers_are_sequential(db_session, cashier, terminal, product_a):
    numbers = []
    for _ in range(3):
        terminal.cart.add_line(product_a.id)
        numbers.append(commit_order(cashier, terminal, "card", 1000).order.order_number)
    assert numbers == [1, 2, 3]


def test_partial_tender_sets_partial_status(db_session, cashier, terminal, product_b):
    terminal.cart.add_line(product_b.id, quantity=2)

    order = commit_order(cashier, terminal, "cash", 2000).order

    assert order.total_cents == 5000
    assert order.amount_paid_cents == 2000
    assert order.payment_status == "partial"
    assert order.balance_due_cents == 3000


def test_deferred_order_with_nothing_tendered(db_session, cashier, terminal, product_a):
    terminal.cart.add_line(product_a.id)

    order = commit_order(cashier, terminal, None, 0, target_status="preparing").order

    assert order.status == "preparing"
    assert order.payment_status == "pending"
    assert order.payment_method is None
    assert order.completed_at is None
    assert db.session.query(OrderEvent).count() == 0


def test_creation_is_recorded_once(db_session, cashier, terminal, product_a):
    terminal.cart.add_line(product_a.id)
    order = commit_order(cashier, terminal, "cash", 1000).order

    history = audit_service.get_order_history(order.id)
    assert [(h.action, h.status, h.total_cents) for h in history] == [("created", "completed", 1000)]
    assert history[0].order_number == order.order_number


def test_completed_commit_publishes_event(db_session, cashier, terminal, product_a):
    received = []
    notifier.subscribe(received.append)
    try:
        terminal.cart.add_line(product_a.id)
        order = commit_order(cashier, terminal, "digital", 1000).order
        assert notifier.drain(timeout=2.0)
    finally:
        notifier.unsubscribe(received.append)

    assert [(e.order_id, e.total_cents) for e in received] == [(order.id, 1000)]
    events = db.session.query(OrderEvent).all()
    assert len(events) == 1
    assert events[0].event_type == "order.completed"


@pytest.mark.parametrize(
    "method, tendered, target, message",
    [
        ("cash", -1, "completed", "negative"),
        ("cash", 1001, "completed", "exceeds"),
        ("cash", 0, "completed", "positive"),
        ("bitcoin", 1000, "completed", "Invalid payment method"),
        (None, 1000, "completed", "payment_method"),
        ("cash", 1000, "cancelled", "Invalid target status"),
    ],
)
def test_invalid_input_writes_nothing(db_session, cashier, terminal, product_a, method, tendered, target, message):
    terminal.cart.add_line(product_a.id)

    with pytest.raises(ValidationError, match=message):
        commit_order(cashier, terminal, method, tendered, target_status=target)

    assert db.session.query(Order).count() == 0
    assert _stock(product_a.id) == 10
    assert len(terminal.cart) == 1


def test_empty_cart_rejected(db_session, cashier, terminal):
    with pytest.raises(ValidationError, match="empty"):
        commit_order(cashier, terminal, "cash", 100)


def test_table_is_held_and_must_be_available(db_session, cashier, terminal, product_a, dining_table):
    terminal.cart.add_line(product_a.id)
    order = commit_order(cashier, terminal, None, 0, target_status="preparing", table_id=dining_table.id).order

    assert order.table_id == dining_table.id
    table = db.session.get(DiningTable, dining_table.id)
    assert (table.status, table.held_by_order_id) == (TABLE_STATUS_OCCUPIED, order.id)

    terminal.cart.add_line(product_a.id)
    with pytest.raises(ValidationError, match="not available"):
        commit_order(cashier, terminal, None, 0, target_status="preparing", table_id=dining_table.id)


def test_table_taken_after_validation_rejects_whole_checkout(
    db_session, cashier, terminal, product_a, dining_table, monkeypatch
):
    terminal.cart.add_line(product_a.id)
    first = commit_order(cashier, terminal, None, 0, target_status="preparing", table_id=dining_table.id).order

    # Both terminals saw the table free; the claim decides
    monkeypatch.setattr(order_service, "_validate_commit", lambda *args: None)
    terminal.cart.add_line(product_a.id, quantity=2)

    with pytest.raises(TableUnavailableError):
        commit_order(cashier, terminal, None, 0, target_status="preparing", table_id=dining_table.id)

    assert db.session.query(Order).count() == 1
    assert _stock(product_a.id) == 9
    assert terminal.cart.lines[0].quantity == 2
    table = db.session.get(DiningTable, dining_table.id)
    assert (table.status, table.held_by_order_id) == (TABLE_STATUS_OCCUPIED, first.id)


def test_unknown_table_rejected(db_session, cashier, terminal, product_a):
    terminal.cart.add_line(product_a.id)
    with pytest.raises(ValidationError, match="not found"):
        commit_order(cashier, terminal, "cash", 1000, table_id=999)


def test_insufficient_stock_keeps_order_and_flags_review(db_session, cashier, terminal, product_a, product_b):
    terminal.cart.add_line(product_a.id)
    terminal.cart.add_line(product_b.id, quantity=3)
    # Another terminal sold most of B after it went into this cart
    stock_service.adjust(stock_service.resolve_stock_unit(product_b.id), -3)

    result = commit_order(cashier, terminal, "cash", 1000 + 7500)

    order = db.session.get(Order, result.order.id)
    assert order.status == "completed"
    assert order.needs_review is True
    assert "1 line" in order.review_note
    assert len(result.stock_failures) == 1
    failure = result.stock_failures[0]
    assert failure.product_id == product_b.id
    assert failure.outcome == stock_service.DECREMENT_INSUFFICIENT_STOCK

    outcomes = {
        line.product_id: line.stock_outcome
        for line in db.session.query(OrderLine).filter_by(order_id=order.id)
    }
    assert outcomes == {
        product_a.id: stock_service.DECREMENT_SUCCESS,
        product_b.id: stock_service.DECREMENT_INSUFFICIENT_STOCK,
    }
    assert _stock(product_a.id) == 9
    assert _stock(product_b.id) == 1


def test_storage_error_on_one_decrement_does_not_stop_the_others(
    db_session, cashier, terminal, product_a, product_b, monkeypatch
):
    terminal.cart.add_line(product_a.id)
    terminal.cart.add_line(product_b.id)
    real_decrement = stock_service.decrement

    def flaky(key, quantity):
        if key.product_id == product_a.id:
            raise SQLAlchemyError("storage unavailable")
        return real_decrement(key, quantity)

    monkeypatch.setattr(stock_service, "decrement", flaky)

    result = commit_order(cashier, terminal, "cash", 3500)

    assert [f.outcome for f in result.stock_failures] == [order_service.STOCK_OUTCOME_ERROR]
    assert _stock(product_b.id) == 3
    assert db.session.get(Order, result.order.id).needs_review is True


def test_item_rung_up_during_checkout_stays_in_cart(
    db_session, cashier, terminal, product_a, product_b, monkeypatch
):
    terminal.cart.add_line(product_a.id, quantity=2)
    real_decrement = stock_service.decrement

    def ring_up_more(key, quantity):
        terminal.cart.add_line(product_a.id)
        terminal.cart.add_line(product_b.id)
        return real_decrement(key, quantity)

    monkeypatch.setattr(stock_service, "decrement", ring_up_more)

    order = commit_order(cashier, terminal, "cash", 2000).order

    assert order.total_cents == 2000
    assert [(line.product_id, line.quantity) for line in terminal.cart.lines] == [
        (product_a.id, 1),
        (product_b.id, 1),
    ]


def test_prices_are_captured_at_add_time(db_session, cashier, terminal, product_a):
    terminal.cart.add_line(product_a.id, quantity=2)
    product_a.base_price_cents = 1500
    db.session.commit()

    order = commit_order(cashier, terminal, "cash", 2000).order
    line = db.session.query(OrderLine).filter_by(order_id=order.id).one()
    assert line.unit_price_cents == 1000

    product_a.base_price_cents = 9900
    db.session.commit()
    db.session.expire_all()
    line = db.session.query(OrderLine).filter_by(order_id=order.id).one()
    assert (line.unit_price_cents, line.subtotal_cents) == (1000, 2000)


def test_second_submission_while_first_in_flight_is_rejected(db_session, cashier, terminal, product_a, monkeypatch):
    terminal.cart.add_line(product_a.id, quantity=2)
    real_decrement = stock_service.decrement
    rejected = []

    def double_tap(key, quantity):
        try:
            commit_order(cashier, terminal, "cash", 2000)
        except DuplicateSubmissionError as exc:
            rejected.append(exc)
        return real_decrement(key, quantity)

    monkeypatch.setattr(stock_service, "decrement", double_tap)

    commit_order(cashier, terminal, "cash", 2000)

    assert len(rejected) == 1
    assert db.session.query(Order).count() == 1
    assert _stock(product_a.id) == 8


def test_held_guard_rejects_without_writing(db_session, cashier, terminal, product_a):
    terminal.cart.add_line(product_a.id)

    with terminal.guard.hold():
        with pytest.raises(DuplicateSubmissionError):
            commit_order(cashier, terminal, "cash", 1000)

    assert db.session.query(Order).count() == 0
    assert len(terminal.cart) == 1


def test_cooldown_rejects_immediate_resubmit(db_session, cashier, product_a):
    terminal = TerminalSession("T9", Cart(), SingleFlightGuard(cooldown_seconds=60))
    terminal.cart.add_line(product_a.id)
    commit_order(cashier, terminal, "cash", 1000)

    terminal.cart.add_line(product_a.id)
    with pytest.raises(DuplicateSubmissionError, match="cooling down"):
        commit_order(cashier, terminal, "cash", 1000)
    assert db.session.query(Order).count() == 1


def test_header_failure_leaves_nothing_behind(db_session, cashier, terminal, product_a, monkeypatch):
    terminal.cart.add_line(product_a.id)

    def broken(*args, **kwargs):
        raise IntegrityError("UPDATE order_sequences", {}, Exception("disk full"))

    monkeypatch.setattr(order_service, "next_order_number", broken)

    with pytest.raises(OrderCommitError) as excinfo:
        commit_order(cashier, terminal, "cash", 1000)

    assert excinfo.value.step == "insert_header"
    assert excinfo.value.order_id is None
    assert excinfo.value.retryable
    assert db.session.query(Order).count() == 0
    assert _stock(product_a.id) == 10
    assert len(terminal.cart) == 1
    assert not terminal.guard.busy


def test_line_failure_flags_the_order(db_session, cashier, terminal, product_a, monkeypatch):
    terminal.cart.add_line(product_a.id)

    def broken_add_all(objects):
        raise IntegrityError("INSERT INTO order_lines", {}, Exception("constraint"))

    monkeypatch.setattr(db.session, "add_all", broken_add_all, raising=False)

    with pytest.raises(OrderCommitError) as excinfo:
        commit_order(cashier, terminal, "cash", 1000)

    assert excinfo.value.step == "insert_lines"
    assert "items could not be saved" in str(excinfo.value)
    order = db.session.get(Order, excinfo.value.order_id)
    assert order.needs_review is True
    assert db.session.query(OrderLine).count() == 0
    assert _stock(product_a.id) == 10


def test_audit_failure_is_reported_with_order_id(db_session, cashier, terminal, product_a, monkeypatch):
    terminal.cart.add_line(product_a.id)

    def broken(*args, **kwargs):
        raise SQLAlchemyError("history table locked")

    monkeypatch.setattr(audit_service, "record_transition", broken)

    with pytest.raises(OrderCommitError) as excinfo:
        commit_order(cashier, terminal, "cash", 1000)

    assert excinfo.value.step == "audit"
    order = db.session.get(Order, excinfo.value.order_id)
    assert order.needs_review is True
    assert _stock(product_a.id) == 9
    assert db.session.query(OrderHistory).count() == 0
    # Stock was taken, so the cart must not be resubmittable
    assert len(terminal.cart) == 0


def test_customer_id_recorded(db_session, cashier, terminal, product_a):
    terminal.cart.add_line(product_a.id)
    terminal.cart.customer_id = 42
    order = commit_order(cashier, terminal, "cash", 1000).order
    assert order.customer_id == 42


@pytest.mark.parametrize(
    "paid, total, expected",
    [(0, 5000, "pending"), (2000, 5000, "partial"), (5000, 5000, "paid")],
)
def test_derive_payment_status(paid, total, expected):
    assert order_service.derive_payment_status(paid, total) == expected
