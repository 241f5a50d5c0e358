"""HTTP surface: identity, cart, checkout, settlement, stock and reporting routes."""

import pytest
from sqlalchemy.exc import IntegrityError

from orderengine.services import order_service
from orderengine.services.terminal_service import get_terminal


def _add(client, headers, product_id, quantity=1, **extra):
    return client.post(
        "/api/terminals/T1/cart/lines",
        json={"product_id": product_id, "quantity": quantity, **extra},
        headers=headers,
    )


def _checkout(client, headers, **body):
    return client.post("/api/terminals/T1/checkout", json=body, headers=headers)


@pytest.fixture
def checked_out(client, cashier_headers, product_b):
    """Completed order, 50.00 total, 20.00 paid."""
    _add(client, cashier_headers, product_b.id, 2)
    resp = _checkout(client, cashier_headers, payment_method="cash", amount_tendered_cents=2000)
    assert resp.status_code == 201
    return resp.get_json()["order"]


def test_health(client, db_session):
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["status"] == "healthy"
    assert data["checks"]["database"]["status"] == "healthy"


def test_identity_headers_required(client, db_session):
    resp = client.get("/api/terminals/T1/cart")
    assert resp.status_code == 401
    resp = client.get("/api/orders", headers={"X-Employee-Id": "emp-1"})
    assert resp.status_code == 401


def test_cart_lifecycle(client, db_session, cashier_headers, product_a, product_b):
    resp = _add(client, cashier_headers, product_a.id, 2, note="to go")
    assert resp.status_code == 201
    assert resp.get_json()["cart"]["total_cents"] == 2000

    _add(client, cashier_headers, product_b.id)
    resp = client.patch("/api/terminals/T1/cart/lines/0", json={"delta": 1}, headers=cashier_headers)
    assert resp.status_code == 200
    cart = resp.get_json()["cart"]
    assert [line["quantity"] for line in cart["lines"]] == [3, 1]

    resp = client.delete("/api/terminals/T1/cart/lines/1", headers=cashier_headers)
    assert resp.get_json()["cart"]["total_cents"] == 3000

    resp = client.delete("/api/terminals/T1/cart", headers=cashier_headers)
    assert resp.get_json()["cart"]["lines"] == []


def test_cart_errors(client, db_session, cashier_headers, product_b):
    assert _add(client, cashier_headers, 9999).status_code == 400
    assert _add(client, cashier_headers, product_b.id, "2.5").status_code == 400

    resp = _add(client, cashier_headers, product_b.id, 5)
    assert resp.status_code == 409
    assert resp.get_json()["details"]["available"] == 4

    resp = client.patch("/api/terminals/T1/cart/lines/7", json={"delta": 1}, headers=cashier_headers)
    assert resp.status_code == 404
    resp = client.delete("/api/terminals/T1/cart/lines/7", headers=cashier_headers)
    assert resp.status_code == 404


def test_checkout(client, db_session, cashier_headers, product_a):
    _add(client, cashier_headers, product_a.id, 2)
    resp = _checkout(client, cashier_headers, payment_method="cash", amount_tendered_cents=2000)

    assert resp.status_code == 201
    data = resp.get_json()
    assert data["needs_review"] is False
    assert data["stock_failures"] == []
    order = data["order"]
    assert (order["status"], order["payment_status"], order["total_cents"]) == ("completed", "paid", 2000)
    assert order["terminal_id"] == "T1"
    assert order["lines"][0]["stock_outcome"] == "success"

    resp = client.get("/api/terminals/T1/cart", headers=cashier_headers)
    assert resp.get_json()["cart"]["lines"] == []


def test_checkout_validation(client, db_session, cashier_headers, product_a):
    resp = _checkout(client, cashier_headers, payment_method="cash", amount_tendered_cents=100)
    assert resp.status_code == 400
    assert "empty" in resp.get_json()["error"]

    _add(client, cashier_headers, product_a.id)
    resp = _checkout(client, cashier_headers, payment_method="cash")
    assert resp.status_code == 400
    resp = _checkout(client, cashier_headers, payment_method="cash", amount_tendered_cents=5000)
    assert resp.status_code == 400


def test_checkout_rejected_while_in_flight(app, client, db_session, cashier_headers, product_a):
    _add(client, cashier_headers, product_a.id)
    with app.app_context():
        terminal = get_terminal("T1")

    with terminal.guard.hold():
        resp = _checkout(client, cashier_headers, payment_method="cash", amount_tendered_cents=1000)

    assert resp.status_code == 409
    assert resp.get_json()["step"] == "single_flight"


def test_checkout_storage_failure_is_503(client, db_session, cashier_headers, product_a, monkeypatch):
    def broken(*args, **kwargs):
        raise IntegrityError("UPDATE order_sequences", {}, Exception("disk I/O error"))

    monkeypatch.setattr(order_service, "next_order_number", broken)
    _add(client, cashier_headers, product_a.id)

    resp = _checkout(client, cashier_headers, payment_method="cash", amount_tendered_cents=1000)

    assert resp.status_code == 503
    data = resp.get_json()
    assert data["step"] == "insert_header"
    assert data["order_id"] is None
    assert data["retryable"] is True


def test_order_reads(client, db_session, cashier_headers, checked_out):
    resp = client.get("/api/orders", headers=cashier_headers)
    assert resp.status_code == 200
    assert resp.get_json()["total"] == 1

    resp = client.get("/api/orders?status=cancelled", headers=cashier_headers)
    assert resp.get_json()["total"] == 0
    resp = client.get("/api/orders?status=bogus", headers=cashier_headers)
    assert resp.status_code == 400

    resp = client.get(f"/api/orders/{checked_out['id']}", headers=cashier_headers)
    assert resp.get_json()["order"]["lines"][0]["quantity"] == 2
    assert client.get("/api/orders/999", headers=cashier_headers).status_code == 404


def test_payment_and_settle(client, db_session, cashier_headers, checked_out):
    order_id = checked_out["id"]

    resp = client.post(
        f"/api/orders/{order_id}/payments",
        json={"amount_cents": 1000, "payment_method": "card"},
        headers=cashier_headers,
    )
    assert resp.status_code == 200
    assert resp.get_json()["order"]["amount_paid_cents"] == 3000

    resp = client.post(
        f"/api/orders/{order_id}/payments",
        json={"amount_cents": 9000, "payment_method": "card"},
        headers=cashier_headers,
    )
    assert resp.status_code == 409

    resp = client.post(f"/api/orders/{order_id}/settle", json={"payment_method": "cash"}, headers=cashier_headers)
    assert resp.status_code == 200
    order = resp.get_json()["order"]
    assert (order["amount_paid_cents"], order["payment_status"]) == (5000, "paid")

    resp = client.post(f"/api/orders/{order_id}/settle", json={"payment_method": "cash"}, headers=cashier_headers)
    assert resp.status_code == 409

    resp = client.post("/api/orders/999/settle", json={"payment_method": "cash"}, headers=cashier_headers)
    assert resp.status_code == 404


def test_complete_deferred_order(client, db_session, cashier_headers, product_a):
    _add(client, cashier_headers, product_a.id)
    resp = _checkout(client, cashier_headers, amount_tendered_cents=0, target_status="preparing")
    assert resp.status_code == 201
    order_id = resp.get_json()["order"]["id"]

    resp = client.post(f"/api/orders/{order_id}/complete", headers=cashier_headers)
    assert resp.status_code == 200
    assert resp.get_json()["order"]["status"] == "completed"

    resp = client.post(f"/api/orders/{order_id}/complete", headers=cashier_headers)
    assert resp.status_code == 409


def test_cancel(client, db_session, cashier_headers, admin_headers, checked_out):
    order_id = checked_out["id"]

    resp = client.post(f"/api/orders/{order_id}/cancel", json={"reason": "  "}, headers=admin_headers)
    assert resp.status_code == 400

    resp = client.post(f"/api/orders/{order_id}/cancel", json={"reason": "wrong order"}, headers=cashier_headers)
    assert resp.status_code == 403

    resp = client.post(f"/api/orders/{order_id}/cancel", json={"reason": "wrong order"}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.get_json()["order"]["status"] == "cancelled"

    resp = client.get(f"/api/orders/{order_id}/history", headers=cashier_headers)
    assert [h["action"] for h in resp.get_json()["history"]] == ["created", "cancelled"]

    resp = client.get("/api/cancellations", headers=cashier_headers)
    data = resp.get_json()
    assert data["total"] == 1
    assert data["cancellations"][0]["reason"] == "wrong order"


def test_review_queue(client, db_session, cashier_headers, product_a, product_b):
    _add(client, cashier_headers, product_a.id)
    _add(client, cashier_headers, product_b.id, 4)
    adjust = client.post(
        "/api/stock/adjust",
        json={"product_id": product_b.id, "delta": -4},
        headers={**cashier_headers, "X-Employee-Role": "admin"},
    )
    assert adjust.status_code == 200

    resp = _checkout(client, cashier_headers, payment_method="cash", amount_tendered_cents=11000)
    assert resp.status_code == 201
    assert resp.get_json()["needs_review"] is True
    assert resp.get_json()["stock_failures"][0]["outcome"] == "insufficient_stock"

    resp = client.get("/api/orders/review", headers=cashier_headers)
    assert resp.get_json()["total"] == 1


def test_stock_routes(client, db_session, cashier_headers, admin_headers, sized_product):
    product, small, _ = sized_product

    resp = client.get(f"/api/stock/products/{product.id}", headers=cashier_headers)
    assert resp.status_code == 200
    assert resp.get_json()["counted_by"] == "variant"
    assert client.get("/api/stock/products/999", headers=cashier_headers).status_code == 404

    body = {"product_id": product.id, "variant_id": small.id, "delta": 2, "note": "delivery"}
    assert client.post("/api/stock/adjust", json=body, headers=cashier_headers).status_code == 403

    resp = client.post("/api/stock/adjust", json=body, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.get_json()["stock_quantity"] == 7

    resp = client.post("/api/stock/adjust", json={**body, "delta": -50}, headers=admin_headers)
    assert resp.status_code == 409

    resp = client.post("/api/stock/adjust", json={"product_id": product.id, "delta": 1}, headers=admin_headers)
    assert resp.status_code == 404


def test_history_and_events(client, db_session, cashier_headers, checked_out):
    resp = client.get("/api/history?action=created", headers=cashier_headers)
    assert resp.status_code == 200
    assert resp.get_json()["total"] == 1

    assert client.get("/api/history?action=nope", headers=cashier_headers).status_code == 400
    assert client.get("/api/history?since=yesterday", headers=cashier_headers).status_code == 400

    resp = client.get("/api/events?after_id=0", headers=cashier_headers)
    data = resp.get_json()
    assert [e["order_id"] for e in data["events"]] == [checked_out["id"]]

    resp = client.get(f"/api/events?after_id={data['last_id']}", headers=cashier_headers)
    assert resp.get_json()["events"] == []


def test_cors_headers(client, db_session):
    resp = client.get("/health", headers={"Origin": "http://localhost:5173"})
    assert resp.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"
    assert "X-Terminal-Id" in resp.headers["Access-Control-Allow-Headers"]


def test_unknown_route_and_wrong_method_return_json(client, db_session, cashier_headers):
    resp = client.get("/api/orders/not-a-number", headers=cashier_headers)
    assert resp.status_code == 404
    assert resp.is_json
    assert resp.get_json()["error"] == "Not found"

    resp = client.put("/api/orders/1/cancel", json={}, headers=cashier_headers)
    assert resp.status_code == 405
    assert resp.is_json
    assert resp.get_json()["error"] == "Method not allowed"


def test_checkout_conflicts_when_table_already_claimed(
    client, db_session, cashier_headers, product_a, dining_table, monkeypatch
):
    _add(client, cashier_headers, product_a.id)
    first = _checkout(
        client, cashier_headers, amount_tendered_cents=0, target_status="preparing", table_id=dining_table.id
    )
    assert first.status_code == 201

    monkeypatch.setattr(order_service, "_validate_commit", lambda *args: None)
    _add(client, cashier_headers, product_a.id)
    resp = _checkout(
        client, cashier_headers, amount_tendered_cents=0, target_status="preparing", table_id=dining_table.id
    )

    assert resp.status_code == 409
    assert resp.get_json()["step"] == "hold_table"
    assert len(get_terminal("T1").cart) == 1
