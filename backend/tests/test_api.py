"""
HTTP API tests over the Flask test client.

Covers actor headers, role checks, error translation and an end-to-end
shift: open session, POS order, split payment, close, audit.
"""

import pytest

from restopos.services import session_service


CART = [{"item_id": "biryani", "name": "Chicken Biryani", "quantity": 2, "unit_price": "500.00"}]


def _place_order(client, headers, **extra):
    body = {"branch_id": 1, "order_type": "pickup", "items": CART}
    body.update(extra)
    return client.post('/api/orders', json=body, headers=headers)


# =============================================================================
# SYSTEM & AUTH
# =============================================================================

def test_health(client, db_session):
    response = client.get('/api/health')
    assert response.status_code == 200
    data = response.get_json()
    assert data["status"] == "ok"
    assert data["checks"]["database"]["status"] == "healthy"


def test_missing_role_header_is_401(client, db_session):
    response = _place_order(client, {})
    assert response.status_code == 401
    assert response.get_json()["code"] == "AUTH_REQUIRED"


def test_unknown_role_is_401(client, db_session):
    response = _place_order(client, {'X-Actor-Role': 'manager'})
    assert response.status_code == 401


def test_staff_only_endpoint_denies_customer(client, db_session, customer_headers):
    response = client.get('/api/orders?branch_id=1', headers=customer_headers)
    assert response.status_code == 403
    assert response.get_json()["code"] == "PERMISSION_DENIED"


def test_cors_header_for_allowed_origin(client, db_session):
    response = client.get('/api/health', headers={'Origin': 'http://localhost:5173'})
    assert response.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"


# =============================================================================
# ORDERS
# =============================================================================

def test_customer_places_and_reads_order(client, db_session, customer_headers):
    response = _place_order(client, customer_headers, expected_total="1000.00")
    assert response.status_code == 201
    order = response.get_json()["order"]
    assert order["total"] == "1000.00"
    assert order["status"] == "pending"
    assert order["customer_id"] == 7

    response = client.get(f'/api/orders/{order["id"]}', headers=customer_headers)
    assert response.status_code == 200

    other = {'X-Actor-Id': '8', 'X-Actor-Role': 'customer'}
    assert client.get(f'/api/orders/{order["id"]}', headers=other).status_code == 404


def test_validation_error_shape(client, db_session, customer_headers):
    response = _place_order(client, customer_headers, items=[{"item_id": "x", "quantity": 0, "unit_price": "1"}])
    assert response.status_code == 400
    body = response.get_json()
    assert body["code"] == "INVALID_ORDER"
    assert body["kind"] == "validation"
    assert body["field"] == "items[0].quantity"


def test_status_changes_over_http(client, db_session, customer_headers, staff_headers):
    order_id = _place_order(client, customer_headers).get_json()["order"]["id"]

    response = client.post(f'/api/orders/{order_id}/status', json={"status": "preparing"}, headers=customer_headers)
    assert response.status_code == 403
    assert response.get_json()["code"] == "TRANSITION_FORBIDDEN"

    response = client.post(f'/api/orders/{order_id}/status', json={"status": "ready"}, headers=staff_headers)
    assert response.status_code == 409
    assert response.get_json()["code"] == "INVALID_TRANSITION"
    assert response.get_json()["details"]["allowed"] == ["cancelled", "preparing"]

    response = client.post(f'/api/orders/{order_id}/status', json={"status": "preparing"}, headers=staff_headers)
    assert response.status_code == 200
    assert response.get_json()["order"]["status"] == "preparing"

    events = client.get(f'/api/orders/{order_id}/events', headers=staff_headers).get_json()["events"]
    assert [e["event_type"] for e in events][-1] == "kitchen.ticket"


def test_kitchen_ticket_polling(client, db_session, customer_headers, staff_headers):
    _place_order(client, customer_headers)
    _place_order(client, customer_headers)

    data = client.get('/api/kitchen/tickets?branch_id=1', headers=staff_headers).get_json()
    assert len(data["tickets"]) == 2
    assert data["tickets"][0]["items"][0]["item_id"] == "biryani"

    after = client.get(f'/api/kitchen/tickets?branch_id=1&after_id={data["last_id"]}', headers=staff_headers)
    assert after.get_json()["tickets"] == []


# =============================================================================
# DISCOUNTS & DELIVERY
# =============================================================================

def test_manual_discount_quote_is_staff_only(client, db_session, customer_headers, staff_headers):
    body = {"subtotal": "1000.00", "discount_type": "percentage", "value": "15"}
    assert client.post('/api/discounts/manual', json=body, headers=customer_headers).status_code == 403

    response = client.post('/api/discounts/manual', json=body, headers=staff_headers)
    assert response.status_code == 200
    assert response.get_json()["discount_amount"] == "150.00"


def test_promo_admin_and_preview(client, db_session, admin_headers, staff_headers, customer_headers):
    body = {"code": "eid20", "discount_type": "percentage", "discount_value": "20", "usage_limit": 1}
    assert client.post('/api/promo-codes', json=body, headers=staff_headers).status_code == 403

    response = client.post('/api/promo-codes', json=body, headers=admin_headers)
    assert response.status_code == 201
    assert response.get_json()["promo_code"]["code"] == "EID20"

    preview = client.post(
        '/api/discounts/promo/preview',
        json={"code": "EID20", "subtotal": "1000.00", "branch_id": 1},
        headers=customer_headers,
    )
    assert preview.get_json()["discount_amount"] == "200.00"

    order = _place_order(client, customer_headers, promo_code="EID20").get_json()["order"]
    assert order["discount"] == "200.00"

    response = _place_order(client, customer_headers, promo_code="EID20")
    assert response.status_code == 422
    assert response.get_json()["code"] == "PROMO_USAGE_LIMIT_REACHED"


def test_delivery_quote_and_config(client, db_session, admin_headers, customer_headers):
    quote = client.post('/api/delivery/quote', json={"branch_id": 1, "subtotal": "800.00"}, headers=customer_headers)
    assert quote.get_json()["delivery_charge"] == "50.00"
    assert quote.get_json()["used_default"] is True

    response = client.put(
        '/api/delivery/config/1',
        json={"pricing_model": "dynamic", "base_charge": "50", "per_km_charge": "20", "max_distance_km": "15"},
        headers=admin_headers,
    )
    assert response.status_code == 200

    quote = client.post(
        '/api/delivery/quote',
        json={"branch_id": 1, "subtotal": "800.00", "distance_km": "5"},
        headers=customer_headers,
    )
    assert quote.get_json()["delivery_charge"] == "150.00"

    far = client.post(
        '/api/delivery/quote',
        json={"branch_id": 1, "subtotal": "800.00", "distance_km": "20"},
        headers=customer_headers,
    )
    assert far.status_code == 422
    assert far.get_json()["code"] == "OUT_OF_DELIVERY_RANGE"


# =============================================================================
# PAYMENTS & SESSIONS
# =============================================================================

def test_customer_payment_waits_for_verification(client, db_session, customer_headers, staff_headers):
    order_id = _place_order(client, customer_headers).get_json()["order"]["id"]

    response = client.post(
        '/api/payments',
        json={"order_id": order_id, "method": "jazzcash", "amount": "1000.00", "reference": "JC-9"},
        headers=customer_headers,
    )
    assert response.status_code == 201
    payment = response.get_json()["payments"][0]
    assert payment["status"] == "pending_verification"

    response = client.post(f'/api/payments/{payment["id"]}/verify', headers=staff_headers)
    assert response.status_code == 200
    assert response.get_json()["order"]["payment_status"] == "paid"


def test_anonymous_customer_cannot_touch_guest_orders(client, db_session, staff_headers):
    anonymous = {'X-Actor-Role': 'customer'}
    order = _place_order(client, anonymous).get_json()["order"]
    assert order["customer_id"] is None

    response = client.post(
        '/api/payments',
        json={"order_id": order["id"], "method": "jazzcash", "amount": "1000.00", "reference": "JC-1"},
        headers=anonymous,
    )
    assert response.status_code == 404
    assert response.get_json()["code"] == "ORDER_NOT_FOUND"
    assert client.get(f'/api/orders/{order["id"]}', headers=anonymous).status_code == 404

    response = client.post(
        '/api/payments', json={"order_id": order["id"], "method": "card", "amount": "1000.00"}, headers=staff_headers,
    )
    assert response.status_code == 201


def test_end_to_end_shift(client, db_session, staff_headers):
    response = client.post('/api/pos/sessions', json={"branch_id": 1, "opening_cash": "1000.00"}, headers=staff_headers)
    assert response.status_code == 201
    session_id = response.get_json()["session"]["id"]

    duplicate = client.post('/api/pos/sessions', json={"branch_id": 1, "opening_cash": "5.00"}, headers=staff_headers)
    assert duplicate.status_code == 409
    assert duplicate.get_json()["code"] == "SESSION_ALREADY_OPEN"

    order = _place_order(client, staff_headers, order_source="pos").get_json()["order"]
    assert order["session_id"] == session_id

    bad_split = client.post('/api/payments/split', json={
        "order_id": order["id"],
        "legs": [{"method": "cash", "amount": "699.98"}, {"method": "card", "amount": "300.00"}],
    }, headers=staff_headers)
    assert bad_split.status_code == 422
    assert bad_split.get_json()["code"] == "SPLIT_AMOUNT_MISMATCH"

    split = client.post('/api/payments/split', json={
        "order_id": order["id"],
        "legs": [{"method": "cash", "amount": "700.00"}, {"method": "card", "amount": "300.00"}],
    }, headers=staff_headers)
    assert split.status_code == 201
    assert split.get_json()["session_applied"] is True

    closed = client.post(f'/api/pos/sessions/{session_id}/close', json={"counted_cash": "1650.00"}, headers=staff_headers)
    assert closed.status_code == 200
    assert closed.get_json()["expected_cash"] == "1700.00"
    assert closed.get_json()["cash_difference"] == "-50.00"

    audit = client.get(f'/api/pos/sessions/{session_id}/audit', headers=staff_headers).get_json()
    assert audit["matches"] is True

    summary = client.get(f'/api/pos/sessions/{session_id}/summary', headers=staff_headers).get_json()
    assert summary["by_method"]["card"] == "300.00"


def test_session_close_reported_on_late_payment(client, db_session, staff_headers):
    session = session_service.open_session(1, 10, "0.00")
    order = _place_order(client, staff_headers, order_source="pos").get_json()["order"]
    session_service.close_session(session.id, "0.00")

    response = client.post(
        '/api/payments',
        json={"order_id": order["id"], "method": "card", "amount": "1000.00"},
        headers=staff_headers,
    )

    assert response.status_code == 201
    body = response.get_json()
    assert body["order"]["payment_status"] == "paid"
    assert body["session_applied"] is False
    assert body["session_error_code"] == "SESSION_CLOSED"


def test_refund_over_http(client, db_session, staff_headers):
    order_id = _place_order(client, staff_headers).get_json()["order"]["id"]
    payment = client.post(
        '/api/payments', json={"order_id": order_id, "method": "cash", "amount": "1500.00"}, headers=staff_headers,
    ).get_json()
    assert payment["change_amount"] == "500.00"

    payment_id = payment["payments"][0]["id"]
    too_much = client.post(f'/api/payments/{payment_id}/refund', json={"amount": "1000.01"}, headers=staff_headers)
    assert too_much.status_code == 422
    assert too_much.get_json()["code"] == "REFUND_EXCEEDS_ORIGINAL"

    refund = client.post(
        f'/api/payments/{payment_id}/refund', json={"amount": "100.00", "reason": "Late"}, headers=staff_headers,
    )
    assert refund.status_code == 201
    assert refund.get_json()["order"]["payment_status"] == "partially_refunded"


# =============================================================================
# TABLES & CLI
# =============================================================================

def test_tables(client, db_session, admin_headers, staff_headers):
    response = client.post('/api/pos/tables', json={"branch_id": 1, "table_number": "T1"}, headers=admin_headers)
    assert response.status_code == 201
    table_id = response.get_json()["table"]["id"]

    response = client.post(f'/api/pos/tables/{table_id}/status', json={"status": "reserved"}, headers=staff_headers)
    assert response.get_json()["table"]["status"] == "reserved"

    response = client.post(f'/api/pos/tables/{table_id}/status', json={"status": "occupied"}, headers=staff_headers)
    assert response.status_code == 400

    tables = client.get('/api/pos/tables?branch_id=1', headers=staff_headers).get_json()["tables"]
    assert [t["table_number"] for t in tables] == ["T1"]


@pytest.mark.parametrize("mismatch", [False, True])
def test_sessions_audit_command(app, db_session, mismatch):
    session = session_service.open_session(1, 10, "100.00")
    if mismatch:
        session.cash_sales_cents = 500
        db_session.commit()

    result = app.test_cli_runner().invoke(args=["sessions", "audit", str(session.id)])

    if mismatch:
        assert result.exit_code == 1
        assert "FAIL cash_sales_cents" in result.output
    else:
        assert result.exit_code == 0
        assert "PASS" in result.output
