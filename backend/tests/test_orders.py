"""
Order history and admin order management tests.
"""

from storefront.extensions import db
from storefront.models import Order, OrderItem


def _make_order(user_id=None, session_id=None, number="HYOW-TEST-0001", status="paid", payment_status="paid"):
    order = Order(
        order_number=number,
        user_id=user_id,
        session_id=session_id,
        email="buyer@hyow.test",
        status=status,
        payment_status=payment_status,
        subtotal_cents=4999,
        discount_cents=0,
        shipping_cents=1500,
        tax_cents=444,
        total_cents=6943,
        currency="usd",
        payment_intent_id=f"pi_{number}",
    )
    db.session.add(order)
    db.session.flush()
    db.session.add(OrderItem(
        order_id=order.id, product_id=1, variant_id=1, product_name="Box Logo Tee",
        sku="TEE-M", size="M", color="Black", quantity=1, unit_price_cents=4999, total_cents=4999,
    ))
    db.session.commit()
    return order


class TestCustomerOrders:

    def test_list_own_orders(self, client, customer, other_customer, customer_headers):
        _make_order(user_id=customer.id, number="HYOW-A-0001")
        _make_order(user_id=other_customer.id, number="HYOW-B-0001")

        resp = client.get("/api/orders", headers=customer_headers)
        assert resp.status_code == 200
        numbers = [o["orderNumber"] for o in resp.get_json()["orders"]]
        assert numbers == ["HYOW-A-0001"]

    def test_owner_sees_detail(self, client, customer, customer_headers):
        _make_order(user_id=customer.id)
        resp = client.get("/api/orders/HYOW-TEST-0001", headers=customer_headers)
        assert resp.status_code == 200
        body = resp.get_json()["order"]
        assert body["total"] == 69.43
        assert body["items"][0]["sku"] == "TEE-M"

    def test_other_user_gets_not_found(self, client, other_customer, customer, customer_headers):
        _make_order(user_id=other_customer.id)
        resp = client.get("/api/orders/HYOW-TEST-0001", headers=customer_headers)
        assert resp.status_code == 404

    def test_guest_order_requires_matching_session(self, client, db_session):
        _make_order(session_id="guest-abc")
        assert client.get("/api/orders/HYOW-TEST-0001").status_code == 404
        assert client.get("/api/orders/HYOW-TEST-0001?sessionId=wrong").status_code == 404
        assert client.get("/api/orders/HYOW-TEST-0001?sessionId=guest-abc").status_code == 200

    def test_list_requires_auth(self, client):
        assert client.get("/api/orders").status_code == 401


class TestAdminOrders:

    def test_list_with_status_filter(self, client, admin_headers):
        _make_order(number="HYOW-P-0001", status="pending", payment_status="pending")
        _make_order(number="HYOW-P-0002")

        resp = client.get("/api/admin/orders?status=paid", headers=admin_headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert [o["orderNumber"] for o in body["orders"]] == ["HYOW-P-0002"]
        assert body["pagination"]["totalCount"] == 1

    def test_ship_then_deliver(self, client, admin_headers):
        order = _make_order()

        resp = client.patch(
            f"/api/admin/orders/{order.id}",
            json={"status": "shipped", "trackingNumber": "1Z999"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        shipped = db.session.get(Order, order.id)
        assert shipped.status == "shipped"
        assert shipped.tracking_number == "1Z999"
        assert shipped.shipped_at is not None

        resp = client.patch(f"/api/admin/orders/{order.id}", json={"status": "delivered"}, headers=admin_headers)
        assert resp.status_code == 200
        assert db.session.get(Order, order.id).delivered_at is not None

    def test_invalid_transition_is_conflict(self, client, admin_headers):
        order = _make_order(status="pending", payment_status="pending")
        resp = client.patch(f"/api/admin/orders/{order.id}", json={"status": "shipped"}, headers=admin_headers)
        assert resp.status_code == 409
        assert db.session.get(Order, order.id).status == "pending"

    def test_admin_cannot_mark_paid(self, client, admin_headers):
        order = _make_order(status="pending", payment_status="pending")
        resp = client.patch(f"/api/admin/orders/{order.id}", json={"status": "paid"}, headers=admin_headers)
        assert resp.status_code == 409

    def test_unknown_status_rejected(self, client, admin_headers):
        order = _make_order()
        resp = client.patch(f"/api/admin/orders/{order.id}", json={"status": "lost"}, headers=admin_headers)
        assert resp.status_code == 400

    def test_missing_order(self, client, admin_headers):
        resp = client.patch("/api/admin/orders/9999", json={"status": "shipped"}, headers=admin_headers)
        assert resp.status_code == 404

    def test_customer_forbidden(self, client, customer_headers):
        assert client.get("/api/admin/orders", headers=customer_headers).status_code == 403
