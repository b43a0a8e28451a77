"""
Processor webhook tests.

Verifies signature checking and the state changes each event type applies.
"""

import time

import pytest

from storefront.extensions import db
from storefront.models import Order, ProductVariant
from storefront.services.payment_gateway import WebhookSignatureError, verify_webhook_signature

from conftest import WEBHOOK_SECRET, sign_webhook


def _pending_order(client, catalog, quantity=1):
    client.post("/api/cart/items", json={
        "variantId": catalog["tee_m"].id, "quantity": quantity, "sessionId": "wh-session",
    })
    body = client.post("/api/checkout/create-payment-intent", json={
        "sessionId": "wh-session",
        "shippingAddress": {"firstName": "A", "lastName": "B", "line1": "1 St", "city": "X", "postalCode": "1"},
    }).get_json()
    return db.session.query(Order).filter_by(order_number=body["orderNumber"]).one()


def _post_event(client, event, **sign_kwargs):
    body, header = sign_webhook(event, **sign_kwargs)
    return client.post(
        "/api/webhooks/stripe",
        data=body,
        headers={"Stripe-Signature": header, "Content-Type": "application/json"},
    )


class TestSignature:

    def test_valid_signature_returns_event(self):
        body, header = sign_webhook({"type": "ping"})
        assert verify_webhook_signature(body, header, WEBHOOK_SECRET)["type"] == "ping"

    def test_wrong_secret_rejected(self):
        body, header = sign_webhook({"type": "ping"}, secret="whsec_other")
        with pytest.raises(WebhookSignatureError):
            verify_webhook_signature(body, header, WEBHOOK_SECRET)

    def test_stale_timestamp_rejected(self):
        body, header = sign_webhook({"type": "ping"}, timestamp=int(time.time()) - 3600)
        with pytest.raises(WebhookSignatureError):
            verify_webhook_signature(body, header, WEBHOOK_SECRET)

    def test_tampered_body_rejected(self):
        body, header = sign_webhook({"type": "ping"})
        with pytest.raises(WebhookSignatureError):
            verify_webhook_signature(body + b" ", header, WEBHOOK_SECRET)

    @pytest.mark.parametrize("header", [None, "", "garbage", "t=abc,v1=00"])
    def test_malformed_header_rejected(self, header):
        with pytest.raises(WebhookSignatureError):
            verify_webhook_signature(b"{}", header, WEBHOOK_SECRET)

    def test_route_rejects_bad_signature(self, client):
        resp = client.post("/api/webhooks/stripe", data=b"{}", headers={"Stripe-Signature": "t=1,v1=00"})
        assert resp.status_code == 400


class TestEvents:

    def test_payment_succeeded_marks_paid_once(self, client, catalog, gateway):
        order = _pending_order(client, catalog, quantity=3)
        event = {"type": "payment_intent.succeeded", "data": {"object": {"id": order.payment_intent_id}}}

        resp = _post_event(client, event)
        assert resp.status_code == 200
        assert resp.get_json() == {"received": True, "handled": True}

        resp = _post_event(client, event)
        assert resp.get_json() == {"received": True, "handled": False}

        order = db.session.query(Order).filter_by(id=order.id).one()
        assert order.payment_status == "paid"
        assert db.session.get(ProductVariant, catalog["tee_m"].id).stock_quantity == 97

    def test_payment_failed_marks_failed(self, client, catalog, gateway):
        order = _pending_order(client, catalog)
        event = {"type": "payment_intent.payment_failed", "data": {"object": {"id": order.payment_intent_id}}}

        assert _post_event(client, event).status_code == 200
        order = db.session.query(Order).filter_by(id=order.id).one()
        assert order.status == "failed"
        assert order.payment_status == "failed"

    def test_refund_events(self, client, catalog, gateway):
        order = _pending_order(client, catalog)
        _post_event(client, {"type": "payment_intent.succeeded", "data": {"object": {"id": order.payment_intent_id}}})
        total = db.session.query(Order).filter_by(id=order.id).one().total_cents

        _post_event(client, {"type": "charge.refunded", "data": {"object": {
            "payment_intent": order.payment_intent_id, "amount_refunded": 100,
        }}})
        assert db.session.query(Order).filter_by(id=order.id).one().status == "partially_refunded"

        _post_event(client, {"type": "charge.refunded", "data": {"object": {
            "payment_intent": order.payment_intent_id, "amount_refunded": total,
        }}})
        refunded = db.session.query(Order).filter_by(id=order.id).one()
        assert refunded.status == "refunded"
        assert refunded.payment_status == "refunded"

    def test_unknown_event_acknowledged(self, client, gateway):
        resp = _post_event(client, {"type": "customer.created", "data": {"object": {"id": "cus_1"}}})
        assert resp.status_code == 200
        assert resp.get_json() == {"received": True, "handled": False}

    def test_unknown_intent_acknowledged(self, client, gateway):
        resp = _post_event(client, {"type": "payment_intent.succeeded", "data": {"object": {"id": "pi_missing"}}})
        assert resp.status_code == 200
        assert resp.get_json()["handled"] is False
