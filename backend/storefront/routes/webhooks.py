# Overview: Flask API route for payment processor webhooks.

# backend/storefront/routes/webhooks.py
"""
Processor webhook receiver.

SECURITY: The raw body is authenticated against the Stripe-Signature header
before any event is applied. No user authentication applies here.
"""
from flask import Blueprint, request, jsonify, current_app

from ..services import checkout_service
from ..services.payment_gateway import WebhookSignatureError, get_gateway

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")


@webhooks_bp.post("/stripe")
def stripe_webhook():
    payload = request.get_data()
    signature = request.headers.get("Stripe-Signature")

    try:
        event = get_gateway().construct_event(payload, signature)
    except WebhookSignatureError as e:
        current_app.logger.warning("Rejected webhook: %s", e)
        return jsonify({"error": str(e)}), e.status_code

    try:
        result = checkout_service.handle_webhook_event(event)
    except Exception:
        current_app.logger.exception("Failed to handle webhook event %s", event.get("type"))
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(result), 200
