# Overview: Flask API routes for checkout operations; parses input and returns JSON responses.

# backend/storefront/routes/checkout.py
"""
Checkout routes.

Checkout is open to guests (sessionId) and signed-in customers. The hosted
processor holds the card details; this API only sees payment intent ids.
"""
from flask import Blueprint, request, jsonify, current_app

from ..services import checkout_service
from ..services.checkout_service import CheckoutError
from ..services.payment_gateway import PaymentGatewayError
from ..validation import ValidationError
from ..decorators import optional_auth, current_user_id, request_session_id

checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/checkout")


@checkout_bp.post("/create-payment-intent")
@optional_auth
def create_payment_intent():
    """
    Price the cart and open a payment intent.

    Body: { shippingAddress, billingAddress?, email?, phone?, sessionId? }
    Returns: { clientSecret, orderNumber, summary }
    """
    data = request.get_json(silent=True) or {}
    try:
        result = checkout_service.create_payment_intent(current_user_id(), request_session_id(data), data)
    except (CheckoutError, PaymentGatewayError) as e:
        return jsonify({"error": str(e), **e.details}), e.status_code
    except ValidationError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create payment intent")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(result), 200


@checkout_bp.post("/confirm")
@optional_auth
def confirm_payment():
    """
    Confirm a payment the client reports as complete.

    Body: { orderNumber, paymentIntentId }. Idempotent.
    """
    data = request.get_json(silent=True) or {}
    try:
        result = checkout_service.confirm_payment(data.get("orderNumber"), data.get("paymentIntentId"))
    except (CheckoutError, PaymentGatewayError) as e:
        return jsonify({"error": str(e), **e.details}), e.status_code
    except ValidationError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to confirm payment")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(result), 200


@checkout_bp.get("/config")
def checkout_config():
    return jsonify({
        "publishableKey": current_app.config["STRIPE_PUBLISHABLE_KEY"],
        "currency": current_app.config["CURRENCY"],
    }), 200
