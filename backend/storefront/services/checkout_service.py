# Overview: Service-layer operations for checkout; pricing, payment intents and the paid transition.

"""
Checkout Service

WHY: Checkout is the pricing authority. The client never supplies prices:
the live cart is re-read, stock is re-validated and totals are computed
here from catalog prices in cents.

Lifecycle:
1. create_payment_intent: price the cart, open a processor payment intent,
   persist a pending order with frozen line snapshots. Stock is untouched.
2. confirm_payment / webhook: re-verify with the processor, then
   mark_order_paid runs the paid transition (order paid, stock decremented,
   cart cleared) as one transaction gated on payment_status, so repeating
   it has no further effect.
"""

from __future__ import annotations

import logging
import secrets
import string
import time
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app

from ..extensions import db
from ..models import Cart, CartItem, Order, OrderItem, ProductVariant, User
from ..models.orders import (
    ORDER_STATUS_FAILED,
    ORDER_STATUS_PAID,
    ORDER_STATUS_PARTIALLY_REFUNDED,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_REFUNDED,
    PAYMENT_STATUS_FAILED,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_PARTIALLY_REFUNDED,
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUS_REFUNDED,
)
from ..validation import ValidationError, cents_to_dollars
from storefront.time_utils import utcnow
from .cart_service import clear_items_for_owner, find_cart
from .concurrency import lock_for_update, run_with_retry
from .payment_gateway import get_gateway


logger = logging.getLogger(__name__)

BASE36_ALPHABET = string.digits + string.ascii_uppercase
ADDRESS_FIELDS = ("firstName", "lastName", "line1", "line2", "city", "state", "postalCode", "country", "phone")


class CheckoutError(Exception):
    """Raised for checkout errors visible to the client."""
    def __init__(self, message: str, status_code: int = 400, details: dict | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details or {}


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(BASE36_ALPHABET[rem])
    return "".join(reversed(digits))


def generate_order_number(now_ms: int | None = None) -> str:
    """HYOW-<base36 millisecond timestamp>-<4 random base36 chars>, upper case."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(BASE36_ALPHABET) for _ in range(4))
    return f"HYOW-{_base36(now_ms)}-{suffix}"


def shipping_cents_for(subtotal_cents: int) -> int:
    if subtotal_cents >= current_app.config["FREE_SHIPPING_THRESHOLD_CENTS"]:
        return 0
    return current_app.config["FLAT_SHIPPING_CENTS"]


def tax_cents_for(subtotal_cents: int) -> int:
    rate = Decimal(str(current_app.config["TAX_RATE"]))
    return int((Decimal(subtotal_cents) * rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_totals(subtotal_cents: int, discount_cents: int = 0) -> dict:
    """total = subtotal - discount + shipping + tax, all in cents."""
    shipping = shipping_cents_for(subtotal_cents)
    tax = tax_cents_for(subtotal_cents)
    return {
        "subtotal_cents": subtotal_cents,
        "discount_cents": discount_cents,
        "shipping_cents": shipping,
        "tax_cents": tax,
        "total_cents": subtotal_cents - discount_cents + shipping + tax,
    }


def _clean_address(value, field: str) -> dict | None:
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValidationError(f"{field} must be an object")
    cleaned = {}
    for key in ADDRESS_FIELDS:
        raw = value.get(key)
        if raw is None:
            continue
        if not isinstance(raw, str):
            raise ValidationError(f"{field}.{key} must be a string")
        cleaned[key] = raw.strip()[:255]
    return cleaned


def _clean_optional_str(value, field: str, max_length: int) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return value or None


def _priced_lines(cart: Cart | None) -> list[dict]:
    """Re-read the live cart and validate every line against current stock."""
    items = []
    if cart:
        items = (
            db.session.query(CartItem)
            .filter(CartItem.cart_id == cart.id)
            .order_by(CartItem.id.asc())
            .all()
        )
    if not items:
        raise CheckoutError("Cart is empty")

    lines = []
    for item in items:
        variant: ProductVariant = item.variant
        product = variant.product
        if not variant.is_sellable:
            raise CheckoutError(
                f"{product.name} is no longer available",
                details={"variantId": variant.id},
            )
        if item.quantity > variant.stock_quantity:
            raise CheckoutError(
                f"Insufficient stock for {product.name}. Only {variant.stock_quantity} available.",
                details={"variantId": variant.id, "available": variant.stock_quantity, "requested": item.quantity},
            )
        unit = variant.unit_price_cents
        lines.append({
            "variant": variant,
            "product": product,
            "quantity": item.quantity,
            "unit_price_cents": unit,
            "total_cents": unit * item.quantity,
        })
    return lines


def create_payment_intent(user_id: int | None, session_id: str | None, payload: dict) -> dict:
    """
    Price the cart, open a payment intent and persist a pending order.

    Insufficient stock on any line aborts the whole operation. The processor
    is called before anything is written, so a processor failure leaves no
    order behind.
    """
    if not user_id and not session_id:
        raise CheckoutError("Session ID is required for guest checkout")

    shipping_address = _clean_address(payload.get("shippingAddress"), "shippingAddress")
    billing_address = _clean_address(payload.get("billingAddress"), "billingAddress") or shipping_address
    email = _clean_optional_str(payload.get("email"), "email", 255)
    phone = _clean_optional_str(payload.get("phone"), "phone", 32)

    if user_id and not email:
        user = db.session.get(User, user_id)
        email = user.email if user else None
    if email and "@" not in email:
        raise ValidationError("A valid email is required")

    lines = _priced_lines(find_cart(user_id, session_id))
    subtotal = sum(line["total_cents"] for line in lines)
    totals = compute_totals(subtotal)

    order_number = generate_order_number()
    currency = current_app.config["CURRENCY"]

    intent = get_gateway().create_payment_intent(
        totals["total_cents"],
        currency,
        {
            "orderNumber": order_number,
            "userId": user_id or "guest",
            "sessionId": session_id or "",
            "email": email or "",
        },
    )

    def _op():
        order = Order(
            order_number=order_number,
            user_id=user_id or None,
            session_id=None if user_id else session_id,
            email=email,
            phone=phone,
            status=ORDER_STATUS_PENDING,
            payment_status=PAYMENT_STATUS_PENDING,
            currency=currency,
            shipping_address=shipping_address,
            billing_address=billing_address,
            payment_intent_id=intent.id,
            **totals,
        )
        db.session.add(order)
        db.session.flush()

        for line in lines:
            variant = line["variant"]
            db.session.add(OrderItem(
                order_id=order.id,
                product_id=line["product"].id,
                variant_id=variant.id,
                product_name=line["product"].name,
                sku=variant.sku,
                size=variant.size,
                color=variant.color,
                quantity=line["quantity"],
                unit_price_cents=line["unit_price_cents"],
                total_cents=line["total_cents"],
            ))

        db.session.commit()
        return order

    run_with_retry(_op)

    return {
        "clientSecret": intent.client_secret,
        "orderNumber": order_number,
        "summary": {
            "subtotal": cents_to_dollars(totals["subtotal_cents"]),
            "shipping": cents_to_dollars(totals["shipping_cents"]),
            "tax": cents_to_dollars(totals["tax_cents"]),
            "total": cents_to_dollars(totals["total_cents"]),
            "itemCount": len(lines),
        },
    }


def mark_order_paid(order_id: int) -> bool:
    """
    Paid transition: order paid, stock decremented (floored at zero) and the
    source cart cleared, all in one transaction.

    Returns False without side effects when the order is already paid.
    """
    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise CheckoutError("Order not found", 404)

        if order.payment_status == PAYMENT_STATUS_PAID:
            return False

        if order.payment_status not in (PAYMENT_STATUS_PENDING, PAYMENT_STATUS_FAILED):
            raise CheckoutError(
                f"Cannot mark order as paid from payment status {order.payment_status}",
                409,
            )

        for item in order.items:
            if item.variant_id is None:
                continue
            variant = lock_for_update(
                db.session.query(ProductVariant).filter_by(id=item.variant_id)
            ).first()
            if variant:
                variant.stock_quantity = max(0, variant.stock_quantity - item.quantity)

        clear_items_for_owner(order.user_id, order.session_id)

        now = utcnow()
        order.status = ORDER_STATUS_PAID
        order.payment_status = PAYMENT_STATUS_PAID
        order.paid_at = now
        order.updated_at = now
        db.session.commit()

        logger.info("Order %s marked paid", order.order_number)
        return True

    return run_with_retry(_op)


def confirm_payment(order_number, payment_intent_id) -> dict:
    """
    Finalize an order after the client reports processor success.

    The processor is asked directly; the client's claim alone is never
    trusted. Confirming an already-paid order succeeds without side effects.
    """
    if not isinstance(order_number, str) or not order_number.strip():
        raise ValidationError("orderNumber is required")
    if not isinstance(payment_intent_id, str) or not payment_intent_id.strip():
        raise ValidationError("paymentIntentId is required")

    order = (
        db.session.query(Order)
        .filter_by(order_number=order_number.strip(), payment_intent_id=payment_intent_id.strip())
        .first()
    )
    if not order:
        raise CheckoutError("Order not found", 404)

    result = {"success": True, "orderNumber": order.order_number, "message": "Order confirmed successfully"}
    if order.payment_status == PAYMENT_STATUS_PAID:
        return result

    intent = get_gateway().retrieve_payment_intent(order.payment_intent_id)
    if not intent.succeeded:
        raise CheckoutError("Payment not completed", 400, details={"paymentStatus": intent.status})
    if intent.amount != order.total_cents:
        logger.error(
            "Payment amount mismatch for order %s: intent=%s order=%s",
            order.order_number, intent.amount, order.total_cents,
        )
        raise CheckoutError("Payment amount does not match order total", 400)

    mark_order_paid(order.id)
    return result


def _order_for_intent(intent_id: str | None) -> Order | None:
    if not intent_id:
        return None
    return db.session.query(Order).filter_by(payment_intent_id=intent_id).first()


def _mark_payment_failed(order: Order) -> bool:
    def _op():
        locked = lock_for_update(db.session.query(Order).filter_by(id=order.id)).first()
        if locked.payment_status != PAYMENT_STATUS_PENDING:
            return False
        locked.status = ORDER_STATUS_FAILED
        locked.payment_status = PAYMENT_STATUS_FAILED
        locked.updated_at = utcnow()
        db.session.commit()
        return True

    return run_with_retry(_op)


def _mark_refunded(order: Order, amount_refunded: int) -> bool:
    def _op():
        locked = lock_for_update(db.session.query(Order).filter_by(id=order.id)).first()
        if locked.payment_status not in (PAYMENT_STATUS_PAID, PAYMENT_STATUS_PARTIALLY_REFUNDED):
            return False
        full = amount_refunded >= locked.total_cents
        locked.payment_status = PAYMENT_STATUS_REFUNDED if full else PAYMENT_STATUS_PARTIALLY_REFUNDED
        locked.status = ORDER_STATUS_REFUNDED if full else ORDER_STATUS_PARTIALLY_REFUNDED
        locked.updated_at = utcnow()
        db.session.commit()
        return True

    return run_with_retry(_op)


def handle_webhook_event(event: dict) -> dict:
    """
    Apply a verified processor event.

    Returns {"received": True, "handled": bool}. Unknown event types and
    unknown orders are acknowledged without changes so the processor stops
    retrying.
    """
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}

    handled = False
    if event_type == "payment_intent.succeeded":
        order = _order_for_intent(obj.get("id"))
        if order and order.payment_status in (PAYMENT_STATUS_PENDING, PAYMENT_STATUS_FAILED):
            handled = mark_order_paid(order.id)
    elif event_type == "payment_intent.payment_failed":
        order = _order_for_intent(obj.get("id"))
        if order:
            handled = _mark_payment_failed(order)
    elif event_type == "charge.refunded":
        order = _order_for_intent(obj.get("payment_intent"))
        if order:
            handled = _mark_refunded(order, int(obj.get("amount_refunded") or 0))
    else:
        logger.debug("Ignoring webhook event type %s", event_type)

    if handled:
        logger.info("Webhook %s applied", event_type)
    return {"received": True, "handled": handled}
