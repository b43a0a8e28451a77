from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z
from storefront.validation import cents_to_dollars


# Fulfilment status
ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_PAID = "paid"
ORDER_STATUS_SHIPPED = "shipped"
ORDER_STATUS_DELIVERED = "delivered"
ORDER_STATUS_FAILED = "failed"
ORDER_STATUS_REFUNDED = "refunded"
ORDER_STATUS_PARTIALLY_REFUNDED = "partially_refunded"

# Processor-driven payment status
PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_FAILED = "failed"
PAYMENT_STATUS_REFUNDED = "refunded"
PAYMENT_STATUS_PARTIALLY_REFUNDED = "partially_refunded"


class Order(db.Model):
    """
    Immutable purchase snapshot created at payment-intent time.

    Pricing columns are computed server-side:
    total = subtotal - discount + shipping + tax.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    session_id = db.Column(db.String(128), nullable=True, index=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    status = db.Column(db.String(24), nullable=False, default=ORDER_STATUS_PENDING, index=True)
    payment_status = db.Column(db.String(24), nullable=False, default=PAYMENT_STATUS_PENDING, index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="usd")

    # Frozen JSON snapshots, decoupled from the address book
    shipping_address = db.Column(db.JSON, nullable=True)
    billing_address = db.Column(db.JSON, nullable=True)

    payment_intent_id = db.Column(db.String(255), nullable=True, unique=True, index=True)
    tracking_number = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    items = db.relationship("OrderItem", backref="order", lazy=True, order_by="OrderItem.id")

    def summary_dict(self) -> dict:
        return {
            "id": self.id,
            "orderNumber": self.order_number,
            "status": self.status,
            "total": cents_to_dollars(self.total_cents),
            "createdAt": to_utc_z(self.created_at),
        }

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "orderNumber": self.order_number,
            "userId": self.user_id,
            "email": self.email,
            "status": self.status,
            "paymentStatus": self.payment_status,
            "subtotal": cents_to_dollars(self.subtotal_cents),
            "discountAmount": cents_to_dollars(self.discount_cents),
            "shippingAmount": cents_to_dollars(self.shipping_cents),
            "taxAmount": cents_to_dollars(self.tax_cents),
            "total": cents_to_dollars(self.total_cents),
            "currency": self.currency,
            "shippingAddress": self.shipping_address,
            "billingAddress": self.billing_address,
            "trackingNumber": self.tracking_number,
            "createdAt": to_utc_z(self.created_at),
            "paidAt": to_utc_z(self.paid_at),
            "shippedAt": to_utc_z(self.shipped_at),
            "deliveredAt": to_utc_z(self.delivered_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """Frozen copy of the purchased line: name, SKU and unit price at purchase time."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    # Soft references: catalog rows may change or disappear later
    product_id = db.Column(db.Integer, nullable=True)
    variant_id = db.Column(db.Integer, nullable=True, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=False)
    size = db.Column(db.String(16), nullable=True)
    color = db.Column(db.String(64), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "productId": self.product_id,
            "variantId": self.variant_id,
            "productName": self.product_name,
            "sku": self.sku,
            "size": self.size,
            "color": self.color,
            "quantity": self.quantity,
            "unitPrice": cents_to_dollars(self.unit_price_cents),
            "total": cents_to_dollars(self.total_cents),
        }
