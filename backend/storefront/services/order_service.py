# Overview: Service-layer operations for orders; history, ownership checks and admin fulfilment.

from __future__ import annotations

from ..extensions import db
from ..models import Order
from ..models.orders import (
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_FAILED,
    ORDER_STATUS_PAID,
    ORDER_STATUS_PARTIALLY_REFUNDED,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_REFUNDED,
    ORDER_STATUS_SHIPPED,
)
from ..validation import ValidationError
from storefront.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry


# Fulfilment edges staff may take by hand. pending -> paid is reserved for
# processor confirmation (checkout_service.mark_order_paid).
ADMIN_TRANSITIONS: dict[str, set[str]] = {
    ORDER_STATUS_PENDING: {ORDER_STATUS_FAILED},
    ORDER_STATUS_PAID: {ORDER_STATUS_SHIPPED, ORDER_STATUS_REFUNDED, ORDER_STATUS_PARTIALLY_REFUNDED},
    ORDER_STATUS_PARTIALLY_REFUNDED: {ORDER_STATUS_REFUNDED},
    ORDER_STATUS_SHIPPED: {ORDER_STATUS_DELIVERED},
    ORDER_STATUS_DELIVERED: set(),
    ORDER_STATUS_FAILED: set(),
    ORDER_STATUS_REFUNDED: set(),
}

ALL_STATUSES = set(ADMIN_TRANSITIONS)


class OrderError(Exception):
    """Raised for order lookup and fulfilment errors."""
    def __init__(self, message: str, status_code: int = 400, details: dict | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details or {}


def list_user_orders(user_id: int) -> list[dict]:
    orders = (
        db.session.query(Order)
        .filter(Order.user_id == user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )
    return [o.summary_dict() for o in orders]


def get_order_for_viewer(order_number: str, user_id: int | None, session_id: str | None) -> Order:
    """
    Load an order the caller may see.

    Account orders are visible to their owner only; guest orders to the
    session that placed them. Everything else is reported as not found.
    """
    order = db.session.query(Order).filter_by(order_number=order_number).first()
    if not order:
        raise OrderError("Order not found", 404)

    if order.user_id is not None:
        if order.user_id != user_id:
            raise OrderError("Order not found", 404)
    elif not session_id or order.session_id != session_id:
        raise OrderError("Order not found", 404)

    return order


def admin_list_orders(*, status: str | None, page: int, limit: int) -> dict:
    query = db.session.query(Order)
    if status:
        if status not in ALL_STATUSES:
            raise ValidationError(f"status must be one of {sorted(ALL_STATUSES)}")
        query = query.filter(Order.status == status)

    total = query.count()
    orders = (
        query.order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "orders": [o.to_dict(include_items=False) for o in orders],
        "pagination": {
            "page": page,
            "limit": limit,
            "totalCount": total,
            "totalPages": (total + limit - 1) // limit,
        },
    }


def admin_update_order(order_id: int, payload: dict) -> Order:
    """
    Apply a staff status change and/or tracking number.

    Status changes are validated against ADMIN_TRANSITIONS; shipped and
    delivered stamp their timestamps.
    """
    status = payload.get("status")
    tracking_number = payload.get("trackingNumber")

    if status is None and tracking_number is None:
        raise ValidationError("No updates provided")
    if status is not None and status not in ALL_STATUSES:
        raise ValidationError(f"status must be one of {sorted(ALL_STATUSES)}")
    if tracking_number is not None:
        if not isinstance(tracking_number, str) or len(tracking_number.strip()) > 128:
            raise ValidationError("trackingNumber must be a string of at most 128 characters")
        tracking_number = tracking_number.strip() or None

    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise OrderError("Order not found", 404)

        now = utcnow()
        if status is not None and status != order.status:
            allowed = ADMIN_TRANSITIONS.get(order.status, set())
            if status not in allowed:
                raise OrderError(
                    f"Cannot change order status from {order.status} to {status}",
                    409,
                    details={"allowed": sorted(allowed)},
                )
            order.status = status
            if status == ORDER_STATUS_SHIPPED:
                order.shipped_at = now
            elif status == ORDER_STATUS_DELIVERED:
                order.delivered_at = now
            elif status in (ORDER_STATUS_REFUNDED, ORDER_STATUS_PARTIALLY_REFUNDED, ORDER_STATUS_FAILED):
                order.payment_status = status

        if tracking_number is not None:
            order.tracking_number = tracking_number

        order.updated_at = now
        db.session.commit()
        return order

    return run_with_retry(_op)
