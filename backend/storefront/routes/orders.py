# Overview: Flask API routes for order history; parses input and returns JSON responses.

# backend/storefront/routes/orders.py
from flask import Blueprint, jsonify, current_app, g

from ..services import order_service
from ..services.order_service import OrderError
from ..validation import ValidationError
from ..decorators import optional_auth, require_auth, current_user_id, request_session_id

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.get("")
@require_auth
def list_orders():
    return jsonify({"orders": order_service.list_user_orders(g.current_user.id)}), 200


@orders_bp.get("/<order_number>")
@optional_auth
def get_order(order_number: str):
    """
    Order detail for its owner.

    Guest orders are visible only with the sessionId that placed them.
    Orders of other users are reported as not found.
    """
    try:
        order = order_service.get_order_for_viewer(order_number, current_user_id(), request_session_id())
    except (OrderError, ValidationError) as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load order")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"order": order.to_dict()}), 200
