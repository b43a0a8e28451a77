# Overview: Flask API routes for cart operations; parses input and returns JSON responses.

# backend/storefront/routes/cart.py
"""
Shopping cart routes.

A cart belongs to either an authenticated user or a guest session. The
guest session id is read from the JSON body, the query string, or the
cart cookie, in that order. Every mutation answers with the full cart.
"""
from flask import Blueprint, request, jsonify, current_app, g

from ..services import cart_service
from ..services.cart_service import CartError
from ..validation import ValidationError
from ..decorators import optional_auth, require_auth, current_user_id, request_session_id

cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


@cart_bp.get("")
@optional_auth
def get_cart():
    """Current cart. Returns the empty shape when no owner is known."""
    try:
        cart = cart_service.get_cart(current_user_id(), request_session_id())
    except (CartError, ValidationError) as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load cart")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(cart), 200


@cart_bp.post("/items")
@optional_auth
def add_item():
    """Body: { variantId, quantity, sessionId? }"""
    data = request.get_json(silent=True) or {}
    try:
        cart = cart_service.add_item(
            current_user_id(),
            request_session_id(data),
            data.get("variantId"),
            data.get("quantity", 1),
        )
    except CartError as e:
        return jsonify({"error": str(e), **e.details}), e.status_code
    except ValidationError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add cart item")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(cart), 200


@cart_bp.patch("/items/<int:item_id>")
@optional_auth
def update_item(item_id: int):
    """Body: { quantity, sessionId? }. Quantity 0 removes the line."""
    data = request.get_json(silent=True) or {}
    try:
        cart, removed = cart_service.set_quantity(
            current_user_id(),
            request_session_id(data),
            item_id,
            data.get("quantity"),
        )
    except CartError as e:
        return jsonify({"error": str(e), **e.details}), e.status_code
    except ValidationError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update cart item")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({**cart, "removed": removed}), 200


@cart_bp.delete("/items/<int:item_id>")
@optional_auth
def remove_item(item_id: int):
    data = request.get_json(silent=True) or {}
    try:
        cart = cart_service.remove_item(current_user_id(), request_session_id(data), item_id)
    except (CartError, ValidationError) as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to remove cart item")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(cart), 200


@cart_bp.delete("")
@optional_auth
def clear_cart():
    data = request.get_json(silent=True) or {}
    try:
        cart = cart_service.clear_cart(current_user_id(), request_session_id(data))
    except (CartError, ValidationError) as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to clear cart")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(cart), 200


@cart_bp.post("/merge")
@require_auth
def merge_cart():
    """Fold the guest cart named by sessionId into the caller's cart."""
    data = request.get_json(silent=True) or {}
    try:
        session_id = request_session_id(data)
        if not session_id:
            return jsonify({"error": "Session ID is required"}), 400
        merged = cart_service.merge_guest_cart(session_id, g.current_user.id)
        if merged is None:
            merged = cart_service.get_cart(g.current_user.id, None)
    except (CartError, ValidationError) as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to merge cart")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(merged), 200
