# Overview: Flask API routes for the customer account; parses input and returns JSON responses.

# backend/storefront/routes/users.py
"""
Account routes: profile, address book and wishlist.

SECURITY: All routes require authentication and act on the caller only.
"""
from flask import Blueprint, request, jsonify, current_app, g

from ..services import account_service
from ..services.account_service import AccountError
from ..validation import ValidationError
from ..decorators import require_auth

users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.get("/profile")
@require_auth
def get_profile():
    return jsonify({"user": g.current_user.to_dict()}), 200


@users_bp.patch("/profile")
@require_auth
def update_profile():
    """Body: any of { firstName, lastName, phone }"""
    data = request.get_json(silent=True)
    try:
        user = account_service.update_profile(g.current_user, data)
    except ValidationError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update profile")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"user": user.to_dict()}), 200


@users_bp.get("/addresses")
@require_auth
def list_addresses():
    return jsonify({"addresses": account_service.list_addresses(g.current_user.id)}), 200


@users_bp.post("/addresses")
@require_auth
def create_address():
    data = request.get_json(silent=True)
    try:
        address = account_service.create_address(g.current_user.id, data)
    except ValidationError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create address")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"address": address.to_dict()}), 201


@users_bp.get("/wishlist")
@require_auth
def list_wishlist():
    return jsonify({"products": account_service.list_wishlist(g.current_user.id)}), 200


@users_bp.post("/wishlist/<int:product_id>")
@require_auth
def add_to_wishlist(product_id: int):
    """Idempotent: adding a product twice answers 200 the second time."""
    try:
        created = account_service.add_to_wishlist(g.current_user.id, product_id)
    except AccountError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add wishlist item")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"message": "Added to wishlist", "productId": product_id}), 201 if created else 200


@users_bp.delete("/wishlist/<int:product_id>")
@require_auth
def remove_from_wishlist(product_id: int):
    account_service.remove_from_wishlist(g.current_user.id, product_id)
    return jsonify({"message": "Removed from wishlist", "productId": product_id}), 200
