# Overview: Flask API routes for staff order and catalog maintenance; parses input and returns JSON responses.

# backend/storefront/routes/admin.py
"""
Admin routes.

SECURITY: Every route requires authentication and a staff role
(admin or super_admin).

Catalog payloads use column names (name, price_cents, stock_quantity, ...);
unknown or read-only fields are rejected.
"""
from flask import Blueprint, request, jsonify, current_app

from ..services import catalog_service, order_service
from ..services.catalog_service import CatalogError
from ..services.order_service import OrderError
from ..validation import ValidationError, ConflictError, parse_pagination
from ..decorators import require_auth, require_staff

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@admin_bp.get("/orders")
@require_auth
@require_staff
def list_orders():
    """Query params: status, page, limit"""
    page, limit = parse_pagination(request.args)
    try:
        result = order_service.admin_list_orders(status=request.args.get("status"), page=page, limit=limit)
    except ValidationError as e:
        return jsonify({"error": str(e)}), e.status_code
    return jsonify(result), 200


@admin_bp.patch("/orders/<int:order_id>")
@require_auth
@require_staff
def update_order(order_id: int):
    """
    Body: { status?, trackingNumber? }

    Status changes follow the fulfilment state machine; paid is reachable
    only through the processor.
    """
    data = request.get_json(silent=True) or {}
    try:
        order = order_service.admin_update_order(order_id, data)
    except OrderError as e:
        return jsonify({"error": str(e), **e.details}), e.status_code
    except ValidationError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"order": order.to_dict()}), 200


@admin_bp.get("/products")
@require_auth
@require_staff
def list_products():
    page, limit = parse_pagination(request.args)
    return jsonify(catalog_service.admin_list_products(
        status=request.args.get("status"), page=page, limit=limit,
    )), 200


@admin_bp.post("/products")
@require_auth
@require_staff
def create_product():
    """Body: product columns plus optional images: [url | {url, altText}]"""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Invalid JSON payload"}), 400
    payload = dict(data)
    images = payload.pop("images", None)
    if images is not None and not isinstance(images, list):
        return jsonify({"error": "images must be a list"}), 400

    try:
        product = catalog_service.create_product(payload, images)
    except (ValidationError, ConflictError) as e:
        return jsonify({"error": str(e)}), e.status_code
    except CatalogError as e:
        return jsonify({"error": str(e), **e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"product": catalog_service.admin_product_dict(product)}), 201


@admin_bp.post("/products/<int:product_id>/variants")
@require_auth
@require_staff
def add_variant(product_id: int):
    data = request.get_json(silent=True)
    try:
        variant = catalog_service.add_variant(product_id, data)
    except (ValidationError, ConflictError) as e:
        return jsonify({"error": str(e)}), e.status_code
    except CatalogError as e:
        return jsonify({"error": str(e), **e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add variant")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"variant": variant.to_dict()}), 201


@admin_bp.patch("/variants/<int:variant_id>")
@require_auth
@require_staff
def update_variant(variant_id: int):
    """Adjust stock, price adjustment or active flag."""
    data = request.get_json(silent=True)
    try:
        variant = catalog_service.update_variant(variant_id, data)
    except (ValidationError, ConflictError) as e:
        return jsonify({"error": str(e)}), e.status_code
    except CatalogError as e:
        return jsonify({"error": str(e), **e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update variant")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"variant": variant.to_dict()}), 200
