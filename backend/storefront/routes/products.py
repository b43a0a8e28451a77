# Overview: Flask API routes for storefront catalog reads; parses input and returns JSON responses.

# backend/storefront/routes/products.py
"""
Public catalog routes.

SECURITY: All routes are public. A valid access token only adds
per-user fields (isWishlisted).
"""
from flask import Blueprint, request, jsonify, current_app

from ..services import catalog_service
from ..services.catalog_service import CatalogError
from ..validation import ValidationError, parse_pagination
from ..decorators import optional_auth, current_user_id

products_bp = Blueprint("products", __name__, url_prefix="/api/products")
categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")


@products_bp.get("")
@optional_auth
def list_products():
    """
    List active products.

    Query params:
    - category: category slug
    - minPrice, maxPrice: dollars
    - search: case-insensitive match on name and description
    - featured: "true" to restrict to featured products
    - sort: newest | price_asc | price_desc | name
    - page, limit: pagination (default limit 12, max 100)
    """
    page, limit = parse_pagination(request.args, default_limit=12)
    try:
        result = catalog_service.list_products(request.args, current_user_id(), page=page, limit=limit)
    except (ValidationError, CatalogError) as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list products")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(result), 200


@products_bp.get("/featured")
def featured_products():
    return jsonify({"products": catalog_service.featured_products()}), 200


@products_bp.get("/new-arrivals")
def new_arrivals():
    return jsonify({"products": catalog_service.new_arrivals()}), 200


@products_bp.get("/<slug>")
@optional_auth
def get_product(slug: str):
    try:
        product = catalog_service.get_product_detail(slug, current_user_id())
    except CatalogError as e:
        return jsonify({"error": str(e), **e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load product")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"product": product}), 200


@categories_bp.get("")
def list_categories():
    return jsonify({"categories": catalog_service.list_categories()}), 200


@categories_bp.get("/<slug>")
def get_category(slug: str):
    try:
        category = catalog_service.get_category(slug)
    except CatalogError as e:
        return jsonify({"error": str(e), **e.details}), e.status_code
    return jsonify({"category": category}), 200
