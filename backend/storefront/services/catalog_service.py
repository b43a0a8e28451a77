# Overview: Service-layer operations for the product catalog; listing, detail and admin maintenance.

"""
Catalog Service

Filters are composed from SQLAlchemy expressions and bound parameters only.
Variant price = product base price + variant price adjustment.
"""

from __future__ import annotations

import re

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Category, Product, ProductVariant, ProductImage, WishlistItem
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    ValidationError,
    cents_to_dollars,
    dollars_to_cents,
    enforce_price_rules,
    validate_payload,
)
from storefront.time_utils import utcnow


SORT_OPTIONS = {
    "newest": (Product.created_at.desc(), Product.id.desc()),
    "price_asc": (Product.price_cents.asc(), Product.id.asc()),
    "price_desc": (Product.price_cents.desc(), Product.id.desc()),
    "name": (Product.name.asc(), Product.id.asc()),
}

HIGHLIGHT_LIMIT = 8
RELATED_LIMIT = 4

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "name", "slug", "description", "category_id", "price_cents", "compare_at_price_cents",
        "status", "is_featured", "is_new", "meta_title", "meta_description",
    }),
    required_on_create=frozenset({"name", "price_cents"}),
)

VARIANT_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "sku", "size", "color", "price_adjustment_cents", "stock_quantity",
        "low_stock_threshold", "is_active",
    }),
    required_on_create=frozenset({"sku"}),
)

PRODUCT_STATUSES = {"active", "draft", "archived"}


class CatalogError(Exception):
    """Raised for catalog lookups and admin maintenance errors."""
    def __init__(self, message: str, status_code: int = 400, details: dict | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details or {}


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug or "product"


def _wishlisted_ids(user_id: int | None, product_ids: list[int]) -> set[int]:
    if not user_id or not product_ids:
        return set()
    rows = (
        db.session.query(WishlistItem.product_id)
        .filter(WishlistItem.user_id == user_id, WishlistItem.product_id.in_(product_ids))
        .all()
    )
    return {row[0] for row in rows}


def _stock_by_product(product_ids: list[int]) -> dict[int, int]:
    if not product_ids:
        return {}
    rows = (
        db.session.query(ProductVariant.product_id, func.coalesce(func.sum(ProductVariant.stock_quantity), 0))
        .filter(ProductVariant.product_id.in_(product_ids), ProductVariant.is_active.is_(True))
        .group_by(ProductVariant.product_id)
        .all()
    )
    return {product_id: int(total) for product_id, total in rows}


def product_card(product: Product) -> dict:
    return {
        "id": product.id,
        "name": product.name,
        "slug": product.slug,
        "price": cents_to_dollars(product.price_cents),
        "compareAtPrice": cents_to_dollars(product.compare_at_price_cents),
        "imageUrl": product.primary_image_url(),
    }


def _price_bound_cents(value, field: str) -> int:
    cents = dollars_to_cents(value, field)
    if cents < 0:
        raise ValidationError(f"{field} must be >= 0")
    return cents


def list_products(args, user_id: int | None = None, *, page: int = 1, limit: int = 12) -> dict:
    """
    Storefront product listing.

    Supported filters: category (slug), minPrice, maxPrice (dollars), search,
    featured=true, sort in SORT_OPTIONS.
    """
    query = (
        db.session.query(Product)
        .outerjoin(Category, Product.category_id == Category.id)
        .filter(Product.status == "active")
    )

    category = args.get("category")
    if category:
        query = query.filter(Category.slug == category)

    if args.get("minPrice"):
        query = query.filter(Product.price_cents >= _price_bound_cents(args.get("minPrice"), "minPrice"))
    if args.get("maxPrice"):
        query = query.filter(Product.price_cents <= _price_bound_cents(args.get("maxPrice"), "maxPrice"))

    if args.get("featured") == "true":
        query = query.filter(Product.is_featured.is_(True))

    search = (args.get("search") or "").strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(db.or_(Product.name.ilike(pattern), Product.description.ilike(pattern)))

    sort = args.get("sort") or "newest"
    order_by = SORT_OPTIONS.get(sort, SORT_OPTIONS["newest"])

    total = query.count()
    products = query.order_by(*order_by).offset((page - 1) * limit).limit(limit).all()

    ids = [p.id for p in products]
    stock = _stock_by_product(ids)
    wishlisted = _wishlisted_ids(user_id, ids)

    items = []
    for p in products:
        data = product_card(p)
        data.update({
            "description": p.description,
            "isFeatured": p.is_featured,
            "isNew": p.is_new,
            "category": {"name": p.category.name, "slug": p.category.slug} if p.category else None,
            "inStock": stock.get(p.id, 0) > 0,
            "isWishlisted": p.id in wishlisted,
        })
        items.append(data)

    return {
        "products": items,
        "pagination": {
            "page": page,
            "limit": limit,
            "totalCount": total,
            "totalPages": (total + limit - 1) // limit,
        },
    }


def featured_products() -> list[dict]:
    products = (
        db.session.query(Product)
        .filter(Product.status == "active", Product.is_featured.is_(True))
        .order_by(Product.created_at.desc(), Product.id.desc())
        .limit(HIGHLIGHT_LIMIT)
        .all()
    )
    return [product_card(p) for p in products]


def new_arrivals() -> list[dict]:
    products = (
        db.session.query(Product)
        .filter(Product.status == "active")
        .order_by(
            Product.published_at.is_(None),
            Product.published_at.desc(),
            Product.created_at.desc(),
            Product.id.desc(),
        )
        .limit(HIGHLIGHT_LIMIT)
        .all()
    )
    return [product_card(p) for p in products]


def variant_detail(variant: ProductVariant) -> dict:
    return {
        "id": variant.id,
        "sku": variant.sku,
        "size": variant.size,
        "color": variant.color,
        "price": cents_to_dollars(variant.unit_price_cents),
        "stockQuantity": variant.stock_quantity,
        "inStock": variant.stock_quantity > 0,
        "lowStock": 0 < variant.stock_quantity <= variant.low_stock_threshold,
    }


def get_product_detail(slug: str, user_id: int | None = None) -> dict:
    product = db.session.query(Product).filter_by(slug=slug, status="active").first()
    if not product:
        raise CatalogError("Product not found", 404)

    images = sorted(product.images, key=lambda img: (img.sort_order, img.id))
    variants = sorted(
        (v for v in product.variants if v.is_active),
        key=lambda v: (v.size or "", v.color or "", v.id),
    )

    related = []
    if product.category_id:
        related_rows = (
            db.session.query(Product)
            .filter(
                Product.category_id == product.category_id,
                Product.id != product.id,
                Product.status == "active",
            )
            .order_by(func.random())
            .limit(RELATED_LIMIT)
            .all()
        )
        related = [product_card(p) for p in related_rows]

    return {
        "id": product.id,
        "name": product.name,
        "slug": product.slug,
        "description": product.description,
        "price": cents_to_dollars(product.price_cents),
        "compareAtPrice": cents_to_dollars(product.compare_at_price_cents),
        "isFeatured": product.is_featured,
        "isNew": product.is_new,
        "metaTitle": product.meta_title,
        "metaDescription": product.meta_description,
        "category": {"name": product.category.name, "slug": product.category.slug} if product.category else None,
        "images": [{"id": img.id, "url": img.url, "altText": img.alt_text} for img in images],
        "variants": [variant_detail(v) for v in variants],
        "isWishlisted": bool(_wishlisted_ids(user_id, [product.id])),
        "relatedProducts": related,
    }


def _active_counts_by_category() -> dict[int, int]:
    rows = (
        db.session.query(Product.category_id, func.count(Product.id))
        .filter(Product.status == "active", Product.category_id.isnot(None))
        .group_by(Product.category_id)
        .all()
    )
    return {category_id: int(count) for category_id, count in rows}


def _category_dict(category: Category, counts: dict[int, int]) -> dict:
    return {
        "id": category.id,
        "name": category.name,
        "slug": category.slug,
        "description": category.description,
        "imageUrl": category.image_url,
        "parentId": category.parent_id,
        "productCount": counts.get(category.id, 0),
    }


def list_categories() -> list[dict]:
    categories = (
        db.session.query(Category)
        .filter(Category.is_active.is_(True))
        .order_by(Category.sort_order.asc(), Category.name.asc())
        .all()
    )
    counts = _active_counts_by_category()
    return [_category_dict(c, counts) for c in categories]


def get_category(slug: str) -> dict:
    category = db.session.query(Category).filter_by(slug=slug, is_active=True).first()
    if not category:
        raise CatalogError("Category not found", 404)
    data = _category_dict(category, _active_counts_by_category())
    data["children"] = [
        {"id": child.id, "name": child.name, "slug": child.slug}
        for child in sorted(category.children, key=lambda c: (c.sort_order, c.name))
        if child.is_active
    ]
    return data


# Admin maintenance

def admin_product_dict(product: Product) -> dict:
    return {
        "id": product.id,
        "name": product.name,
        "slug": product.slug,
        "description": product.description,
        "categoryId": product.category_id,
        "price": cents_to_dollars(product.price_cents),
        "priceCents": product.price_cents,
        "compareAtPriceCents": product.compare_at_price_cents,
        "status": product.status,
        "isFeatured": product.is_featured,
        "isNew": product.is_new,
        "variants": [v.to_dict() for v in sorted(product.variants, key=lambda v: v.id)],
    }


def admin_list_products(*, status: str | None, page: int, limit: int) -> dict:
    query = db.session.query(Product)
    if status:
        query = query.filter(Product.status == status)
    total = query.count()
    products = (
        query.order_by(Product.created_at.desc(), Product.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "products": [admin_product_dict(p) for p in products],
        "pagination": {
            "page": page,
            "limit": limit,
            "totalCount": total,
            "totalPages": (total + limit - 1) // limit,
        },
    }


def _check_product_patch(patch: dict) -> None:
    enforce_price_rules(patch, "price_cents")
    enforce_price_rules(patch, "compare_at_price_cents")
    if "status" in patch and patch["status"] not in PRODUCT_STATUSES:
        raise ValidationError(f"status must be one of {sorted(PRODUCT_STATUSES)}")
    if patch.get("category_id") is not None and not db.session.get(Category, patch["category_id"]):
        raise ValidationError("Category not found")


def create_product(payload: dict, images: list | None = None) -> Product:
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    _check_product_patch(patch)

    patch["slug"] = slugify(patch.get("slug") or patch["name"])
    if db.session.query(Product).filter_by(slug=patch["slug"]).first():
        raise ConflictError(f"Product slug already exists: {patch['slug']}")

    product = Product(**patch)
    if product.status in (None, "active"):
        product.published_at = utcnow()
    db.session.add(product)
    db.session.flush()

    for position, image in enumerate(images or []):
        url = image.get("url") if isinstance(image, dict) else image
        if not isinstance(url, str) or not url.strip():
            raise ValidationError("Each image requires a url")
        db.session.add(ProductImage(
            product_id=product.id,
            url=url.strip(),
            alt_text=image.get("altText") if isinstance(image, dict) else None,
            sort_order=position,
        ))

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Product could not be created (duplicate value)")
    return product


def _check_variant_patch(patch: dict) -> None:
    enforce_price_rules(patch, "price_adjustment_cents", allow_negative=True)
    if patch.get("stock_quantity") is not None and patch["stock_quantity"] < 0:
        raise ValidationError("stock_quantity must be >= 0")
    if patch.get("low_stock_threshold") is not None and patch["low_stock_threshold"] < 0:
        raise ValidationError("low_stock_threshold must be >= 0")


def add_variant(product_id: int, payload: dict) -> ProductVariant:
    product = db.session.get(Product, product_id)
    if not product:
        raise CatalogError("Product not found", 404)

    patch = validate_payload(model=ProductVariant, payload=payload, policy=VARIANT_POLICY, partial=False)
    _check_variant_patch(patch)

    if db.session.query(ProductVariant).filter_by(sku=patch["sku"]).first():
        raise ConflictError(f"SKU already exists: {patch['sku']}")

    variant = ProductVariant(product_id=product.id, **patch)
    db.session.add(variant)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"SKU already exists: {patch['sku']}")
    return variant


def update_variant(variant_id: int, payload: dict) -> ProductVariant:
    variant = db.session.get(ProductVariant, variant_id)
    if not variant:
        raise CatalogError("Variant not found", 404)

    patch = validate_payload(model=ProductVariant, payload=payload, policy=VARIANT_POLICY, partial=True)
    _check_variant_patch(patch)

    if "sku" in patch and patch["sku"] != variant.sku:
        if db.session.query(ProductVariant).filter_by(sku=patch["sku"]).first():
            raise ConflictError(f"SKU already exists: {patch['sku']}")

    for key, value in patch.items():
        setattr(variant, key, value)
    db.session.commit()
    return variant
