# Overview: Service-layer operations for carts; encapsulates business logic and database work.

"""
Cart Service

A cart belongs to exactly one owner: an authenticated user (preferred) or an
anonymous session id supplied by the client. Carts are created lazily.

WHY live pricing: cart lines are priced from the current catalog on every
read. Prices are frozen only when checkout snapshots the cart into an order.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Cart, CartItem, ProductVariant
from ..validation import ValidationError, cents_to_dollars, coerce_int
from storefront.time_utils import utcnow
from .concurrency import run_with_retry


MIN_QUANTITY = 1
MAX_QUANTITY = 99
MAX_SESSION_ID_LENGTH = 128


class CartError(Exception):
    """Raised for cart operation errors."""
    def __init__(self, message: str, status_code: int = 400, details: dict | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details or {}


def normalize_session_id(value) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not value:
        return None
    if len(value) > MAX_SESSION_ID_LENGTH:
        raise ValidationError("Invalid session ID")
    return value


def _require_owner(user_id: int | None, session_id: str | None, message: str = "Session ID is required") -> None:
    if not user_id and not session_id:
        raise CartError(message, 400)


def find_cart(user_id: int | None, session_id: str | None) -> Cart | None:
    """Look up the cart for an owner without creating one. The user wins over the session."""
    if user_id:
        return db.session.query(Cart).filter_by(user_id=user_id).first()
    if session_id:
        return db.session.query(Cart).filter_by(session_id=session_id, user_id=None).first()
    return None


def get_or_create_cart(user_id: int | None, session_id: str | None) -> Cart:
    """Resolve the owner's cart, creating it on first interaction. Does not commit."""
    _require_owner(user_id, session_id)
    cart = find_cart(user_id, session_id)
    if cart:
        return cart
    cart = Cart(user_id=user_id or None, session_id=None if user_id else session_id)
    db.session.add(cart)
    db.session.flush()
    return cart


def _ordered_items(cart: Cart) -> list[CartItem]:
    return (
        db.session.query(CartItem)
        .filter(CartItem.cart_id == cart.id)
        .order_by(CartItem.id.desc())
        .all()
    )


def cart_subtotal_cents(items: list[CartItem]) -> int:
    return sum(item.variant.unit_price_cents * item.quantity for item in items)


def serialize_cart(cart: Cart | None) -> dict:
    """
    Cart JSON with live prices.

    subtotal is always recomputed from the current items; itemCount is the
    sum of quantities.
    """
    if cart is None:
        return {"items": [], "subtotal": 0, "itemCount": 0}

    items = _ordered_items(cart)
    lines = []
    for item in items:
        variant = item.variant
        product = variant.product
        lines.append({
            "id": item.id,
            "quantity": item.quantity,
            "price": cents_to_dollars(variant.unit_price_cents),
            "variant": {
                "id": variant.id,
                "size": variant.size,
                "color": variant.color,
                "sku": variant.sku,
                "inStock": variant.stock_quantity > 0,
            },
            "product": {
                "id": product.id,
                "name": product.name,
                "slug": product.slug,
                "imageUrl": product.primary_image_url(),
            },
        })

    return {
        "items": lines,
        "subtotal": cents_to_dollars(cart_subtotal_cents(items)),
        "itemCount": sum(item.quantity for item in items),
    }


def _parse_quantity(value, *, minimum: int) -> int:
    quantity = coerce_int(value, "quantity")
    if quantity < minimum or quantity > MAX_QUANTITY:
        raise ValidationError(f"Quantity must be between {minimum} and {MAX_QUANTITY}")
    return quantity


def _insufficient_stock(variant: ProductVariant) -> CartError:
    return CartError(
        f"Only {variant.stock_quantity} items available",
        400,
        details={"variantId": variant.id, "available": variant.stock_quantity},
    )


def _touch(cart: Cart) -> None:
    cart.updated_at = utcnow()


def get_cart(user_id: int | None, session_id: str | None) -> dict:
    if not user_id and not session_id:
        return serialize_cart(None)

    def _op():
        cart = get_or_create_cart(user_id, session_id)
        db.session.commit()
        return serialize_cart(cart)

    return run_with_retry(_op)


def add_item(user_id: int | None, session_id: str | None, variant_id, quantity=1) -> dict:
    """
    Add a variant to the cart.

    Repeated adds of the same variant increase the existing line. The
    resulting quantity must not exceed current stock.
    """
    if variant_id is None:
        raise ValidationError("Variant ID is required")
    variant_id = coerce_int(variant_id, "variantId")
    _require_owner(user_id, session_id, "Session ID is required for guest checkout")
    quantity = _parse_quantity(quantity, minimum=MIN_QUANTITY)

    def _op():
        variant = db.session.get(ProductVariant, variant_id)
        if not variant or not variant.is_sellable:
            raise CartError("Product variant not found or unavailable", 404)

        if variant.stock_quantity < quantity:
            raise _insufficient_stock(variant)

        cart = get_or_create_cart(user_id, session_id)
        existing = db.session.query(CartItem).filter_by(cart_id=cart.id, variant_id=variant.id).first()
        if existing:
            new_quantity = existing.quantity + quantity
            if new_quantity > variant.stock_quantity:
                raise _insufficient_stock(variant)
            existing.quantity = new_quantity
            existing.updated_at = utcnow()
        else:
            db.session.add(CartItem(cart_id=cart.id, variant_id=variant.id, quantity=quantity))

        _touch(cart)
        db.session.commit()
        return serialize_cart(cart)

    return run_with_retry(_op)


def _owned_item(cart: Cart, item_id: int) -> CartItem:
    item = db.session.query(CartItem).filter_by(id=item_id, cart_id=cart.id).first()
    if not item:
        raise CartError("Cart item not found", 404)
    return item


def set_quantity(user_id: int | None, session_id: str | None, item_id: int, quantity) -> tuple[dict, bool]:
    """
    Set a line's quantity. Zero removes the line.

    Returns (cart, removed).
    """
    _require_owner(user_id, session_id)
    if quantity is None:
        raise ValidationError(f"Quantity must be between 0 and {MAX_QUANTITY}")
    quantity = _parse_quantity(quantity, minimum=0)

    def _op():
        cart = get_or_create_cart(user_id, session_id)
        item = _owned_item(cart, item_id)

        removed = quantity == 0
        if removed:
            db.session.delete(item)
        else:
            if quantity > item.variant.stock_quantity:
                raise _insufficient_stock(item.variant)
            item.quantity = quantity
            item.updated_at = utcnow()

        _touch(cart)
        db.session.commit()
        return serialize_cart(cart), removed

    return run_with_retry(_op)


def remove_item(user_id: int | None, session_id: str | None, item_id: int) -> dict:
    _require_owner(user_id, session_id)

    def _op():
        cart = get_or_create_cart(user_id, session_id)
        db.session.delete(_owned_item(cart, item_id))
        _touch(cart)
        db.session.commit()
        return serialize_cart(cart)

    return run_with_retry(_op)


def clear_cart(user_id: int | None, session_id: str | None) -> dict:
    if not user_id and not session_id:
        return serialize_cart(None)

    def _op():
        cart = find_cart(user_id, session_id)
        if cart:
            db.session.query(CartItem).filter_by(cart_id=cart.id).delete(synchronize_session=False)
            _touch(cart)
            db.session.commit()
        return serialize_cart(None)

    return run_with_retry(_op)


def clear_items_for_owner(user_id: int | None, session_id: str | None) -> int:
    """Delete every line of the owner's cart. Does not commit (checkout owns the transaction)."""
    cart = find_cart(user_id, session_id)
    if not cart:
        return 0
    return db.session.query(CartItem).filter_by(cart_id=cart.id).delete(synchronize_session=False)


def merge_guest_cart(session_id: str | None, user_id: int) -> dict | None:
    """
    Fold a guest cart into the user's cart, then delete the guest cart.

    Shared variants have their quantities summed. Returns the merged cart,
    or None when there was no guest cart (already merged or never created).
    """
    session_id = normalize_session_id(session_id)
    if not session_id:
        return None

    def _op():
        guest = db.session.query(Cart).filter_by(session_id=session_id, user_id=None).first()
        if not guest:
            return None

        user_cart = get_or_create_cart(user_id, None)
        existing = {
            item.variant_id: item
            for item in db.session.query(CartItem).filter_by(cart_id=user_cart.id).all()
        }

        for item in db.session.query(CartItem).filter_by(cart_id=guest.id).all():
            target = existing.get(item.variant_id)
            if target:
                target.quantity += item.quantity
                target.updated_at = utcnow()
            else:
                db.session.add(CartItem(cart_id=user_cart.id, variant_id=item.variant_id, quantity=item.quantity))
            db.session.delete(item)

        db.session.flush()
        db.session.delete(guest)
        _touch(user_cart)
        db.session.commit()
        return serialize_cart(user_cart)

    return run_with_retry(_op)
