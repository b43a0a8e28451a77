# Overview: Service-layer operations for customer accounts; profile, address book and wishlist.

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Address, Product, User, WishlistItem
from ..validation import ModelValidationPolicy, ValidationError, validate_payload
from .catalog_service import product_card


PROFILE_FIELDS = {"firstName": "first_name", "lastName": "last_name", "phone": "phone"}

ADDRESS_FIELDS = {
    "firstName": "first_name",
    "lastName": "last_name",
    "line1": "line1",
    "line2": "line2",
    "city": "city",
    "state": "state",
    "postalCode": "postal_code",
    "country": "country",
    "phone": "phone",
    "isDefault": "is_default",
}

PROFILE_POLICY = ModelValidationPolicy(
    writable_fields=frozenset(PROFILE_FIELDS.values()),
    aliases=PROFILE_FIELDS,
)

ADDRESS_POLICY = ModelValidationPolicy(
    writable_fields=frozenset(ADDRESS_FIELDS.values()),
    required_on_create=frozenset({"first_name", "last_name", "line1", "city", "postal_code"}),
    aliases=ADDRESS_FIELDS,
)


class AccountError(Exception):
    """Raised for account maintenance errors."""
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


def update_profile(user: User, payload: dict) -> User:
    patch = validate_payload(
        model=User,
        payload=payload,
        policy=PROFILE_POLICY,
        partial=True,
    )
    for key, value in patch.items():
        setattr(user, key, value)
    db.session.commit()
    return user


def list_addresses(user_id: int) -> list[dict]:
    addresses = (
        db.session.query(Address)
        .filter(Address.user_id == user_id)
        .order_by(Address.is_default.desc(), Address.created_at.desc(), Address.id.desc())
        .all()
    )
    return [a.to_dict() for a in addresses]


def create_address(user_id: int, payload: dict) -> Address:
    patch = validate_payload(
        model=Address,
        payload=payload,
        policy=ADDRESS_POLICY,
        partial=False,
    )
    if patch.get("country") is not None and len(patch["country"]) != 2:
        raise ValidationError("country must be a two-letter code")

    if patch.get("is_default"):
        (
            db.session.query(Address)
            .filter(Address.user_id == user_id, Address.is_default.is_(True))
            .update({Address.is_default: False}, synchronize_session=False)
        )

    address = Address(user_id=user_id, **patch)
    db.session.add(address)
    db.session.commit()
    return address


def list_wishlist(user_id: int) -> list[dict]:
    items = (
        db.session.query(WishlistItem)
        .filter(WishlistItem.user_id == user_id)
        .order_by(WishlistItem.created_at.desc(), WishlistItem.id.desc())
        .all()
    )
    return [product_card(item.product) for item in items]


def add_to_wishlist(user_id: int, product_id: int) -> bool:
    """Idempotent add. Returns True when a new row was created."""
    if not db.session.get(Product, product_id):
        raise AccountError("Product not found", 404)

    if db.session.query(WishlistItem.id).filter_by(user_id=user_id, product_id=product_id).first():
        return False

    db.session.add(WishlistItem(user_id=user_id, product_id=product_id))
    try:
        db.session.commit()
    except IntegrityError:
        # Concurrent add of the same product
        db.session.rollback()
        return False
    return True


def remove_from_wishlist(user_id: int, product_id: int) -> None:
    db.session.query(WishlistItem).filter_by(user_id=user_id, product_id=product_id).delete(
        synchronize_session=False
    )
    db.session.commit()
