# Overview: Service-layer operations for raffles; entry windows, tier-weighted draws and admin lifecycle.

"""
Raffle Service - limited drop allocation

Raffle lifecycle: active -> drawn -> completed, or -> cancelled.
"Open for entry" is derived, never stored:
    entry_start <= now < entry_end AND status == active

Entries snapshot the user's loyalty tier and its priority multiplier
(STARTER 1x, ELEVATED 2x, ELITE 5x). The snapshot is permanent.

Draw: every pending entry is repeated priority_multiplier times in a pool,
the pool is shuffled and walked, and each user can win at most once. Higher
tiers raise the odds in proportion to the multiplier but never guarantee a
win.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Address, Product, ProductVariant, Raffle, RaffleEntry
from ..models.raffles import (
    ENTRY_STATUS_LOST,
    ENTRY_STATUS_PENDING,
    ENTRY_STATUS_WON,
    RAFFLE_STATUS_ACTIVE,
    RAFFLE_STATUS_CANCELLED,
    RAFFLE_STATUS_COMPLETED,
    RAFFLE_STATUS_DRAWN,
)
from ..validation import ValidationError, cents_to_dollars, coerce_int, dollars_to_cents
from storefront.time_utils import as_naive_utc, parse_iso_datetime, utcnow
from .concurrency import lock_for_update, run_with_retry
from .loyalty_service import ELEVATED, ELITE, STARTER, get_account


logger = logging.getLogger(__name__)

PRIORITY_MULTIPLIERS = {STARTER: 1, ELEVATED: 2, ELITE: 5}

LIST_FILTERS = ("active", "upcoming", "ended", "all")

SIZE_ORDER = {"XS": 1, "S": 2, "M": 3, "L": 4, "XL": 5, "XXL": 6}


class RaffleError(Exception):
    """Raised for raffle operation errors."""
    def __init__(self, message: str, status_code: int = 400, details: dict | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details or {}


def multiplier_for_tier(tier: str) -> int:
    return PRIORITY_MULTIPLIERS.get(tier, 1)


def is_open_for_entry(raffle: Raffle, now: datetime | None = None) -> bool:
    now = now or utcnow()
    return (
        raffle.status == RAFFLE_STATUS_ACTIVE
        and as_naive_utc(raffle.entry_start) <= now < as_naive_utc(raffle.entry_end)
    )


def _entry_counts(raffle_ids: list[int]) -> dict[int, int]:
    if not raffle_ids:
        return {}
    rows = (
        db.session.query(RaffleEntry.raffle_id, func.count(RaffleEntry.id))
        .filter(RaffleEntry.raffle_id.in_(raffle_ids))
        .group_by(RaffleEntry.raffle_id)
        .all()
    )
    return {raffle_id: int(count) for raffle_id, count in rows}


def _raffle_summary(raffle: Raffle, entry_count: int, now: datetime) -> dict:
    data = raffle.to_dict()
    product = raffle.product
    data.update({
        "productName": product.name if product else None,
        "productSlug": product.slug if product else None,
        "productImage": product.primary_image_url() if product else None,
        "currentEntries": entry_count,
        "isActive": is_open_for_entry(raffle, now),
    })
    return data


def list_raffles(status_filter: str | None = "active") -> list[dict]:
    status_filter = status_filter or "active"
    if status_filter not in LIST_FILTERS:
        raise ValidationError(f"status must be one of {list(LIST_FILTERS)}")

    now = utcnow()
    query = db.session.query(Raffle)
    if status_filter == "active":
        query = query.filter(
            Raffle.status == RAFFLE_STATUS_ACTIVE,
            Raffle.entry_start <= now,
            Raffle.entry_end > now,
        )
    elif status_filter == "upcoming":
        query = query.filter(Raffle.status == RAFFLE_STATUS_ACTIVE, Raffle.entry_start > now)
    elif status_filter == "ended":
        query = query.filter(
            db.or_(
                Raffle.status.in_([RAFFLE_STATUS_DRAWN, RAFFLE_STATUS_COMPLETED]),
                db.and_(Raffle.status == RAFFLE_STATUS_ACTIVE, Raffle.entry_end <= now),
            )
        )

    raffles = query.order_by(Raffle.entry_start.asc(), Raffle.id.asc()).all()
    counts = _entry_counts([r.id for r in raffles])
    return [_raffle_summary(r, counts.get(r.id, 0), now) for r in raffles]


def _get_raffle(raffle_id: int) -> Raffle:
    raffle = db.session.get(Raffle, raffle_id)
    if not raffle:
        raise RaffleError("Raffle not found", 404)
    return raffle


def get_raffle_detail(raffle_id: int) -> dict:
    raffle = _get_raffle(raffle_id)
    data = _raffle_summary(raffle, _entry_counts([raffle.id]).get(raffle.id, 0), utcnow())

    sizes = []
    product = raffle.product
    if product:
        variants = (
            db.session.query(ProductVariant)
            .filter(
                ProductVariant.product_id == product.id,
                ProductVariant.is_active.is_(True),
                ProductVariant.stock_quantity > 0,
            )
            .all()
        )
        variants.sort(key=lambda v: (SIZE_ORDER.get((v.size or "").upper(), 7), v.size or "", v.id))
        sizes = [{"size": v.size, "variantId": v.id, "stock": v.stock_quantity} for v in variants]
        data.update({
            "productDescription": product.description,
            "productPrice": cents_to_dollars(product.price_cents),
        })

    data["availableSizes"] = sizes
    return data


def enter_raffle(raffle_id: int, user_id: int, payload: dict) -> RaffleEntry:
    """
    Enter a user into an open raffle.

    Rejects closed raffles (400), duplicate entries (409) and full raffles
    (409). The user's loyalty tier and multiplier are snapshotted.
    """
    size_preference = payload.get("sizePreference")
    if size_preference is not None:
        if not isinstance(size_preference, str) or len(size_preference.strip()) > 16:
            raise ValidationError("sizePreference must be a string of at most 16 characters")
        size_preference = size_preference.strip() or None

    shipping_address_id = payload.get("shippingAddressId")
    if shipping_address_id is not None:
        shipping_address_id = coerce_int(shipping_address_id, "shippingAddressId")
        address = db.session.get(Address, shipping_address_id)
        if not address or address.user_id != user_id:
            raise RaffleError("Shipping address not found", 404)

    def _op():
        raffle = lock_for_update(db.session.query(Raffle).filter_by(id=raffle_id)).first()
        if not raffle:
            raise RaffleError("Raffle not found", 404)

        if not is_open_for_entry(raffle):
            raise RaffleError("Raffle is not currently accepting entries", 400)

        existing = db.session.query(RaffleEntry.id).filter_by(raffle_id=raffle.id, user_id=user_id).first()
        if existing:
            raise RaffleError("You have already entered this raffle", 409)

        if raffle.max_entries:
            count = db.session.query(func.count(RaffleEntry.id)).filter(RaffleEntry.raffle_id == raffle.id).scalar()
            if count >= raffle.max_entries:
                raise RaffleError("Raffle has reached maximum entries", 409)

        account = get_account(user_id)
        tier = account.tier if account else STARTER

        entry = RaffleEntry(
            raffle_id=raffle.id,
            user_id=user_id,
            size_preference=size_preference,
            shipping_address_id=shipping_address_id,
            loyalty_tier=tier,
            priority_multiplier=multiplier_for_tier(tier),
            status=ENTRY_STATUS_PENDING,
            created_at=utcnow(),
        )
        db.session.add(entry)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise RaffleError("You have already entered this raffle", 409)
        return entry

    return run_with_retry(_op)


def entry_status(raffle_id: int, user_id: int) -> dict:
    entry = db.session.query(RaffleEntry).filter_by(raffle_id=raffle_id, user_id=user_id).first()
    if not entry:
        return {"entered": False, "status": None}
    raffle = entry.raffle
    data = entry.to_dict()
    return {
        "entered": True,
        "status": entry.status,
        "sizePreference": entry.size_preference,
        "tier": entry.loyalty_tier,
        "priorityMultiplier": entry.priority_multiplier,
        "enteredAt": data["enteredAt"],
        "wonAt": data["wonAt"],
        "raffleStatus": raffle.status,
        "drawDate": raffle.to_dict()["drawDate"],
    }


def user_entries(user_id: int) -> list[dict]:
    entries = (
        db.session.query(RaffleEntry)
        .filter(RaffleEntry.user_id == user_id)
        .order_by(RaffleEntry.created_at.desc(), RaffleEntry.id.desc())
        .all()
    )
    results = []
    for entry in entries:
        raffle = entry.raffle
        product = raffle.product
        data = entry.to_dict()
        data.update({
            "raffleTitle": raffle.title,
            "raffleStatus": raffle.status,
            "drawDate": raffle.to_dict()["drawDate"],
            "productName": product.name if product else None,
            "productSlug": product.slug if product else None,
            "productImage": product.primary_image_url() if product else None,
        })
        results.append(data)
    return results


def select_winners(entries: list[RaffleEntry], winners_count: int, rng: random.Random) -> list[RaffleEntry]:
    """
    Weighted selection without replacement.

    Each entry appears priority_multiplier times in the pool; after a
    shuffle the pool is walked and the first occurrence of each user wins
    until min(winners_count, distinct users) winners are chosen.
    """
    pool = [entry for entry in entries for _ in range(max(1, entry.priority_multiplier))]
    rng.shuffle(pool)

    target = min(winners_count, len({e.user_id for e in entries}))
    chosen_users: set[int] = set()
    winners: list[RaffleEntry] = []
    for entry in pool:
        if len(winners) >= target:
            break
        if entry.user_id in chosen_users:
            continue
        chosen_users.add(entry.user_id)
        winners.append(entry)
    return winners


def draw_raffle(raffle_id: int, rng: random.Random | None = None) -> dict:
    """
    One-shot draw. Winners are marked won, every other pending entry lost,
    and the raffle becomes drawn, all in one transaction.
    """
    rng = rng or random.SystemRandom()

    def _op():
        raffle = lock_for_update(db.session.query(Raffle).filter_by(id=raffle_id)).first()
        if not raffle:
            raise RaffleError("Raffle not found", 404)

        if raffle.status in (RAFFLE_STATUS_DRAWN, RAFFLE_STATUS_COMPLETED):
            raise RaffleError("Raffle has already been drawn", 400)
        if raffle.status == RAFFLE_STATUS_CANCELLED:
            raise RaffleError("Cannot draw a cancelled raffle", 400)

        entries = (
            db.session.query(RaffleEntry)
            .filter_by(raffle_id=raffle.id, status=ENTRY_STATUS_PENDING)
            .order_by(RaffleEntry.id.asc())
            .all()
        )
        if not entries:
            raise RaffleError("No entries to draw from", 400)

        winners = select_winners(entries, raffle.winners_count, rng)
        now = utcnow()
        for winner in winners:
            winner.status = ENTRY_STATUS_WON
            winner.won_at = now
        db.session.flush()

        (
            db.session.query(RaffleEntry)
            .filter_by(raffle_id=raffle.id, status=ENTRY_STATUS_PENDING)
            .update({RaffleEntry.status: ENTRY_STATUS_LOST}, synchronize_session=False)
        )

        raffle.status = RAFFLE_STATUS_DRAWN
        raffle.drawn_at = now
        db.session.commit()

        logger.info("Raffle %s drawn: %s winners from %s entries", raffle.id, len(winners), len(entries))
        return {
            "message": f"Drew {len(winners)} winners",
            "winnersCount": len(winners),
            "totalEntries": len(entries),
        }

    return run_with_retry(_op)


def _parse_window(payload: dict, field: str, required: bool) -> datetime | None:
    raw = payload.get(field)
    if raw is None:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if not isinstance(raw, str):
        raise ValidationError(f"{field} must be an ISO-8601 datetime")
    try:
        value = parse_iso_datetime(raw)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")
    if value is None and required:
        raise ValidationError(f"{field} is required")
    return value


def create_raffle(payload: dict) -> Raffle:
    title = payload.get("title")
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("title is required")

    entry_start = _parse_window(payload, "entryStart", True)
    entry_end = _parse_window(payload, "entryEnd", True)
    draw_date = _parse_window(payload, "drawDate", False)
    if entry_end <= entry_start:
        raise ValidationError("entryEnd must be after entryStart")
    if draw_date is not None and draw_date < entry_end:
        raise ValidationError("drawDate must not be before entryEnd")

    winners_count = coerce_int(payload.get("winnersCount", 1), "winnersCount")
    if winners_count < 1:
        raise ValidationError("winnersCount must be >= 1")

    max_entries = payload.get("maxEntries")
    if max_entries is not None:
        max_entries = coerce_int(max_entries, "maxEntries")
        if max_entries < 1:
            raise ValidationError("maxEntries must be >= 1")

    product_id = payload.get("productId")
    if product_id is not None:
        product_id = coerce_int(product_id, "productId")
        if not db.session.get(Product, product_id):
            raise RaffleError("Product not found", 404)

    retail_price_cents = None
    if payload.get("retailPrice") is not None:
        retail_price_cents = dollars_to_cents(payload.get("retailPrice"), "retailPrice")
        if retail_price_cents < 0:
            raise ValidationError("retailPrice must be >= 0")

    raffle = Raffle(
        title=title.strip()[:255],
        description=payload.get("description"),
        rules=payload.get("rules"),
        product_id=product_id,
        retail_price_cents=retail_price_cents,
        entry_start=entry_start,
        entry_end=entry_end,
        draw_date=draw_date,
        max_entries=max_entries,
        winners_count=winners_count,
        status=RAFFLE_STATUS_ACTIVE,
    )
    db.session.add(raffle)
    db.session.commit()
    return raffle


def cancel_raffle(raffle_id: int) -> Raffle:
    def _op():
        raffle = lock_for_update(db.session.query(Raffle).filter_by(id=raffle_id)).first()
        if not raffle:
            raise RaffleError("Raffle not found", 404)
        if raffle.status != RAFFLE_STATUS_ACTIVE:
            raise RaffleError(f"Cannot cancel a raffle that is {raffle.status}", 400)
        raffle.status = RAFFLE_STATUS_CANCELLED
        db.session.commit()
        return raffle

    return run_with_retry(_op)


def complete_raffle(raffle_id: int) -> Raffle:
    def _op():
        raffle = lock_for_update(db.session.query(Raffle).filter_by(id=raffle_id)).first()
        if not raffle:
            raise RaffleError("Raffle not found", 404)
        if raffle.status != RAFFLE_STATUS_DRAWN:
            raise RaffleError("Only drawn raffles can be completed", 400)
        raffle.status = RAFFLE_STATUS_COMPLETED
        db.session.commit()
        return raffle

    return run_with_retry(_op)
