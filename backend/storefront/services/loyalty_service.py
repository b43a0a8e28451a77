# Overview: Service-layer operations for the loyalty program; tiers, earning, redemption and the rewards catalog.

"""
Loyalty Service

Tiers are a pure function of points:
    ELITE     >= 5000
    ELEVATED  >= 1000
    STARTER   otherwise

WHY: Earn and redeem are read-modify-write on a single account row, so both
run under SELECT ... FOR UPDATE on the account (plus the version_id
optimistic check) to keep concurrent changes for the same user from losing
updates. Every change appends one immutable ledger row.

Tier caching: earn recomputes the cached tier from the new balance; redeem
lowers the balance but leaves the cached tier alone (no downgrade on spend).
"""

from __future__ import annotations

import math
import secrets
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import LoyaltyAccount, LoyaltyTransaction, Order, User
from ..models.orders import PAYMENT_STATUS_PAID
from ..validation import ValidationError, cents_to_dollars, coerce_decimal, coerce_int
from .concurrency import lock_for_update, run_with_retry


STARTER = "STARTER"
ELEVATED = "ELEVATED"
ELITE = "ELITE"

TIER_ORDER = (STARTER, ELEVATED, ELITE)
TIER_THRESHOLDS = {STARTER: 0, ELEVATED: 1000, ELITE: 5000}

POINTS_PER_DOLLAR = 2

SOURCE_PURCHASE = "purchase"
ADMIN_SOURCES = frozenset({"review", "referral", "bonus", "manual"})
EARN_SOURCES = ADMIN_SOURCES | {SOURCE_PURCHASE}

RECENT_TRANSACTIONS = 10


TIER_DETAILS = {
    STARTER: {
        "name": "Starter",
        "benefits": [
            "Welcome gift on first purchase",
            "Birthday reward",
            "Member-only sales access",
        ],
        "earlyAccessHours": 0,
    },
    ELEVATED: {
        "name": "Elevated",
        "benefits": [
            "All Starter benefits",
            "24-hour early drop access",
            "Free shipping on orders over $100",
            "Exclusive colorways access",
        ],
        "earlyAccessHours": 24,
    },
    ELITE: {
        "name": "Elite",
        "benefits": [
            "All Elevated benefits",
            "48-hour early drop access",
            "Free shipping on all orders",
            "VIP event invitations",
            "Limited edition products",
            "Personal styling sessions",
        ],
        "earlyAccessHours": 48,
    },
}


@dataclass(frozen=True)
class Reward:
    id: str
    name: str
    description: str
    points_cost: int
    type: str
    value: int | None
    min_tier: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "pointsCost": self.points_cost,
            "type": self.type,
            "value": self.value,
            "minTier": self.min_tier,
        }


REWARDS = (
    Reward("discount-10", "$10 Off", "Get $10 off your next order", 500, "discount", 10, STARTER),
    Reward("discount-25", "$25 Off", "Get $25 off your next order", 1000, "discount", 25, STARTER),
    Reward("free-shipping", "Free Shipping", "Free shipping on your next order", 300, "shipping", 0, STARTER),
    Reward("exclusive-tee", "Member Exclusive Tee", "Redeem for a limited edition HYOW member tee", 2500, "product", None, ELEVATED),
    Reward("styling-session", "Personal Styling Session", "30-minute virtual styling session with HYOW team", 5000, "experience", None, ELITE),
)
REWARDS_BY_ID = {r.id: r for r in REWARDS}


class LoyaltyError(Exception):
    """Raised for loyalty operation errors."""
    def __init__(self, message: str, status_code: int = 400, details: dict | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details or {}


def tier_for_points(points: int) -> str:
    if points >= TIER_THRESHOLDS[ELITE]:
        return ELITE
    if points >= TIER_THRESHOLDS[ELEVATED]:
        return ELEVATED
    return STARTER


def tier_rank(tier: str) -> int:
    return TIER_ORDER.index(tier) if tier in TIER_ORDER else 0


def next_tier(tier: str) -> str | None:
    rank = tier_rank(tier)
    return TIER_ORDER[rank + 1] if rank + 1 < len(TIER_ORDER) else None


def _tier_bounds(tier: str) -> dict:
    upper = next_tier(tier)
    return {
        "id": tier,
        "minPoints": TIER_THRESHOLDS[tier],
        "maxPoints": TIER_THRESHOLDS[upper] - 1 if upper else None,
        **TIER_DETAILS[tier],
    }


def tiers_info() -> dict:
    return {
        "tiers": [_tier_bounds(t) for t in TIER_ORDER],
        "pointsPerDollar": POINTS_PER_DOLLAR,
    }


def get_account(user_id: int) -> LoyaltyAccount | None:
    return db.session.query(LoyaltyAccount).filter_by(user_id=user_id).first()


def get_or_create_account(user_id: int) -> LoyaltyAccount:
    """Lazily open an account; tolerates a concurrent first request creating it."""
    account = get_account(user_id)
    if account:
        return account
    account = LoyaltyAccount(user_id=user_id, points_balance=0, lifetime_points=0, tier=STARTER)
    db.session.add(account)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        account = get_account(user_id)
        if account is None:
            raise
    return account


def _locked_account(user_id: int) -> LoyaltyAccount:
    get_or_create_account(user_id)
    return lock_for_update(db.session.query(LoyaltyAccount).filter_by(user_id=user_id)).first()


def get_status(user_id: int) -> dict:
    account = get_or_create_account(user_id)
    current = account.tier
    upcoming = next_tier(current)

    recent = (
        db.session.query(LoyaltyTransaction)
        .filter(LoyaltyTransaction.user_id == user_id)
        .order_by(LoyaltyTransaction.created_at.desc(), LoyaltyTransaction.id.desc())
        .limit(RECENT_TRANSACTIONS)
        .all()
    )

    if upcoming:
        target = TIER_THRESHOLDS[upcoming]
        points_to_next = max(0, target - account.points_balance)
        progress = min(100, round(account.points_balance / target * 100))
    else:
        points_to_next = None
        progress = 100

    data = account.to_dict()
    data.update({"tier": current, "tierName": TIER_DETAILS[current]["name"], "joinedAt": data.pop("createdAt")})
    return {
        "account": data,
        "tierInfo": {
            "current": _tier_bounds(current),
            "next": _tier_bounds(upcoming) if upcoming else None,
            "pointsToNextTier": points_to_next,
            "progressPercent": progress,
        },
        "recentTransactions": [t.to_dict() for t in recent],
    }


def _purchase_points(user_id: int, order_id, amount: Decimal) -> tuple[int, Order]:
    if order_id is None:
        raise ValidationError("orderId is required for purchase points")
    order = db.session.get(Order, coerce_int(order_id, "orderId"))
    if not order or order.user_id != user_id:
        raise LoyaltyError("Order not found", 404)
    if order.payment_status != PAYMENT_STATUS_PAID:
        raise LoyaltyError("Points can only be earned on paid orders", 400)
    if amount * 100 > order.total_cents:
        raise LoyaltyError(
            "Amount exceeds order total",
            400,
            details={"orderTotal": cents_to_dollars(order.total_cents)},
        )
    return math.floor(amount * POINTS_PER_DOLLAR), order


def earn_points(actor: User, payload: dict) -> dict:
    """
    Award points.

    purchase: points = floor(amount * 2) against a paid order of the
    caller, awarded at most once per order.
    review/referral/bonus/manual: amount is the integer number of points;
    staff only, optionally for another user via userId.
    """
    source = payload.get("source") or SOURCE_PURCHASE
    if source not in EARN_SOURCES:
        raise ValidationError(f"source must be one of {sorted(EARN_SOURCES)}")

    raw_amount = payload.get("amount")
    if raw_amount is None:
        raise ValidationError("Invalid amount")

    user_id = actor.id
    reference_id = None
    if source == SOURCE_PURCHASE:
        amount = coerce_decimal(raw_amount, "amount")
        if amount <= 0:
            raise ValidationError("Invalid amount")
        points, order = _purchase_points(actor.id, payload.get("orderId"), amount)
        reference_id = str(order.id)
        description = f"Earned {points} points on order {order.order_number}"
    else:
        if not actor.is_staff:
            raise LoyaltyError("Admin access required", 403)
        points = coerce_int(raw_amount, "amount")
        if points <= 0:
            raise ValidationError("Invalid amount")
        if payload.get("userId") is not None:
            user_id = coerce_int(payload.get("userId"), "userId")
            if not db.session.get(User, user_id):
                raise LoyaltyError("User not found", 404)
        if payload.get("orderId") is not None:
            reference_id = str(payload.get("orderId"))[:64]
        description = f"Bonus points: {source}"

    if points <= 0:
        raise LoyaltyError("Amount too small to earn points")

    def _op():
        account = _locked_account(user_id)
        if reference_id and source == SOURCE_PURCHASE:
            already = (
                db.session.query(LoyaltyTransaction.id)
                .filter_by(user_id=user_id, source=SOURCE_PURCHASE, reference_id=reference_id)
                .first()
            )
            if already:
                raise LoyaltyError("Points already awarded for this order", 409)

        old_tier = tier_for_points(account.points_balance)
        new_balance = account.points_balance + points
        new_tier = tier_for_points(new_balance)

        account.points_balance = new_balance
        account.lifetime_points = account.lifetime_points + points
        account.tier = new_tier

        db.session.add(LoyaltyTransaction(
            user_id=user_id,
            account_id=account.id,
            type="earn",
            points=points,
            balance_after=new_balance,
            source=source,
            reference_id=reference_id,
            description=description,
        ))
        try:
            db.session.commit()
        except IntegrityError:
            # uq_loyalty_tx_purchase_order
            db.session.rollback()
            raise LoyaltyError("Points already awarded for this order", 409)

        upgraded = new_tier != old_tier
        return {
            "success": True,
            "pointsEarned": points,
            "newBalance": new_balance,
            "tier": new_tier,
            "tierUpgraded": upgraded,
            "message": (
                f"Congratulations! You've reached {TIER_DETAILS[new_tier]['name']} status!"
                if upgraded else f"You earned {points} points!"
            ),
        }

    return run_with_retry(_op)


def _generate_reward_code() -> str:
    return f"HYOW-{secrets.token_hex(5).upper()}"


def redeem_reward(user_id: int, reward_id) -> dict:
    """
    Spend points on a catalog reward.

    Requires the cached tier to reach the reward's minimum tier and the
    balance to cover its cost. The cached tier is not lowered.
    """
    if not isinstance(reward_id, str) or reward_id not in REWARDS_BY_ID:
        raise ValidationError("Unknown reward")
    reward = REWARDS_BY_ID[reward_id]

    def _op():
        account = _locked_account(user_id)

        if tier_rank(account.tier) < tier_rank(reward.min_tier):
            raise LoyaltyError(
                f"{reward.name} requires {TIER_DETAILS[reward.min_tier]['name']} tier",
                403,
                details={"tierLocked": True, "minTier": reward.min_tier},
            )

        if account.points_balance < reward.points_cost:
            raise LoyaltyError(
                "Insufficient points",
                400,
                details={"pointsNeeded": reward.points_cost - account.points_balance},
            )

        new_balance = account.points_balance - reward.points_cost
        account.points_balance = new_balance
        code = _generate_reward_code()

        db.session.add(LoyaltyTransaction(
            user_id=user_id,
            account_id=account.id,
            type="redeem",
            points=-reward.points_cost,
            balance_after=new_balance,
            source="redemption",
            reference_id=reward.id,
            description=f"Redeemed {reward.points_cost} points for {reward.name}",
            reward_code=code,
        ))
        db.session.commit()

        return {
            "success": True,
            "rewardId": reward.id,
            "pointsRedeemed": reward.points_cost,
            "newBalance": new_balance,
            "tier": account.tier,
            "rewardCode": code,
        }

    return run_with_retry(_op)


def list_rewards(user_id: int) -> dict:
    account = get_account(user_id)
    tier = account.tier if account else STARTER
    balance = account.points_balance if account else 0

    rewards = []
    for reward in REWARDS:
        tier_locked = tier_rank(reward.min_tier) > tier_rank(tier)
        data = reward.to_dict()
        data.update({
            "canRedeem": not tier_locked and balance >= reward.points_cost,
            "tierLocked": tier_locked,
            "pointsNeeded": max(0, reward.points_cost - balance),
        })
        rewards.append(data)

    return {"rewards": rewards, "userPoints": balance, "userTier": tier}


def history(user_id: int, *, limit: int, offset: int) -> dict:
    query = db.session.query(LoyaltyTransaction).filter(LoyaltyTransaction.user_id == user_id)
    total = query.count()
    rows = (
        query.order_by(LoyaltyTransaction.created_at.desc(), LoyaltyTransaction.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return {
        "transactions": [t.to_dict() for t in rows],
        "total": total,
        "limit": limit,
        "offset": offset,
    }
