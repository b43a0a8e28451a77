"""
Loyalty program tests.

Verifies:
- Tier boundaries
- Purchase points are tied to a paid order of the caller and awarded once
- Bonus sources are staff only
- Redemption checks tier and balance, never lowers the cached tier
"""

import re

import pytest
from sqlalchemy.exc import IntegrityError

from storefront.extensions import db
from storefront.models import LoyaltyAccount, LoyaltyTransaction, Order
from storefront.services import loyalty_service
from storefront.services.loyalty_service import (
    ELEVATED,
    ELITE,
    STARTER,
    tier_for_points,
)


def _paid_order(user_id, total_cents=6943, payment_status="paid"):
    order = Order(
        order_number=f"HYOW-LOY-{total_cents}",
        user_id=user_id,
        email="casey@hyow.test",
        status="paid" if payment_status == "paid" else "pending",
        payment_status=payment_status,
        subtotal_cents=total_cents,
        shipping_cents=0,
        tax_cents=0,
        total_cents=total_cents,
    )
    db.session.add(order)
    db.session.commit()
    return order


def _grant(client, admin_headers, user, points):
    return client.post("/api/loyalty/earn", json={
        "source": "bonus", "amount": points, "userId": user.id,
    }, headers=admin_headers)


@pytest.mark.parametrize("points,tier", [
    (0, STARTER),
    (999, STARTER),
    (1000, ELEVATED),
    (4999, ELEVATED),
    (5000, ELITE),
    (250000, ELITE),
])
def test_tier_boundaries(points, tier):
    assert tier_for_points(points) == tier


class TestStatus:

    def test_new_member_status(self, client, customer, customer_headers):
        resp = client.get("/api/loyalty/status", headers=customer_headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["account"]["pointsBalance"] == 0
        assert body["account"]["tier"] == STARTER
        assert body["tierInfo"]["next"]["id"] == ELEVATED
        assert body["tierInfo"]["pointsToNextTier"] == 1000
        assert body["tierInfo"]["progressPercent"] == 0
        assert body["recentTransactions"] == []

    def test_tiers_are_public(self, client, db_session):
        resp = client.get("/api/loyalty/tiers")
        assert resp.status_code == 200
        body = resp.get_json()
        assert [t["id"] for t in body["tiers"]] == [STARTER, ELEVATED, ELITE]
        assert body["tiers"][0]["maxPoints"] == 999
        assert body["tiers"][2]["maxPoints"] is None
        assert body["pointsPerDollar"] == 2

    def test_status_requires_auth(self, client):
        assert client.get("/api/loyalty/status").status_code == 401

    def test_history_offset_past_the_end(self, client, customer, customer_headers):
        resp = client.get(f"/api/loyalty/history?offset={10**20}", headers=customer_headers)
        assert resp.status_code == 200
        assert resp.get_json()["transactions"] == []


class TestEarn:

    def test_purchase_points_once_per_order(self, client, customer, customer_headers):
        order = _paid_order(customer.id)

        resp = client.post("/api/loyalty/earn", json={"orderId": order.id, "amount": 69.43}, headers=customer_headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["pointsEarned"] == 138
        assert body["newBalance"] == 138
        assert body["tierUpgraded"] is False

        resp = client.post("/api/loyalty/earn", json={"orderId": order.id, "amount": 69.43}, headers=customer_headers)
        assert resp.status_code == 409
        assert db.session.query(LoyaltyTransaction).count() == 1

    def test_amount_cannot_exceed_order_total(self, client, customer, customer_headers):
        order = _paid_order(customer.id)
        resp = client.post("/api/loyalty/earn", json={"orderId": order.id, "amount": 500}, headers=customer_headers)
        assert resp.status_code == 400
        assert resp.get_json()["orderTotal"] == 69.43

    def test_unpaid_order_rejected(self, client, customer, customer_headers):
        order = _paid_order(customer.id, payment_status="pending")
        resp = client.post("/api/loyalty/earn", json={"orderId": order.id, "amount": 10}, headers=customer_headers)
        assert resp.status_code == 400

    def test_other_users_order_not_found(self, client, customer, other_customer, customer_headers):
        order = _paid_order(other_customer.id)
        resp = client.post("/api/loyalty/earn", json={"orderId": order.id, "amount": 10}, headers=customer_headers)
        assert resp.status_code == 404

    @pytest.mark.parametrize("amount", [0, -5, "abc", None])
    def test_invalid_amount(self, client, customer, customer_headers, amount):
        order = _paid_order(customer.id)
        resp = client.post("/api/loyalty/earn", json={"orderId": order.id, "amount": amount}, headers=customer_headers)
        assert resp.status_code == 400

    def test_bonus_is_staff_only(self, client, customer, customer_headers):
        resp = client.post("/api/loyalty/earn", json={"source": "bonus", "amount": 100}, headers=customer_headers)
        assert resp.status_code == 403

    def test_staff_grant_upgrades_tier(self, client, customer, admin_headers):
        resp = _grant(client, admin_headers, customer, 1000)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["tier"] == ELEVATED
        assert body["tierUpgraded"] is True

        account = db.session.query(LoyaltyAccount).filter_by(user_id=customer.id).one()
        assert account.points_balance == 1000
        assert account.lifetime_points == 1000

    def test_award_committed_while_waiting_for_lock_is_seen(self, client, customer, customer_headers, monkeypatch):
        order = _paid_order(customer.id)
        locked_account = loyalty_service._locked_account

        def award_first_then_lock(user_id):
            account = loyalty_service.get_or_create_account(user_id)
            db.session.add(LoyaltyTransaction(
                user_id=user_id, account_id=account.id, type="earn", points=138,
                balance_after=138, source="purchase", reference_id=str(order.id),
            ))
            db.session.commit()
            return locked_account(user_id)

        monkeypatch.setattr(loyalty_service, "_locked_account", award_first_then_lock)

        resp = client.post("/api/loyalty/earn", json={"orderId": order.id, "amount": 69.43}, headers=customer_headers)
        assert resp.status_code == 409
        rows = db.session.query(LoyaltyTransaction).filter_by(source="purchase", reference_id=str(order.id)).count()
        assert rows == 1

    def test_purchase_award_unique_per_order_in_schema(self, customer):
        account = loyalty_service.get_or_create_account(customer.id)

        def row(source):
            return LoyaltyTransaction(
                user_id=customer.id, account_id=account.id, type="earn", points=10,
                balance_after=10, source=source, reference_id="42",
            )

        db.session.add_all([row("bonus"), row("bonus"), row("purchase")])
        db.session.commit()

        db.session.add(row("purchase"))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()


class TestRedeem:

    def test_insufficient_points(self, client, customer, customer_headers):
        resp = client.post("/api/loyalty/redeem", json={"rewardId": "discount-10"}, headers=customer_headers)
        assert resp.status_code == 400
        assert resp.get_json()["pointsNeeded"] == 500

    def test_tier_locked_reward(self, client, customer, customer_headers, admin_headers):
        _grant(client, admin_headers, customer, 900)
        resp = client.post("/api/loyalty/redeem", json={"rewardId": "exclusive-tee"}, headers=customer_headers)
        assert resp.status_code == 403
        assert resp.get_json()["tierLocked"] is True

    def test_unknown_reward(self, client, customer, customer_headers):
        resp = client.post("/api/loyalty/redeem", json={"rewardId": "yacht"}, headers=customer_headers)
        assert resp.status_code == 400

    def test_redeem_issues_code_and_keeps_tier(self, client, customer, customer_headers, admin_headers):
        _grant(client, admin_headers, customer, 1200)

        resp = client.post("/api/loyalty/redeem", json={"rewardId": "discount-25"}, headers=customer_headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["newBalance"] == 200
        assert body["tier"] == ELEVATED
        assert re.fullmatch(r"HYOW-[0-9A-F]{10}", body["rewardCode"])

        account = db.session.query(LoyaltyAccount).filter_by(user_id=customer.id).one()
        assert account.lifetime_points == 1200
        assert account.tier == ELEVATED

    def test_rewards_and_history(self, client, customer, customer_headers, admin_headers):
        _grant(client, admin_headers, customer, 600)
        client.post("/api/loyalty/redeem", json={"rewardId": "discount-10"}, headers=customer_headers)

        rewards = client.get("/api/loyalty/rewards", headers=customer_headers).get_json()
        assert rewards["userPoints"] == 100
        by_id = {r["id"]: r for r in rewards["rewards"]}
        assert by_id["discount-10"]["canRedeem"] is False
        assert by_id["discount-10"]["pointsNeeded"] == 400
        assert by_id["styling-session"]["tierLocked"] is True

        history = client.get("/api/loyalty/history?limit=1", headers=customer_headers).get_json()
        assert history["total"] == 2
        assert history["limit"] == 1
        assert history["transactions"][0]["type"] == "redeem"
        assert history["transactions"][0]["points"] == -500
