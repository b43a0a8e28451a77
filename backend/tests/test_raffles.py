"""
Raffle tests.

Verifies:
- Entry window, one entry per user and max entries
- Tier snapshot and draw weights
- Draw is one-shot and staff only
"""

import random
from datetime import timedelta
from types import SimpleNamespace

from storefront.extensions import db
from storefront.models import Address, LoyaltyAccount, Raffle, RaffleEntry
from storefront.services.raffle_service import select_winners
from storefront.time_utils import utcnow

from conftest import auth_headers


def _raffle(product=None, start_offset=-1, end_offset=1, **fields):
    now = utcnow()
    raffle = Raffle(
        title=fields.pop("title", "Box Logo Drop"),
        product_id=product.id if product else None,
        entry_start=now + timedelta(days=start_offset),
        entry_end=now + timedelta(days=end_offset),
        winners_count=fields.pop("winners_count", 1),
        **fields,
    )
    db.session.add(raffle)
    db.session.commit()
    return raffle


def _enter(client, raffle, headers, **payload):
    return client.post(f"/api/raffles/{raffle.id}/enter", json=payload, headers=headers)


class TestEntry:

    def test_entry_requires_auth(self, client, db_session):
        raffle = _raffle()
        assert client.post(f"/api/raffles/{raffle.id}/enter", json={}).status_code == 401

    def test_enter_snapshots_tier(self, client, customer, customer_headers, catalog):
        db.session.add(LoyaltyAccount(user_id=customer.id, points_balance=6000, lifetime_points=6000, tier="ELITE"))
        db.session.commit()
        raffle = _raffle(product=catalog["tee"])

        resp = _enter(client, raffle, customer_headers, sizePreference="M")
        assert resp.status_code == 201
        entry = resp.get_json()["entry"]
        assert entry["tier"] == "ELITE"
        assert entry["priorityMultiplier"] == 5
        assert entry["status"] == "pending"

        status = client.get(f"/api/raffles/{raffle.id}/status", headers=customer_headers).get_json()
        assert status["entered"] is True
        assert status["sizePreference"] == "M"

    def test_member_without_account_is_starter(self, client, customer, customer_headers):
        raffle = _raffle()
        entry = _enter(client, raffle, customer_headers).get_json()["entry"]
        assert entry["tier"] == "STARTER"
        assert entry["priorityMultiplier"] == 1

    def test_duplicate_entry_conflict(self, client, customer, customer_headers):
        raffle = _raffle()
        assert _enter(client, raffle, customer_headers).status_code == 201
        assert _enter(client, raffle, customer_headers).status_code == 409
        assert db.session.query(RaffleEntry).count() == 1

    def test_closed_windows_rejected(self, client, customer, customer_headers):
        upcoming = _raffle(start_offset=1, end_offset=2)
        ended = _raffle(start_offset=-2, end_offset=-1)
        assert _enter(client, upcoming, customer_headers).status_code == 400
        assert _enter(client, ended, customer_headers).status_code == 400

    def test_max_entries(self, client, customer, other_customer, customer_headers):
        raffle = _raffle(max_entries=1)
        assert _enter(client, raffle, auth_headers(other_customer)).status_code == 201
        resp = _enter(client, raffle, customer_headers)
        assert resp.status_code == 409
        assert resp.get_json()["error"] == "Raffle has reached maximum entries"

    def test_foreign_address_rejected(self, client, customer, other_customer, customer_headers):
        address = Address(
            user_id=other_customer.id, first_name="Robin", last_name="Other",
            line1="2 Elm St", city="Boston", postal_code="02108",
        )
        db.session.add(address)
        db.session.commit()
        raffle = _raffle()

        resp = _enter(client, raffle, customer_headers, shippingAddressId=address.id)
        assert resp.status_code == 404

    def test_user_entries(self, client, customer, customer_headers, catalog):
        raffle = _raffle(product=catalog["tee"])
        _enter(client, raffle, customer_headers)
        entries = client.get("/api/raffles/user/entries", headers=customer_headers).get_json()["entries"]
        assert len(entries) == 1
        assert entries[0]["raffleTitle"] == "Box Logo Drop"
        assert entries[0]["productSlug"] == "box-logo-tee"


class TestListing:

    def test_status_filters(self, client, db_session):
        _raffle(title="Live")
        _raffle(title="Soon", start_offset=1, end_offset=2)
        _raffle(title="Over", start_offset=-3, end_offset=-1)

        def titles(status):
            resp = client.get(f"/api/raffles?status={status}")
            assert resp.status_code == 200
            return {r["title"] for r in resp.get_json()["raffles"]}

        assert titles("active") == {"Live"}
        assert titles("upcoming") == {"Soon"}
        assert titles("ended") == {"Over"}
        assert titles("all") == {"Live", "Soon", "Over"}
        assert client.get("/api/raffles?status=bogus").status_code == 400

    def test_detail_lists_sizes_in_order(self, client, catalog):
        raffle = _raffle(product=catalog["tee"])
        resp = client.get(f"/api/raffles/{raffle.id}")
        assert resp.status_code == 200
        body = resp.get_json()["raffle"]
        assert [s["size"] for s in body["availableSizes"]] == ["M", "L"]
        assert body["productPrice"] == 49.99
        assert body["isActive"] is True

    def test_missing_raffle(self, client, db_session):
        assert client.get("/api/raffles/999").status_code == 404


class TestDraw:

    def test_draw_marks_winners_and_losers(self, client, customer, other_customer, admin_headers):
        raffle = _raffle()
        _enter(client, raffle, auth_headers(customer))
        _enter(client, raffle, auth_headers(other_customer))

        resp = client.post(f"/api/raffles/{raffle.id}/draw", headers=admin_headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["winnersCount"] == 1
        assert body["totalEntries"] == 2

        statuses = sorted(e.status for e in db.session.query(RaffleEntry).all())
        assert statuses == ["lost", "won"]
        assert db.session.get(Raffle, raffle.id).status == "drawn"

        assert client.post(f"/api/raffles/{raffle.id}/draw", headers=admin_headers).status_code == 400

    def test_draw_without_entries(self, client, admin_headers):
        raffle = _raffle()
        assert client.post(f"/api/raffles/{raffle.id}/draw", headers=admin_headers).status_code == 400

    def test_draw_is_staff_only(self, client, customer_headers):
        raffle = _raffle()
        assert client.post(f"/api/raffles/{raffle.id}/draw", headers=customer_headers).status_code == 403

    def test_lifecycle(self, client, customer, admin_headers):
        drawn = _raffle()
        _enter(client, drawn, auth_headers(customer))

        assert client.post(f"/api/raffles/{drawn.id}/complete", headers=admin_headers).status_code == 400
        client.post(f"/api/raffles/{drawn.id}/draw", headers=admin_headers)
        resp = client.post(f"/api/raffles/{drawn.id}/complete", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["raffle"]["status"] == "completed"
        assert client.post(f"/api/raffles/{drawn.id}/cancel", headers=admin_headers).status_code == 400

        cancelled = _raffle()
        resp = client.post(f"/api/raffles/{cancelled.id}/cancel", headers=admin_headers)
        assert resp.get_json()["raffle"]["status"] == "cancelled"
        assert client.post(f"/api/raffles/{cancelled.id}/draw", headers=admin_headers).status_code == 400

    def test_create_raffle(self, client, catalog, admin_headers):
        resp = client.post("/api/raffles", json={
            "title": "Hoodie Drop",
            "productId": catalog["hoodie"].id,
            "entryStart": "2030-01-01T00:00:00Z",
            "entryEnd": "2030-01-02T00:00:00Z",
            "winnersCount": 3,
            "retailPrice": 120,
        }, headers=admin_headers)
        assert resp.status_code == 201
        body = resp.get_json()["raffle"]
        assert body["winnersCount"] == 3
        assert body["retailPrice"] == 120.0
        assert body["status"] == "active"

    def test_create_rejects_inverted_window(self, client, admin_headers):
        resp = client.post("/api/raffles", json={
            "title": "Backwards",
            "entryStart": "2030-01-02T00:00:00Z",
            "entryEnd": "2030-01-01T00:00:00Z",
        }, headers=admin_headers)
        assert resp.status_code == 400


class TestSelectWinners:

    def _entries(self):
        starters = [SimpleNamespace(user_id=i, priority_multiplier=1) for i in range(8)]
        elites = [SimpleNamespace(user_id=100 + i, priority_multiplier=5) for i in range(2)]
        return starters, elites

    def test_each_user_wins_at_most_once(self):
        starters, elites = self._entries()
        winners = select_winners(starters + elites, 5, random.Random(7))
        assert len(winners) == 5
        assert len({w.user_id for w in winners}) == 5

    def test_winner_count_capped_by_entrants(self):
        starters, _ = self._entries()
        assert len(select_winners(starters[:3], 10, random.Random(1))) == 3

    def test_higher_tiers_win_more_often(self):
        starters, elites = self._entries()
        rng = random.Random(42)
        elite_wins = 0
        draws = 2000
        for _ in range(draws):
            winner = select_winners(starters + elites, 1, rng)[0]
            if winner.priority_multiplier == 5:
                elite_wins += 1

        # Elite share of the pool is 10/18; two users out of ten without weights
        assert elite_wins / draws > 0.45
        assert elite_wins < draws
