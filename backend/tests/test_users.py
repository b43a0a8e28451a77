"""
Account tests: profile, address book and wishlist.
"""

from storefront.extensions import db
from storefront.models import WishlistItem

from conftest import auth_headers


ADDRESS = {
    "firstName": "Casey",
    "lastName": "Customer",
    "line1": "1 Canal St",
    "city": "New York",
    "postalCode": "10013",
    "country": "US",
}


class TestProfile:

    def test_get_and_update_profile(self, client, customer, customer_headers):
        resp = client.patch("/api/users/profile", json={"firstName": "Cass", "phone": "555-0100"}, headers=customer_headers)
        assert resp.status_code == 200
        user = resp.get_json()["user"]
        assert user["firstName"] == "Cass"
        assert user["phone"] == "555-0100"

        resp = client.get("/api/users/profile", headers=customer_headers)
        assert resp.get_json()["user"]["firstName"] == "Cass"

    def test_cannot_change_role_or_email(self, client, customer, customer_headers):
        for payload in ({"role": "admin"}, {"email": "x@hyow.test"}):
            resp = client.patch("/api/users/profile", json=payload, headers=customer_headers)
            assert resp.status_code == 400

    def test_blank_name_rejected(self, client, customer, customer_headers):
        resp = client.patch("/api/users/profile", json={"lastName": ""}, headers=customer_headers)
        assert resp.status_code == 400


class TestAddresses:

    def test_create_and_list(self, client, customer, customer_headers):
        resp = client.post("/api/users/addresses", json=ADDRESS, headers=customer_headers)
        assert resp.status_code == 201
        assert resp.get_json()["address"]["city"] == "New York"

        addresses = client.get("/api/users/addresses", headers=customer_headers).get_json()["addresses"]
        assert len(addresses) == 1

    def test_single_default(self, client, customer, customer_headers):
        first = client.post("/api/users/addresses", json={**ADDRESS, "isDefault": True}, headers=customer_headers)
        second = client.post("/api/users/addresses", json={**ADDRESS, "line1": "2 Canal St", "isDefault": True}, headers=customer_headers)

        addresses = client.get("/api/users/addresses", headers=customer_headers).get_json()["addresses"]
        defaults = [a["id"] for a in addresses if a["isDefault"]]
        assert defaults == [second.get_json()["address"]["id"]]
        assert first.get_json()["address"]["id"] in [a["id"] for a in addresses]

    def test_missing_fields(self, client, customer, customer_headers):
        resp = client.post("/api/users/addresses", json={"firstName": "Casey"}, headers=customer_headers)
        assert resp.status_code == 400

    def test_addresses_are_private(self, client, customer, other_customer, customer_headers):
        client.post("/api/users/addresses", json=ADDRESS, headers=customer_headers)
        resp = client.get("/api/users/addresses", headers=auth_headers(other_customer))
        assert resp.get_json()["addresses"] == []


class TestWishlist:

    def test_add_is_idempotent(self, client, catalog, customer, customer_headers):
        product_id = catalog["tee"].id
        assert client.post(f"/api/users/wishlist/{product_id}", headers=customer_headers).status_code == 201
        assert client.post(f"/api/users/wishlist/{product_id}", headers=customer_headers).status_code == 200
        assert db.session.query(WishlistItem).filter_by(user_id=customer.id).count() == 1

        products = client.get("/api/users/wishlist", headers=customer_headers).get_json()["products"]
        assert [p["slug"] for p in products] == ["box-logo-tee"]

    def test_remove(self, client, catalog, customer_headers):
        product_id = catalog["tee"].id
        client.post(f"/api/users/wishlist/{product_id}", headers=customer_headers)
        assert client.delete(f"/api/users/wishlist/{product_id}", headers=customer_headers).status_code == 200
        assert client.delete(f"/api/users/wishlist/{product_id}", headers=customer_headers).status_code == 200
        assert client.get("/api/users/wishlist", headers=customer_headers).get_json()["products"] == []

    def test_unknown_product(self, client, customer_headers):
        assert client.post("/api/users/wishlist/9999", headers=customer_headers).status_code == 404
