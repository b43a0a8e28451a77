"""
Authentication tests.

Verifies:
- Registration and login issue an access/refresh pair
- Refresh rotation revokes the presented token
- Replaying a rotated refresh token revokes every session of the user
- Password reset answers identically for unknown accounts
"""

import pytest

from storefront.extensions import db
from storefront.models import RefreshToken
from storefront.services import auth_service
from storefront.services.token_service import decode_access_token

from conftest import PASSWORD, auth_headers


def _login(client, email="casey@hyow.test", password=PASSWORD, **extra):
    return client.post("/api/auth/login", json={"email": email, "password": password, **extra})


class TestRegistration:

    def test_register_returns_user_and_tokens(self, client):
        resp = client.post("/api/auth/register", json={
            "email": "New.Person@HYOW.test",
            "password": PASSWORD,
            "firstName": "New",
            "lastName": "Person",
        })
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["user"]["email"] == "new.person@hyow.test"
        assert body["user"]["role"] == "customer"
        assert body["accessToken"] and body["refreshToken"]

        claims = decode_access_token(body["accessToken"])
        assert claims["sub"] == str(body["user"]["id"])

    def test_duplicate_email_is_conflict(self, client, customer):
        resp = client.post("/api/auth/register", json={
            "email": "casey@hyow.test",
            "password": PASSWORD,
            "firstName": "Casey",
            "lastName": "Again",
        })
        assert resp.status_code == 409

    @pytest.mark.parametrize("password", ["short1A", "alllowercase1", "ALLUPPERCASE1", "NoDigitsHere"])
    def test_weak_password_rejected(self, client, password):
        resp = client.post("/api/auth/register", json={
            "email": "weak@hyow.test",
            "password": password,
            "firstName": "Weak",
            "lastName": "Password",
        })
        assert resp.status_code == 400


class TestLogin:

    def test_login_success(self, client, customer):
        resp = _login(client)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["user"]["id"] == customer.id
        assert body["accessToken"] and body["refreshToken"]

    def test_wrong_password_is_generic(self, client, customer):
        resp = _login(client, password="WrongPass999")
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Invalid email or password"

    def test_unknown_email_is_generic(self, client):
        resp = _login(client, email="nobody@hyow.test")
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Invalid email or password"

    def test_deactivated_account_rejected(self, client, customer):
        headers = auth_headers(customer)
        customer.is_active = False
        db.session.commit()

        assert _login(client).status_code == 401
        assert client.get("/api/auth/me", headers=headers).status_code == 401

    def test_me_requires_token(self, client, customer):
        assert client.get("/api/auth/me").status_code == 401
        resp = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-token"})
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Invalid or expired token"

    def test_me_returns_current_user(self, client, customer, customer_headers):
        resp = client.get("/api/auth/me", headers=customer_headers)
        assert resp.status_code == 200
        assert resp.get_json()["user"]["email"] == "casey@hyow.test"


class TestRefreshRotation:

    def test_refresh_issues_new_pair_and_revokes_old(self, client, customer):
        first = _login(client).get_json()

        resp = client.post("/api/auth/refresh", json={"refreshToken": first["refreshToken"]})
        assert resp.status_code == 200
        second = resp.get_json()
        assert second["refreshToken"] != first["refreshToken"]

        resp = client.post("/api/auth/refresh", json={"refreshToken": second["refreshToken"]})
        assert resp.status_code == 200

    def test_reuse_revokes_all_sessions(self, client, customer):
        first = _login(client).get_json()
        second = client.post("/api/auth/refresh", json={"refreshToken": first["refreshToken"]}).get_json()

        # Replay the already rotated token
        resp = client.post("/api/auth/refresh", json={"refreshToken": first["refreshToken"]})
        assert resp.status_code == 401

        # The legitimately rotated token is now dead too
        resp = client.post("/api/auth/refresh", json={"refreshToken": second["refreshToken"]})
        assert resp.status_code == 401

        live = db.session.query(RefreshToken).filter(
            RefreshToken.user_id == customer.id,
            RefreshToken.revoked_at.is_(None),
        ).count()
        assert live == 0

    def test_access_token_is_not_a_refresh_token(self, client, customer):
        tokens = _login(client).get_json()
        resp = client.post("/api/auth/refresh", json={"refreshToken": tokens["accessToken"]})
        assert resp.status_code == 401

    def test_logout_revokes_refresh_token(self, client, customer):
        tokens = _login(client).get_json()
        resp = client.post("/api/auth/logout", json={"refreshToken": tokens["refreshToken"]})
        assert resp.status_code == 200

        resp = client.post("/api/auth/refresh", json={"refreshToken": tokens["refreshToken"]})
        assert resp.status_code == 401

    def test_logout_is_idempotent(self, client):
        resp = client.post("/api/auth/logout", json={"refreshToken": "garbage"})
        assert resp.status_code == 200


class TestPasswordReset:

    def test_forgot_password_same_answer_for_unknown(self, client, customer):
        known = client.post("/api/auth/forgot-password", json={"email": "casey@hyow.test"})
        unknown = client.post("/api/auth/forgot-password", json={"email": "ghost@hyow.test"})
        assert known.status_code == unknown.status_code == 200
        assert known.get_json() == unknown.get_json()

    def test_reset_password_flow(self, client, customer):
        refresh = _login(client).get_json()["refreshToken"]
        token = auth_service.request_password_reset("casey@hyow.test")
        assert token

        resp = client.post("/api/auth/reset-password", json={"token": token, "password": "NewPassword456"})
        assert resp.status_code == 200

        # Old sessions are gone, new password works, token is single use
        assert client.post("/api/auth/refresh", json={"refreshToken": refresh}).status_code == 401
        assert _login(client, password="NewPassword456").status_code == 200
        resp = client.post("/api/auth/reset-password", json={"token": token, "password": "Another789X"})
        assert resp.status_code == 400

    def test_reset_with_bad_token(self, client):
        resp = client.post("/api/auth/reset-password", json={"token": "nope", "password": "NewPassword456"})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Invalid or expired reset token"
