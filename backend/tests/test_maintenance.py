"""
Maintenance, CLI and health check tests.
"""

import uuid
from datetime import timedelta

from storefront.extensions import db
from storefront.models import PasswordReset, RefreshToken, Role, User
from storefront.services import maintenance_service
from storefront.time_utils import utcnow

from conftest import PASSWORD


def _refresh_token(user, expires_in_days, revoked=False):
    now = utcnow()
    token = RefreshToken(
        id=str(uuid.uuid4()),
        user_id=user.id,
        token_hash=uuid.uuid4().hex,
        expires_at=now + timedelta(days=expires_in_days),
        revoked_at=now if revoked else None,
    )
    db.session.add(token)
    db.session.commit()
    return token


def _reset(user, expires_in_minutes, used=False):
    now = utcnow()
    reset = PasswordReset(
        user_id=user.id,
        token_hash=uuid.uuid4().hex,
        expires_at=now + timedelta(minutes=expires_in_minutes),
        used_at=now if used else None,
    )
    db.session.add(reset)
    db.session.commit()
    return reset


class TestTokenCleanup:

    def test_deletes_only_expired_refresh_tokens(self, customer):
        expired = _refresh_token(customer, -2)
        revoked_live = _refresh_token(customer, 5, revoked=True)
        live = _refresh_token(customer, 5)
        expired_id, kept = expired.id, {revoked_live.id, live.id}

        assert maintenance_service.cleanup_expired_tokens() == 1
        remaining = {t.id for t in db.session.query(RefreshToken).all()}
        assert remaining == kept
        assert expired_id not in remaining

    def test_grace_period(self, customer):
        _refresh_token(customer, -2)
        assert maintenance_service.cleanup_expired_tokens(grace_days=7) == 0
        assert maintenance_service.cleanup_expired_tokens(grace_days=1) == 1

    def test_password_resets(self, customer):
        _reset(customer, 30)
        _reset(customer, 30, used=True)
        _reset(customer, -5)
        assert maintenance_service.cleanup_password_resets() == 2
        assert db.session.query(PasswordReset).count() == 1


class TestCli:

    def test_create_user(self, app, db_session):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            "users", "create",
            "--email", "Ops@HYOW.test",
            "--first-name", "Ops",
            "--last-name", "Person",
            "--password", PASSWORD,
            "--role", "admin",
        ])
        assert result.exit_code == 0, result.output
        assert "PASS Created user: ops@hyow.test" in result.output

        user = db.session.query(User).filter_by(email="ops@hyow.test").one()
        assert user.role == Role.ADMIN

    def test_create_user_weak_password(self, app, db_session):
        result = app.test_cli_runner().invoke(args=[
            "users", "create",
            "--email", "weak@hyow.test",
            "--first-name", "Weak",
            "--last-name", "Password",
            "--password", "short",
        ])
        assert result.exit_code == 1
        assert "FAIL" in result.output

    def test_list_and_set_role(self, app, customer):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["users", "list"])
        assert result.exit_code == 0
        assert "casey@hyow.test" in result.output

        result = runner.invoke(args=["users", "set-role", "casey@hyow.test", "super_admin"])
        assert result.exit_code == 0, result.output
        db.session.expire_all()
        assert db.session.query(User).filter_by(email="casey@hyow.test").one().role == Role.SUPER_ADMIN

        result = runner.invoke(args=["users", "list", "--role", "customer"])
        assert "No users found." in result.output

    def test_set_role_unknown_user(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["users", "set-role", "ghost@hyow.test", "admin"])
        assert result.exit_code == 1

    def test_cleanup_tokens_command(self, app, customer):
        _refresh_token(customer, -1)
        _reset(customer, 30, used=True)
        result = app.test_cli_runner().invoke(args=["maintenance", "cleanup-tokens"])
        assert result.exit_code == 0, result.output
        assert "Deleted 1 expired refresh tokens and 1 password reset tokens." in result.output


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["status"] == "OK"
    assert body["checks"]["database"]["status"] == "healthy"
    assert body["checks"]["database"]["details"] == {"users": 0, "products": 0}


def test_health_reports_missing_stripe_keys(client, app, monkeypatch):
    monkeypatch.setitem(app.config, "STRIPE_SECRET_KEY", "")
    resp = client.get("/api/health")
    assert resp.status_code == 200
    payments = resp.get_json()["checks"]["payments"]
    assert payments == {"status": "degraded", "missing": ["STRIPE_SECRET_KEY"]}

    monkeypatch.setitem(app.config, "STRIPE_SECRET_KEY", "sk_test_123")
    assert client.get("/api/health").get_json()["checks"]["payments"] == {"status": "healthy"}
