"""
Pytest fixtures for storefront backend tests.

Provides the app on in-memory SQLite, a per-test table wipe, seeded users
and catalog, a fake payment processor and Authorization header helpers.
"""

import hashlib
import hmac
import itertools
import json
import time

import pytest

from storefront import create_app
from storefront.extensions import db
from storefront.models import Category, Product, ProductImage, ProductVariant, Role
from storefront.services.auth_service import create_user
from storefront.services.payment_gateway import (
    PaymentGatewayError,
    PaymentIntent,
    verify_webhook_signature,
)
from storefront.services.token_service import create_access_token


WEBHOOK_SECRET = "whsec_test_secret"
PASSWORD = "Password123"


class FakeGateway:
    """In-memory stand-in for the hosted processor."""

    def __init__(self):
        self.intents: dict[str, PaymentIntent] = {}
        self.created: list[dict] = []
        self.fail_create = False
        self.fail_retrieve = False
        self._ids = itertools.count(1)

    def create_payment_intent(self, amount_cents, currency, metadata=None):
        if self.fail_create:
            raise PaymentGatewayError("Payment processor unavailable")
        intent_id = f"pi_test_{next(self._ids)}"
        intent = PaymentIntent(
            id=intent_id,
            status="requires_payment_method",
            amount=amount_cents,
            currency=currency,
            client_secret=f"{intent_id}_secret",
            metadata=dict(metadata or {}),
        )
        self.intents[intent_id] = intent
        self.created.append({"amount": amount_cents, "currency": currency, "metadata": intent.metadata})
        return intent

    def retrieve_payment_intent(self, intent_id):
        if self.fail_retrieve:
            raise PaymentGatewayError("Payment processor unavailable")
        intent = self.intents.get(intent_id)
        if not intent:
            raise PaymentGatewayError("Payment processor rejected the request")
        return intent

    def construct_event(self, payload, signature_header):
        return verify_webhook_signature(payload, signature_header, WEBHOOK_SECRET)

    def succeed(self, intent_id, amount=None):
        intent = self.intents[intent_id]
        intent.status = "succeeded"
        if amount is not None:
            intent.amount = amount


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(
        config_overrides={
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
            'SQLALCHEMY_TRACK_MODIFICATIONS': False,
            'BCRYPT_ROUNDS': 4,
            'STRIPE_PUBLISHABLE_KEY': 'pk_test_123',
            'STRIPE_WEBHOOK_SECRET': WEBHOOK_SECRET,
        },
        payment_gateway=FakeGateway(),
    )

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def client(app, db_session):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def gateway(app):
    """Fresh fake processor for each test."""
    fake = FakeGateway()
    app.extensions["payment_gateway"] = fake
    return fake


@pytest.fixture(scope='function')
def pricing(app):
    """Restore pricing config after tests that tweak it."""
    saved = {k: app.config[k] for k in ("FREE_SHIPPING_THRESHOLD_CENTS", "FLAT_SHIPPING_CENTS", "TAX_RATE")}
    yield app.config
    app.config.update(saved)


@pytest.fixture(scope='function')
def customer(db_session):
    return create_user(
        email="casey@hyow.test",
        password=PASSWORD,
        first_name="Casey",
        last_name="Customer",
    )


@pytest.fixture(scope='function')
def other_customer(db_session):
    return create_user(
        email="robin@hyow.test",
        password=PASSWORD,
        first_name="Robin",
        last_name="Other",
    )


@pytest.fixture(scope='function')
def admin(db_session):
    return create_user(
        email="admin@hyow.test",
        password=PASSWORD,
        first_name="Ada",
        last_name="Admin",
        role=Role.ADMIN,
    )


@pytest.fixture(scope='function')
def catalog(db_session):
    """
    One category with two active products and one draft.

    Box Logo Tee: $49.99, sizes M (stock 100), L (stock 2), XL (inactive)
    Heavyweight Hoodie: $120.00, size L (stock 5)
    """
    tees = Category(name="Tees", slug="tees", sort_order=1)
    db_session.add(tees)
    db_session.flush()

    tee = Product(
        category_id=tees.id, name="Box Logo Tee", slug="box-logo-tee",
        description="Heavy cotton tee", price_cents=4999, status="active",
        is_featured=True, is_new=True,
    )
    hoodie = Product(
        category_id=tees.id, name="Heavyweight Hoodie", slug="heavyweight-hoodie",
        description="Fleece hoodie", price_cents=12000, status="active",
    )
    draft = Product(name="Unreleased Jacket", slug="unreleased-jacket", price_cents=30000, status="draft")
    db_session.add_all([tee, hoodie, draft])
    db_session.flush()

    db_session.add(ProductImage(product_id=tee.id, url="https://cdn.hyow.test/tee.jpg", sort_order=0))
    variants = {
        "tee_m": ProductVariant(product_id=tee.id, sku="TEE-M", size="M", color="Black", stock_quantity=100),
        "tee_l": ProductVariant(product_id=tee.id, sku="TEE-L", size="L", color="Black", stock_quantity=2),
        "tee_xl": ProductVariant(product_id=tee.id, sku="TEE-XL", size="XL", color="Black", stock_quantity=10, is_active=False),
        "hoodie_l": ProductVariant(product_id=hoodie.id, sku="HOOD-L", size="L", color="Grey", stock_quantity=5),
        "draft_m": ProductVariant(product_id=draft.id, sku="JKT-M", size="M", stock_quantity=5),
    }
    db_session.add_all(variants.values())
    db_session.commit()

    return {"category": tees, "tee": tee, "hoodie": hoodie, "draft": draft, **variants}


def auth_headers(user) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {create_access_token(user)}'}


@pytest.fixture(scope='function')
def customer_headers(customer):
    return auth_headers(customer)


@pytest.fixture(scope='function')
def admin_headers(admin):
    return auth_headers(admin)


def sign_webhook(payload: dict, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> tuple[bytes, str]:
    """Serialize an event and build a matching Stripe-Signature header."""
    body = json.dumps(payload).encode("utf-8")
    ts = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(secret.encode("utf-8"), f"{ts}.".encode("utf-8") + body, hashlib.sha256).hexdigest()
    return body, f"t={ts},v1={digest}"
