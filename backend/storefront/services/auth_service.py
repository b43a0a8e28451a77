# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Storefront Authentication Service

WHY: Every account action must be attributable to a verified identity.
Uses bcrypt for password hashing and validates password strength.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS, 12 by default)
- Minimum 8 characters with upper, lower and digit
- Login failures never reveal whether the email exists
- Token pairs managed separately (see token_service.py)
- Password reset tokens are single-use, time-boxed and stored hashed
"""

from __future__ import annotations

import logging
import re
import secrets

import bcrypt
from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import User, Role, PasswordReset
from storefront.time_utils import expires_after, is_expired, utcnow
from . import token_service
from .token_service import hash_token


logger = logging.getLogger(__name__)

GENERIC_LOGIN_ERROR = "Invalid email or password"
GENERIC_RESET_MESSAGE = "If an account exists with this email, a reset link has been sent"

_dummy_hashes: dict[int, bytes] = {}


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    status_code = 400


class AuthError(Exception):
    """Raised for registration, login and reset failures."""
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit

    Raises PasswordValidationError if requirements not met.
    """
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")


def _rounds() -> int:
    return int(current_app.config.get("BCRYPT_ROUNDS", 12))


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=_rounds())
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    WHY timing-safe: bcrypt.checkpw() compares in constant time.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed stored hash
        return False


def _burn_password_check(password: str) -> None:
    """Spend one bcrypt verification so a missing account costs the same as a wrong password."""
    rounds = _rounds()
    dummy = _dummy_hashes.get(rounds)
    if dummy is None:
        dummy = bcrypt.hashpw(b"not-a-real-password", bcrypt.gensalt(rounds=rounds))
        _dummy_hashes[rounds] = dummy
    bcrypt.checkpw(password.encode('utf-8'), dummy)


def normalize_email(email) -> str:
    if not isinstance(email, str) or "@" not in email.strip():
        raise AuthError("A valid email is required")
    return email.strip().lower()


def create_user(
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    phone: str | None = None,
    role: Role = Role.CUSTOMER,
) -> User:
    """
    Create new user with bcrypt password hashing.

    Raises:
        AuthError: invalid email, missing names, or duplicate email (409)
        PasswordValidationError: password doesn't meet requirements
    """
    email = normalize_email(email)
    first_name = (first_name or "").strip()
    last_name = (last_name or "").strip()
    if not first_name or not last_name:
        raise AuthError("First name and last name are required")

    if db.session.query(User).filter_by(email=email).first():
        raise AuthError("An account with this email already exists", 409)

    user = User(
        email=email,
        password_hash=hash_password(password),
        first_name=first_name[:50],
        last_name=last_name[:50],
        phone=(phone or "").strip() or None,
        role=role,
    )
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise AuthError("An account with this email already exists", 409)
    return user


def authenticate(email: str, password: str) -> User | None:
    """
    Authenticate user with email and password.

    Returns User if credentials are valid and the account is active, None
    otherwise. Updates last_login_at on success.
    """
    if not isinstance(email, str) or not isinstance(password, str):
        return None

    user = db.session.query(User).filter_by(email=email.strip().lower()).first()
    if not user:
        _burn_password_check(password)
        return None

    if not verify_password(password, user.password_hash):
        return None

    if not user.is_active:
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user


def register(
    payload: dict,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[User, dict]:
    user = create_user(
        email=payload.get("email"),
        password=payload.get("password"),
        first_name=payload.get("firstName"),
        last_name=payload.get("lastName"),
        phone=payload.get("phone"),
    )
    pair = token_service.issue_token_pair(user, user_agent, ip_address)
    return user, pair


def login(
    email: str,
    password: str,
    user_agent: str | None = None,
    ip_address: str | None = None,
    session_id: str | None = None,
) -> tuple[User, dict]:
    """
    Verify credentials and issue a token pair.

    When the caller was shopping as a guest (session_id), the guest cart is
    folded into the user's cart.
    """
    user = authenticate(email, password)
    if not user:
        raise AuthError(GENERIC_LOGIN_ERROR, 401)

    pair = token_service.issue_token_pair(user, user_agent, ip_address)

    if session_id:
        from .cart_service import merge_guest_cart
        merge_guest_cart(session_id, user.id)

    return user, pair


def request_password_reset(email: str) -> str | None:
    """
    Create a single-use reset token for the account, if it exists.

    Returns the plaintext token (for delivery) or None. Callers must answer
    the client identically in both cases.
    """
    if not isinstance(email, str):
        return None
    user = db.session.query(User).filter_by(email=email.strip().lower()).first()
    if not user or not user.is_active:
        return None

    token = secrets.token_urlsafe(32)
    now = utcnow()
    db.session.add(PasswordReset(
        user_id=user.id,
        token_hash=hash_token(token),
        created_at=now,
        expires_at=expires_after(minutes=current_app.config["PASSWORD_RESET_TTL_MINUTES"], now=now),
    ))
    db.session.commit()

    logger.info("Password reset requested for user %s", user.id)
    if current_app.debug:
        logger.debug("Password reset link: %s/reset-password?token=%s", current_app.config["CLIENT_URL"], token)
    return token


def reset_password(token: str, new_password: str) -> User:
    """
    Consume a reset token and set a new password.

    Every refresh token of the user is revoked so all devices must log in again.
    """
    if not isinstance(token, str) or not token:
        raise AuthError("Invalid or expired reset token")

    validate_password_strength(new_password)

    reset = db.session.query(PasswordReset).filter_by(token_hash=hash_token(token)).first()
    if not reset or reset.used_at is not None or is_expired(reset.expires_at):
        raise AuthError("Invalid or expired reset token")

    user = db.session.get(User, reset.user_id)
    if not user or not user.is_active:
        raise AuthError("Invalid or expired reset token")

    user.password_hash = hash_password(new_password)
    reset.used_at = utcnow()
    token_service.revoke_all_for_user(user.id, "password_reset")
    db.session.commit()
    return user


def set_role(user: User, role: Role) -> User:
    user.role = role
    db.session.commit()
    return user
