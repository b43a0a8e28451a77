# Overview: Service-layer operations for access/refresh tokens; signing, rotation and revocation.

"""
Token Pair Service

WHY: Access tokens are short-lived and stateless so every request can be
authenticated without a database round trip for the token itself. Refresh
tokens are long-lived and therefore tracked server-side, so they can be
rotated and revoked.

SECURITY FEATURES:
- Access and refresh tokens are signed with independent secrets
- Refresh tokens carry a unique token id (jti) that keys the server record
- Only the SHA-256 hash of a refresh token is stored
- Every refresh exchange revokes the presented token (rotation)
- Presenting an already-revoked refresh token revokes every outstanding
  refresh token of that user (theft containment)
"""

from __future__ import annotations

import hashlib
import logging
import uuid

from flask import current_app
from jose import jwt, JWTError

from ..extensions import db
from ..models import RefreshToken, User
from storefront.time_utils import expires_after, is_expired, utcnow
from .concurrency import lock_for_update, run_with_retry


logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


class TokenError(Exception):
    """Raised when a presented token cannot be honoured. Always maps to 401."""
    def __init__(self, message: str, status_code: int = 401):
        super().__init__(message)
        self.status_code = status_code


def hash_token(token: str) -> str:
    """
    Hash token for database storage using SHA-256.

    WHY SHA-256 not bcrypt: tokens are already high-entropy (unlike passwords).
    """
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def _algorithm() -> str:
    return current_app.config["JWT_ALGORITHM"]


def create_access_token(user: User) -> str:
    now = utcnow()
    payload = {
        "sub": str(user.id),
        "role": user.role.value,
        "type": ACCESS_TOKEN_TYPE,
        "iat": now,
        "exp": expires_after(minutes=current_app.config["ACCESS_TOKEN_TTL_MINUTES"], now=now),
    }
    return jwt.encode(payload, current_app.config["JWT_SECRET"], algorithm=_algorithm())


def decode_access_token(token: str) -> dict | None:
    """Return the verified access claims, or None for anything invalid or expired."""
    try:
        payload = jwt.decode(token, current_app.config["JWT_SECRET"], algorithms=[_algorithm()])
    except JWTError:
        return None
    if payload.get("type") != ACCESS_TOKEN_TYPE:
        return None
    return payload


def _decode_refresh_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, current_app.config["JWT_REFRESH_SECRET"], algorithms=[_algorithm()])
    except JWTError:
        raise TokenError("Invalid refresh token")
    if payload.get("type") != REFRESH_TOKEN_TYPE or not payload.get("jti"):
        raise TokenError("Invalid refresh token")
    return payload


def _create_refresh_token(user: User, user_agent: str | None, ip_address: str | None) -> str:
    now = utcnow()
    expires_at = expires_after(days=current_app.config["REFRESH_TOKEN_TTL_DAYS"], now=now)
    jti = str(uuid.uuid4())
    payload = {
        "sub": str(user.id),
        "jti": jti,
        "type": REFRESH_TOKEN_TYPE,
        "iat": now,
        "exp": expires_at,
    }
    token = jwt.encode(payload, current_app.config["JWT_REFRESH_SECRET"], algorithm=_algorithm())

    db.session.add(RefreshToken(
        id=jti,
        user_id=user.id,
        token_hash=hash_token(token),
        created_at=now,
        expires_at=expires_at,
        user_agent=(user_agent or "")[:512] or None,
        ip_address=ip_address,
    ))
    return token


def issue_token_pair(
    user: User,
    user_agent: str | None = None,
    ip_address: str | None = None,
    *,
    commit: bool = True,
) -> dict:
    """
    Create a new access/refresh pair for user.

    Returns {"accessToken", "refreshToken"}. The refresh record is added to
    the session; it is committed unless commit=False.
    """
    pair = {
        "accessToken": create_access_token(user),
        "refreshToken": _create_refresh_token(user, user_agent, ip_address),
    }
    if commit:
        db.session.commit()
    return pair


def revoke_all_for_user(user_id: int, reason: str) -> int:
    """
    Revoke every outstanding refresh token of a user.

    Does not commit. Returns number of tokens revoked.
    """
    now = utcnow()
    return (
        db.session.query(RefreshToken)
        .filter(RefreshToken.user_id == user_id, RefreshToken.revoked_at.is_(None))
        .update(
            {RefreshToken.revoked_at: now, RefreshToken.revoked_reason: reason},
            synchronize_session=False,
        )
    )


def rotate_refresh_token(
    token: str,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[User, dict]:
    """
    Exchange a refresh token for a new pair and revoke the presented one.

    A token that verifies by signature but is already revoked is treated as
    stolen: every refresh token of that user is revoked and the call fails.
    """
    payload = _decode_refresh_token(token)

    def _op():
        record = lock_for_update(
            db.session.query(RefreshToken).filter_by(id=payload["jti"])
        ).first()
        if not record or record.token_hash != hash_token(token):
            raise TokenError("Invalid refresh token")

        if record.is_revoked:
            revoked = revoke_all_for_user(record.user_id, "reuse_detected")
            db.session.commit()
            logger.warning(
                "Refresh token reuse detected for user %s; revoked %s outstanding tokens",
                record.user_id, revoked,
            )
            raise TokenError("Refresh token has been revoked")

        if is_expired(record.expires_at):
            raise TokenError("Refresh token expired")

        user = db.session.get(User, record.user_id)
        if not user or not user.is_active:
            raise TokenError("Invalid refresh token")

        record.revoked_at = utcnow()
        record.revoked_reason = "rotated"
        pair = issue_token_pair(user, user_agent, ip_address, commit=False)
        db.session.commit()
        return user, pair

    return run_with_retry(_op)


def revoke_refresh_token(token: str, reason: str = "logout") -> bool:
    """
    Revoke a single refresh token (logout).

    Returns True if a live token was revoked. Unknown, malformed or already
    revoked tokens return False so logout stays idempotent.
    """
    try:
        payload = _decode_refresh_token(token)
    except TokenError:
        return False

    record = db.session.query(RefreshToken).filter_by(id=payload["jti"]).first()
    if not record or record.token_hash != hash_token(token) or record.is_revoked:
        return False

    record.revoked_at = utcnow()
    record.revoked_reason = reason
    db.session.commit()
    return True

