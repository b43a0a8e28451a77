# Overview: Service-layer operations for maintenance; prunes spent refresh tokens and reset tokens.

from __future__ import annotations

from ..extensions import db
from ..models import PasswordReset, RefreshToken
from storefront.time_utils import expires_after, utcnow


def cleanup_expired_tokens(*, grace_days: int = 0) -> int:
    """
    Delete refresh tokens whose expiry passed more than grace_days ago.

    Revoked tokens that are still within their lifetime are kept: a replayed
    copy must still be recognised as reuse.
    """
    cutoff = expires_after(days=-grace_days)
    deleted = db.session.query(RefreshToken).filter(
        RefreshToken.expires_at < cutoff
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted


def cleanup_password_resets() -> int:
    """Delete reset tokens that were consumed or have expired."""
    now = utcnow()
    deleted = db.session.query(PasswordReset).filter(
        db.or_(PasswordReset.used_at.isnot(None), PasswordReset.expires_at < now)
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
