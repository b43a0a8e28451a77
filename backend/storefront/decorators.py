# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .extensions import db
from .models import STAFF_ROLES, Role, User
from .services import token_service
from .services.cart_service import normalize_session_id


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def _load_user(token: str) -> User | None:
    """Resolve an access token to an active user, or None."""
    claims = token_service.decode_access_token(token)
    if not claims:
        return None
    try:
        user_id = int(claims.get("sub"))
    except (TypeError, ValueError):
        return None
    user = db.session.get(User, user_id)
    if not user or not user.is_active:
        return None
    return user


def current_user_id() -> int | None:
    user = getattr(g, "current_user", None)
    return user.id if user else None


def request_session_id(payload: dict | None = None) -> str | None:
    """
    Guest cart session id for this request.

    Read from the JSON body first, then the query string, then the cart cookie.
    """
    candidates = []
    if isinstance(payload, dict):
        candidates.append(payload.get("sessionId"))
    candidates.append(request.args.get("sessionId"))
    candidates.append(request.cookies.get(current_app.config["CART_SESSION_COOKIE"]))
    for value in candidates:
        session_id = normalize_session_id(value)
        if session_id:
            return session_id
    return None


def require_auth(f):
    """
    Require a valid access token.

    Sets g.current_user to the authenticated User.

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid or expired token
    - User account missing or deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        user = _load_user(token)
        if not user:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def optional_auth(f):
    """
    Attach g.current_user when a valid token is presented; never rejects.

    Used by storefront reads and the guest-capable cart and checkout.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        g.current_user = _load_user(token) if token else None
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: Role):
    """Require the authenticated user to hold one of roles. Use after @require_auth."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if not user:
                return jsonify({"error": "Authentication required"}), 401
            if user.role not in roles:
                return jsonify({"error": "Admin access required"}), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator


require_staff = require_role(*STAFF_ROLES)
