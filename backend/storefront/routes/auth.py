# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/storefront/routes/auth.py
"""
Authentication API routes

SECURITY FEATURES:
- Password strength validation on registration
- Short-lived access token plus rotating refresh token
- Refresh token reuse revokes every session of the user
- Generic messages for unknown accounts (login and password reset)
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service
from ..services import token_service
from ..services.auth_service import AuthError, PasswordValidationError
from ..services.cart_service import CartError
from ..services.token_service import TokenError
from ..validation import ValidationError
from ..decorators import require_auth, request_session_id


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _client_context():
    return request.headers.get("User-Agent"), request.remote_addr


@auth_bp.post("/register")
def register_route():
    """
    Create a customer account and sign it in.

    Returns user info and a token pair. 409 when the email is taken.
    """
    data = request.get_json(silent=True) or {}
    user_agent, ip_address = _client_context()

    try:
        user, pair = auth_service.register(data, user_agent, ip_address)
    except (AuthError, PasswordValidationError) as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to register user")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"user": user.to_dict(), **pair}), 201


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and issue a token pair.

    An optional sessionId merges the caller's guest cart into their account.
    """
    data = request.get_json(silent=True) or {}
    email = data.get("email")
    password = data.get("password")

    if not email or not password:
        return jsonify({"error": "email and password required"}), 400

    user_agent, ip_address = _client_context()
    try:
        session_id = request_session_id(data)
        user, pair = auth_service.login(email, password, user_agent, ip_address, session_id=session_id)
    except (AuthError, ValidationError, CartError) as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"user": user.to_dict(), **pair, "message": "Login successful"}), 200


@auth_bp.post("/refresh")
def refresh_route():
    """Exchange a refresh token for a new pair. The presented token is revoked."""
    data = request.get_json(silent=True) or {}
    token = data.get("refreshToken")
    if not isinstance(token, str) or not token:
        return jsonify({"error": "refreshToken required"}), 400

    user_agent, ip_address = _client_context()
    try:
        user, pair = token_service.rotate_refresh_token(token, user_agent, ip_address)
    except TokenError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to refresh token")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"user": user.to_dict(), **pair}), 200


@auth_bp.post("/logout")
def logout_route():
    """
    Revoke the presented refresh token.

    Always succeeds so a client can discard its state unconditionally.
    """
    data = request.get_json(silent=True) or {}
    token = data.get("refreshToken")
    if isinstance(token, str) and token:
        token_service.revoke_refresh_token(token)
    return jsonify({"message": "Logged out successfully"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200


@auth_bp.post("/forgot-password")
def forgot_password_route():
    """Answer identically whether or not the account exists."""
    data = request.get_json(silent=True) or {}
    try:
        auth_service.request_password_reset(data.get("email"))
    except Exception:
        current_app.logger.exception("Failed to create password reset")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"message": auth_service.GENERIC_RESET_MESSAGE}), 200


@auth_bp.post("/reset-password")
def reset_password_route():
    data = request.get_json(silent=True) or {}
    try:
        auth_service.reset_password(data.get("token"), data.get("password"))
    except (AuthError, PasswordValidationError) as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to reset password")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"message": "Password has been reset. Please log in again."}), 200
