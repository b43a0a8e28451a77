# Overview: Flask API routes for loyalty operations; parses input and returns JSON responses.

# backend/storefront/routes/loyalty.py
"""
Loyalty program routes.

SECURITY: Everything except the tier table requires authentication.
Non-purchase earn sources are restricted to staff inside the service.
"""
from flask import Blueprint, request, jsonify, current_app, g

from ..services import loyalty_service
from ..services.loyalty_service import LoyaltyError
from ..validation import MAX_DB_INT, ValidationError
from ..decorators import require_auth

loyalty_bp = Blueprint("loyalty", __name__, url_prefix="/api/loyalty")

MAX_HISTORY_LIMIT = 100


@loyalty_bp.get("/status")
@require_auth
def loyalty_status():
    """Balance, tier, progress to the next tier and the latest transactions."""
    try:
        status = loyalty_service.get_status(g.current_user.id)
    except Exception:
        current_app.logger.exception("Failed to load loyalty status")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(status), 200


@loyalty_bp.post("/earn")
@require_auth
def earn_points():
    """
    Body: { orderId, amount, source }

    purchase (default): amount in dollars against a paid order of the caller.
    review/referral/bonus/manual: amount in points, staff only.
    """
    data = request.get_json(silent=True) or {}
    try:
        result = loyalty_service.earn_points(g.current_user, data)
    except LoyaltyError as e:
        return jsonify({"error": str(e), **e.details}), e.status_code
    except ValidationError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to earn points")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(result), 200


@loyalty_bp.post("/redeem")
@require_auth
def redeem_reward():
    data = request.get_json(silent=True) or {}
    try:
        result = loyalty_service.redeem_reward(g.current_user.id, data.get("rewardId"))
    except LoyaltyError as e:
        return jsonify({"error": str(e), **e.details}), e.status_code
    except ValidationError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to redeem reward")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(result), 200


@loyalty_bp.get("/rewards")
@require_auth
def list_rewards():
    return jsonify(loyalty_service.list_rewards(g.current_user.id)), 200


@loyalty_bp.get("/history")
@require_auth
def loyalty_history():
    limit = request.args.get("limit", type=int) or 20
    offset = request.args.get("offset", type=int) or 0
    limit = min(max(limit, 1), MAX_HISTORY_LIMIT)
    offset = min(max(offset, 0), MAX_DB_INT)
    return jsonify(loyalty_service.history(g.current_user.id, limit=limit, offset=offset)), 200


@loyalty_bp.get("/tiers")
def list_tiers():
    return jsonify(loyalty_service.tiers_info()), 200
