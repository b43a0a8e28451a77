# Overview: Flask API routes for raffle operations; parses input and returns JSON responses.

# backend/storefront/routes/raffles.py
"""
Limited-drop raffle routes.

SECURITY:
- Listing and detail are public
- Entering and entry status require authentication
- Create, draw, cancel and complete require a staff role
"""
from flask import Blueprint, request, jsonify, current_app, g

from ..services import raffle_service
from ..services.raffle_service import RaffleError
from ..validation import ValidationError
from ..decorators import require_auth, require_staff

raffles_bp = Blueprint("raffles", __name__, url_prefix="/api/raffles")


@raffles_bp.get("")
def list_raffles():
    """Query params: status = active (default) | upcoming | ended | all"""
    try:
        raffles = raffle_service.list_raffles(request.args.get("status"))
    except ValidationError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list raffles")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"raffles": raffles}), 200


@raffles_bp.get("/user/entries")
@require_auth
def user_entries():
    return jsonify({"entries": raffle_service.user_entries(g.current_user.id)}), 200


@raffles_bp.get("/<int:raffle_id>")
def get_raffle(raffle_id: int):
    try:
        raffle = raffle_service.get_raffle_detail(raffle_id)
    except RaffleError as e:
        return jsonify({"error": str(e), **e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load raffle")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"raffle": raffle}), 200


@raffles_bp.post("/<int:raffle_id>/enter")
@require_auth
def enter_raffle(raffle_id: int):
    """
    Body: { sizePreference, shippingAddressId }

    One entry per user. The caller's loyalty tier at entry time fixes
    their draw weight.
    """
    data = request.get_json(silent=True) or {}
    try:
        entry = raffle_service.enter_raffle(raffle_id, g.current_user.id, data)
    except RaffleError as e:
        return jsonify({"error": str(e), **e.details}), e.status_code
    except ValidationError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to enter raffle")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"message": "Successfully entered raffle", "entry": entry.to_dict()}), 201


@raffles_bp.get("/<int:raffle_id>/status")
@require_auth
def entry_status(raffle_id: int):
    return jsonify(raffle_service.entry_status(raffle_id, g.current_user.id)), 200


@raffles_bp.post("")
@require_auth
@require_staff
def create_raffle():
    data = request.get_json(silent=True) or {}
    try:
        raffle = raffle_service.create_raffle(data)
    except RaffleError as e:
        return jsonify({"error": str(e), **e.details}), e.status_code
    except ValidationError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create raffle")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"raffle": raffle.to_dict()}), 201


@raffles_bp.post("/<int:raffle_id>/draw")
@require_auth
@require_staff
def draw_raffle(raffle_id: int):
    try:
        result = raffle_service.draw_raffle(raffle_id)
    except RaffleError as e:
        return jsonify({"error": str(e), **e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to draw raffle")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(result), 200


@raffles_bp.post("/<int:raffle_id>/cancel")
@require_auth
@require_staff
def cancel_raffle(raffle_id: int):
    try:
        raffle = raffle_service.cancel_raffle(raffle_id)
    except RaffleError as e:
        return jsonify({"error": str(e), **e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel raffle")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"raffle": raffle.to_dict()}), 200


@raffles_bp.post("/<int:raffle_id>/complete")
@require_auth
@require_staff
def complete_raffle(raffle_id: int):
    try:
        raffle = raffle_service.complete_raffle(raffle_id)
    except RaffleError as e:
        return jsonify({"error": str(e), **e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to complete raffle")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"raffle": raffle.to_dict()}), 200
