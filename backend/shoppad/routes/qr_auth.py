# Overview: Flask API routes for the QR login handshake; parses input and returns JSON responses.

# backend/shoppad/routes/qr_auth.py
"""
QR login API routes

Tablet side (no bearer token):
- POST /session              create a session, receive its secret
- GET  /status/<session_id>  poll with the X-QR-Secret header

Phone side (bearer token):
- GET  /info/<session_id>    what is about to be approved
- POST /authorize            approve it
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..services import qr_auth_service
from ..services.errors import DomainError
from ..decorators import require_auth


qr_auth_bp = Blueprint("qr_auth", __name__, url_prefix="/api/auth/qr")

SECRET_HEADER = "X-QR-Secret"


@qr_auth_bp.post("/session")
def create_session_route():
    """
    Create a login session for a tablet.

    Body (optional): {deviceInfo}. Falls back to the User-Agent header.
    """
    try:
        data = request.get_json(silent=True) or {}
        device_info = data.get("deviceInfo") or request.headers.get("User-Agent")

        return jsonify(qr_auth_service.start(device_info)), 201

    except Exception:
        current_app.logger.exception("Failed to create QR session")
        return jsonify({"error": "Internal server error"}), 500


@qr_auth_bp.get("/status/<session_id>")
def session_status_route(session_id: str):
    """
    Tablet poll. Delivers the bearer token exactly once, on the first poll
    after the phone has approved.
    """
    try:
        result = qr_auth_service.poll(session_id, request.headers.get(SECRET_HEADER))
        return jsonify(result), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to poll QR session")
        return jsonify({"error": "Internal server error"}), 500


@qr_auth_bp.get("/info/<session_id>")
@require_auth
def session_info_route(session_id: str):
    try:
        return jsonify(qr_auth_service.describe(session_id)), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load QR session info")
        return jsonify({"error": "Internal server error"}), 500


@qr_auth_bp.post("/authorize")
@require_auth
def authorize_route():
    """Approve a pending tablet session for the signed-in shopper. Body: {sessionId}."""
    try:
        data = request.get_json(silent=True) or {}
        session_id = data.get("sessionId")

        if not session_id:
            return jsonify({"error": "sessionId is required", "code": "EMPTY_INPUT"}), 400

        result = qr_auth_service.approve(session_id, g.current_user.id)
        result["message"] = "Session authorized"
        return jsonify(result), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to authorize QR session")
        return jsonify({"error": "Internal server error"}), 500
