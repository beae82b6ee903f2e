# Overview: Flask API routes for shopper accounts and NFC card links; parses input and returns JSON responses.

# backend/shoppad/routes/auth.py
"""
Shopper authentication API routes

- Phone + password registration and login (bcrypt)
- Opaque bearer tokens, stored hashed, revocable on logout
- NFC card link management for the signed-in shopper
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service
from ..services import token_service
from ..services import nfc_link_service
from ..services.errors import DomainError
from ..decorators import require_auth, bearer_token
from shoppad.time_utils import to_utc_z


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _token_response(user, record, token: str) -> dict:
    return {
        "user": user.to_dict(),
        "token": token,
        "tokenExpiresAt": to_utc_z(record.expires_at),
    }


@auth_bp.post("/register")
def register_route():
    """
    Create a shopper account and sign it in.

    Body: {name, phone, password, preferredPaymentMethodId?}
    """
    try:
        data = request.get_json(silent=True) or {}

        user = auth_service.register_user(
            name=data.get("name"),
            phone=data.get("phone"),
            password=data.get("password"),
            preferred_payment_method_id=data.get("preferredPaymentMethodId"),
        )
        record, token = token_service.mint(user.id)

        return jsonify(_token_response(user, record, token)), 201

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to register user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/login")
def login_route():
    """
    Authenticate by phone and password.

    Returns user info and a bearer token for the Authorization header.
    """
    try:
        data = request.get_json(silent=True) or {}
        phone = data.get("phone")
        password = data.get("password")

        if not all(isinstance(value, str) and value for value in (phone, password)):
            return jsonify({"error": "Phone and password are required", "code": "EMPTY_INPUT"}), 400

        user = auth_service.authenticate(phone, password)
        if not user:
            return jsonify({"error": "Invalid credentials", "code": "INVALID_CREDENTIALS"}), 401

        record, token = token_service.mint(user.id)
        return jsonify(_token_response(user, record, token)), 200

    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200


@auth_bp.put("/me/payment-method")
@require_auth
def update_payment_method_route():
    """Set the method charged on tap-to-pay. Body: {paymentMethodId} (null clears)."""
    try:
        data = request.get_json(silent=True) or {}
        user = auth_service.update_preferred_payment_method(
            g.current_user.id, data.get("paymentMethodId")
        )
        return jsonify({"user": user.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update preferred payment method")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    """
    Revoke the presented bearer token.

    WHY: Explicit logout prevents token reuse.
    """
    try:
        token_service.revoke(bearer_token())
        return jsonify({"message": "Logout successful"}), 200

    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# NFC CARD LINKS
# =============================================================================

@auth_bp.post("/nfc/link")
@require_auth
def nfc_link_route():
    """Link a card to the signed-in shopper. Body: {nfcUid}."""
    try:
        data = request.get_json(silent=True) or {}
        user = nfc_link_service.link(g.current_user.id, data.get("nfcUid"))

        return jsonify({
            "message": "NFC card linked successfully",
            "user": user.to_dict(),
        }), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to link NFC card")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.delete("/nfc/unlink")
@require_auth
def nfc_unlink_route():
    try:
        old_uid = nfc_link_service.unlink(g.current_user.id)

        return jsonify({
            "message": "NFC card unlinked successfully",
            "nfcUid": nfc_link_service.mask_uid(old_uid),
        }), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to unlink NFC card")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/nfc/status")
@require_auth
def nfc_status_route():
    return jsonify(nfc_link_service.status(g.current_user.id)), 200
