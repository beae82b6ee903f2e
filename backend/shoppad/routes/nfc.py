# Overview: Flask API routes for NFC reader events and tap-to-pay; parses input and returns JSON responses.

# backend/shoppad/routes/nfc.py
"""
NFC reader API routes

The reader posts taps here and asks for payment; the cart display polls the
event list and marks what it has shown. None of these routes take a bearer
token: the card UID is the credential, resolved through the link registry.
"""

from decimal import Decimal, InvalidOperation

from flask import Blueprint, request, jsonify, current_app

from ..services import nfc_service
from ..services.errors import DomainError, DeclinedError
from ..models.nfc import NFC_EVENT_DETECTED


nfc_bp = Blueprint("nfc", __name__, url_prefix="/api/nfc")

DEVICE_HEADER = "X-Device-Id"


def _uid_from(data: dict) -> str | None:
    return data.get("uid") or data.get("nfc_uid") or data.get("nfcUid")


@nfc_bp.get("")
def list_events_route():
    """
    Recent taps, newest first.

    Query params:
    - unprocessed: "true" to return only events the display has not handled
    - limit: max events (default 10, capped by NFC_EVENT_LIST_MAX)
    """
    try:
        unprocessed = request.args.get("unprocessed", "false").lower() == "true"
        try:
            limit = int(request.args.get("limit", nfc_service.DEFAULT_LIST_LIMIT))
        except ValueError:
            return jsonify({"error": "limit must be an integer", "code": "INVALID_LIMIT"}), 400

        events = nfc_service.list_events(limit=limit, unprocessed=unprocessed)

        return jsonify({
            "events": [event.to_dict() for event in events],
            "count": len(events),
        }), 200

    except Exception:
        current_app.logger.exception("Failed to list NFC events")
        return jsonify({"error": "Internal server error"}), 500


@nfc_bp.post("")
def record_tap_route():
    """
    Record a reader event. Body: {uid, event?}. Device from X-Device-Id.
    """
    try:
        data = request.get_json(silent=True) or {}

        event = nfc_service.record_tap(
            _uid_from(data),
            data.get("event") or NFC_EVENT_DETECTED,
            device_id=request.headers.get(DEVICE_HEADER),
        )

        return jsonify({"success": True, "event": event.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record NFC event")
        return jsonify({"error": "Internal server error"}), 500


@nfc_bp.post("/payment")
def trigger_payment_route():
    """
    Tap-to-pay: check out the cart of the shopper who owns the card.

    Returns:
    - 200: payment completed
    - 402: payment declined (transaction recorded as failed, cart kept)
    - 404: card not linked
    - 409: a payment for this card is already in progress
    """
    try:
        data = request.get_json(silent=True) or {}
        device_id = request.headers.get(DEVICE_HEADER) or "auto-payment"

        outcome = nfc_service.trigger_payment(_uid_from(data), device_id=device_id)
        transaction = outcome.transaction

        summary = {
            "transactionId": transaction.id,
            "total": str(transaction.total),
            "status": transaction.status,
            "userName": outcome.user.name,
            "itemCount": sum(item.quantity for item in transaction.items),
        }

        if not outcome.approved:
            raise DeclinedError("Payment declined", payload=summary)

        return jsonify(summary), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to process NFC payment")
        return jsonify({"error": "Internal server error"}), 500


@nfc_bp.post("/mark-processed")
def mark_processed_route():
    """
    Mark taps as handled by the display.

    Body, either:
    - {eventId, transactionId?, userName?, total?}
    - {uid, timestamp}: every event for the card up to that poll cursor
    """
    try:
        data = request.get_json(silent=True) or {}
        event_id = data.get("eventId")

        if event_id is not None:
            total = data.get("total")
            if total is not None:
                try:
                    total = Decimal(str(total))
                except InvalidOperation:
                    return jsonify({"error": "Invalid total", "code": "INVALID_TOTAL"}), 400

            event = nfc_service.mark_processed(
                int(event_id),
                transaction_id=data.get("transactionId"),
                user_name=data.get("userName"),
                total=total,
            )
            return jsonify({"success": True, "event": event.to_dict()}), 200

        uid = _uid_from(data)
        timestamp = data.get("timestamp")
        if not uid or not timestamp:
            return jsonify({"error": "eventId or uid and timestamp required", "code": "EVENT_REQUIRED"}), 400

        marked = nfc_service.mark_processed_by_uid(uid, timestamp)
        return jsonify({"success": True, "marked": marked}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except (TypeError, ValueError):
        return jsonify({"error": "eventId must be an integer", "code": "INVALID_EVENT_ID"}), 400
    except Exception:
        current_app.logger.exception("Failed to mark NFC event processed")
        return jsonify({"error": "Internal server error"}), 500
