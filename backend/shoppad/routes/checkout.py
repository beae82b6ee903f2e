# Overview: Flask API routes for checkout and transaction history; parses input and returns JSON responses.

# backend/shoppad/routes/checkout.py
"""
Checkout API routes

- POST /                 pay for the signed-in shopper's cart
- GET  /payment-methods  enabled methods, in display order
- GET  /history          own transactions, paginated
- GET  /history/<id>     one own transaction with items
- GET  /stats            own totals

SECURITY: transactions are only ever read through the owner check in
checkout_service.get_for_user; another shopper's id and a nonexistent id
both answer 403.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..services import checkout_service
from ..services.errors import DomainError, DeclinedError
from ..decorators import require_auth


checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/checkout")

MAX_PAGE_SIZE = 100


@checkout_bp.post("")
@require_auth
def checkout_route():
    """
    Body (optional): {paymentMethodId}. Defaults to the preferred method.

    Returns:
    - 200: transaction completed, cart cleared
    - 402: payment declined, transaction failed, cart kept
    """
    try:
        data = request.get_json(silent=True) or {}

        outcome = checkout_service.checkout(
            g.current_user.id,
            payment_method_id=data.get("paymentMethodId"),
        )
        transaction_data = outcome.transaction.to_dict(include_items=True)

        if not outcome.approved:
            raise DeclinedError("Payment declined", payload={"transaction": transaction_data})

        return jsonify({
            "message": "Payment completed",
            "transaction": transaction_data,
        }), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to process checkout")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.get("/payment-methods")
def payment_methods_route():
    try:
        methods = checkout_service.list_payment_methods()
        return jsonify({"paymentMethods": [m.to_dict() for m in methods]}), 200

    except Exception:
        current_app.logger.exception("Failed to list payment methods")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.get("/history")
@require_auth
def history_route():
    """
    Query params:
    - limit: page size (default 50, max 100)
    - offset: rows to skip (default 0)
    - status: pending | completed | failed | cancelled
    """
    try:
        try:
            limit = int(request.args.get("limit", 50))
            offset = int(request.args.get("offset", 0))
        except ValueError:
            return jsonify({"error": "limit and offset must be integers", "code": "INVALID_PAGINATION"}), 400

        if limit < 1 or offset < 0:
            return jsonify({"error": "limit must be positive and offset non-negative", "code": "INVALID_PAGINATION"}), 400
        limit = min(limit, MAX_PAGE_SIZE)

        transactions, total = checkout_service.list_for_user(
            g.current_user.id,
            limit=limit,
            offset=offset,
            status=request.args.get("status") or None,
        )

        return jsonify({
            "transactions": [t.to_dict() for t in transactions],
            "total": total,
            "limit": limit,
            "offset": offset,
        }), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list transaction history")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.get("/history/<int:transaction_id>")
@require_auth
def transaction_detail_route(transaction_id: int):
    try:
        transaction = checkout_service.get_for_user(transaction_id, g.current_user.id)
        return jsonify({"transaction": transaction.to_dict(include_items=True)}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load transaction")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.get("/stats")
@require_auth
def stats_route():
    try:
        return jsonify(checkout_service.stats_for_user(g.current_user.id)), 200

    except Exception:
        current_app.logger.exception("Failed to compute transaction stats")
        return jsonify({"error": "Internal server error"}), 500
