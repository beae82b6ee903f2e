# Overview: Orchestrates the phone-authorizes-tablet QR login handshake.

"""
QR Handshake Service

Composition of the session store and the token issuer:

1. Tablet: start() -> sessionId + secret, shows sessionId as a QR code.
2. Phone (logged in): describe() to show what is being approved, then
   approve().
3. Tablet: poll() with its secret until it receives a token. The token is
   minted at most once per session, at the moment the session is consumed.
   If minting fails the session goes back to authorized for the next poll.
"""

import json

from ..extensions import db
from . import qr_session_service, token_service
from .errors import NotFoundError, ExpiredError, InvalidStateError, UnauthenticatedError
from ..models.qr import (
    QR_STATUS_PENDING,
    QR_STATUS_AUTHORIZED,
    QR_STATUS_USED,
    QR_STATUS_EXPIRED,
)
from shoppad.time_utils import to_utc_z


QR_PAYLOAD_TYPE = "shoppad-login"


def _get_or_404(session_id: str):
    session = qr_session_service.find_by_id(session_id) if session_id else None
    if not session:
        raise NotFoundError("Session not found", code="SESSION_NOT_FOUND")
    return session


def start(device_info: str | None = None) -> dict:
    """Create a session for a tablet. The only response that carries the secret."""
    session = qr_session_service.create(device_info=device_info)
    return {
        "sessionId": session.id,
        "secret": session.secret,
        "expiresAt": to_utc_z(session.expires_at),
        "qrData": json.dumps({"sessionId": session.id, "type": QR_PAYLOAD_TYPE}),
    }


def poll(session_id: str, secret: str | None) -> dict:
    """
    Tablet status poll.

    Raises UnauthenticatedError for a missing or wrong secret before anything
    about the session is revealed, NotFoundError for an unknown id.
    """
    if not secret:
        raise UnauthenticatedError("Secret required", code="SECRET_REQUIRED")

    session = _get_or_404(session_id)

    if not qr_session_service.validate_secret(session.id, secret):
        raise UnauthenticatedError("Invalid secret", code="INVALID_SECRET")

    if session.status == QR_STATUS_USED:
        return {"status": QR_STATUS_USED, "sessionId": session.id, "message": "Token already retrieved"}

    if session.status == QR_STATUS_EXPIRED or qr_session_service.is_expired(session):
        qr_session_service.mark_expired(session.id)
        return {"status": QR_STATUS_EXPIRED, "sessionId": session.id, "expiresAt": to_utc_z(session.expires_at)}

    if session.status == QR_STATUS_AUTHORIZED:
        user_id = qr_session_service.consume_if_authorized(session.id)
        if user_id is None:
            # Lost the redemption race or the deadline passed in between
            session = _get_or_404(session_id)
            return {"status": session.status, "sessionId": session.id}

        try:
            record, token = token_service.mint(user_id)
        except Exception:
            db.session.rollback()
            qr_session_service.unconsume(session.id)
            raise
        return {
            "status": QR_STATUS_AUTHORIZED,
            "sessionId": session.id,
            "token": token,
            "tokenExpiresAt": to_utc_z(record.expires_at),
            "user": record.user.to_dict(),
        }

    return {"status": QR_STATUS_PENDING, "sessionId": session.id, "expiresAt": to_utc_z(session.expires_at)}


def describe(session_id: str) -> dict:
    """Phone-side view before approving. Never includes the secret."""
    session = _get_or_404(session_id)

    if session.status == QR_STATUS_EXPIRED or qr_session_service.is_expired(session):
        return {"sessionId": session.id, "status": QR_STATUS_EXPIRED, "canAuthorize": False}

    if session.status != QR_STATUS_PENDING:
        return {"sessionId": session.id, "status": session.status, "canAuthorize": False}

    data = session.to_dict()
    data["canAuthorize"] = True
    return data


def approve(session_id: str, user_id: int) -> dict:
    """
    Phone approves the tablet session for its own user.

    Raises NotFoundError, ExpiredError or InvalidStateError; the conditional
    update in the store is what actually decides.
    """
    session = _get_or_404(session_id)

    if qr_session_service.is_expired(session):
        raise ExpiredError("Session has expired", code="SESSION_EXPIRED")

    if not qr_session_service.authorize(session.id, user_id):
        # Re-read to explain why the precondition failed
        session = _get_or_404(session_id)
        if session.status == QR_STATUS_EXPIRED or qr_session_service.is_expired(session):
            raise ExpiredError("Session has expired", code="SESSION_EXPIRED")
        raise InvalidStateError(f"Session is already {session.status}", code="SESSION_NOT_PENDING")

    return {"sessionId": session.id, "status": QR_STATUS_AUTHORIZED}
