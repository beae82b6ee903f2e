# Overview: Service-layer operations for QR login sessions; encapsulates business logic and database work.

"""
QR Login Session Store

WHY: A cart tablet has no credentials of its own. It opens a session, shows
the session id as a QR code, and waits for a logged-in phone to approve it.

STATE MACHINE:
    pending -> authorized -> used
    pending -> expired
    authorized -> expired
`used` and `expired` are terminal.

CONCURRENCY: authorize() and consume_if_authorized() are single conditional
UPDATE statements (WHERE status = <expected> AND expires_at > now). The
affected row count is the answer, so two racing callers can never both
succeed. Expiry is part of the predicate: a session past its deadline can
never move to authorized or used, whatever its stored status says.
"""

import hmac
import secrets
import uuid
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import QRLoginSession
from ..models.qr import (
    QR_STATUS_PENDING,
    QR_STATUS_AUTHORIZED,
    QR_STATUS_USED,
    QR_STATUS_EXPIRED,
)
from shoppad.time_utils import utcnow
from .concurrency import conditional_update


DEFAULT_SESSION_TTL = timedelta(minutes=5)


def _configured_ttl() -> timedelta:
    seconds = current_app.config.get("QR_SESSION_TTL_SECONDS")
    return timedelta(seconds=seconds) if seconds is not None else DEFAULT_SESSION_TTL


def create(device_info: str | None = None, ttl: timedelta | None = None) -> QRLoginSession:
    """
    Open a pending session.

    The secret is generated independently of the id: the id is public (it
    is in the QR code), the secret is the tablet's proof of ownership.
    """
    now = utcnow()
    session = QRLoginSession(
        id=uuid.uuid4().hex,
        secret=secrets.token_hex(32),
        status=QR_STATUS_PENDING,
        device_info=device_info,
        created_at=now,
        expires_at=now + (ttl if ttl is not None else _configured_ttl()),
    )
    db.session.add(session)
    db.session.commit()
    return session


def find_by_id(session_id: str) -> QRLoginSession | None:
    return db.session.get(QRLoginSession, session_id)


def validate_secret(session_id: str, secret: str | None) -> bool:
    """Constant-time check of the tablet's secret."""
    if not secret:
        return False
    session = find_by_id(session_id)
    if not session:
        return False
    return hmac.compare_digest(session.secret.encode("utf-8"), secret.encode("utf-8"))


def is_expired(session: QRLoginSession) -> bool:
    return session.expires_at <= utcnow()


def authorize(session_id: str, user_id: int) -> bool:
    """
    pending -> authorized, binding the approving user.

    Returns False if the session is not pending any more (already
    authorized, used, expired) or its deadline has passed.
    """
    now = utcnow()
    query = db.session.query(QRLoginSession).filter(
        QRLoginSession.id == session_id,
        QRLoginSession.status == QR_STATUS_PENDING,
        QRLoginSession.expires_at > now,
    )
    changed = conditional_update(query, {
        QRLoginSession.status: QR_STATUS_AUTHORIZED,
        QRLoginSession.user_id: user_id,
        QRLoginSession.authorized_at: now,
    })
    return changed == 1


def consume_if_authorized(session_id: str) -> int | None:
    """
    authorized -> used. The single redemption point of a session.

    Returns the authorizing user's id to exactly one caller; every other
    caller (late poller, replay, racing observer) gets None.
    """
    now = utcnow()
    query = db.session.query(QRLoginSession).filter(
        QRLoginSession.id == session_id,
        QRLoginSession.status == QR_STATUS_AUTHORIZED,
        QRLoginSession.expires_at > now,
    )
    changed = conditional_update(query, {
        QRLoginSession.status: QR_STATUS_USED,
        QRLoginSession.used_at: now,
    })
    if changed != 1:
        return None

    user_id = db.session.query(QRLoginSession.user_id).filter(
        QRLoginSession.id == session_id
    ).scalar()
    return user_id


def unconsume(session_id: str) -> bool:
    """
    used -> authorized. Undoes a redemption whose token could not be minted,
    so the next poll can redeem again.
    """
    query = db.session.query(QRLoginSession).filter(
        QRLoginSession.id == session_id,
        QRLoginSession.status == QR_STATUS_USED,
    )
    return conditional_update(query, {
        QRLoginSession.status: QR_STATUS_AUTHORIZED,
        QRLoginSession.used_at: None,
    }) == 1


def mark_expired(session_id: str) -> bool:
    """
    Flip a non-terminal session whose deadline has passed to expired.

    Returns True if this call made the change.
    """
    query = db.session.query(QRLoginSession).filter(
        QRLoginSession.id == session_id,
        QRLoginSession.status.in_((QR_STATUS_PENDING, QR_STATUS_AUTHORIZED)),
        QRLoginSession.expires_at <= utcnow(),
    )
    return conditional_update(query, {QRLoginSession.status: QR_STATUS_EXPIRED}) == 1


def cleanup_expired() -> int:
    """
    Best-effort sweep: pending sessions past their deadline become expired.

    Readers re-check expiry regardless; this only keeps the table honest.
    """
    query = db.session.query(QRLoginSession).filter(
        QRLoginSession.status == QR_STATUS_PENDING,
        QRLoginSession.expires_at <= utcnow(),
    )
    return conditional_update(query, {QRLoginSession.status: QR_STATUS_EXPIRED})


def delete_old(days: int = 7) -> int:
    """Delete sessions created more than `days` ago. Returns count deleted."""
    cutoff = utcnow() - timedelta(days=days)
    deleted = db.session.query(QRLoginSession).filter(
        QRLoginSession.created_at < cutoff
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
