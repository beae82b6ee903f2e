# Overview: Service-layer operations for NFC reader events and tap-to-pay; encapsulates business logic and database work.

"""
NFC Event Router

WHY: The reader posts raw taps; the cart display polls for them. A tap can
also pay: the card UID is resolved to a shopper and their cart is checked
out in one go.

DESIGN:
- Events are rows, not an in-process list, so any number of app workers see
  the same queue
- "Unprocessed" is the handoff flag: the display marks what it has shown
- One tap-to-pay per card at a time. A lock row keyed by UID is inserted
  before anything else happens; a second tap for the same card while the
  first is in flight is rejected with a Conflict instead of charging twice.
  Abandoned lock rows expire after NFC_LOCK_TIMEOUT_SECONDS, counted from
  the refresh right before the gateway call
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import NFCEvent, NFCPaymentLock, Transaction, User
from ..models.nfc import (
    NFC_EVENT_DETECTED,
    NFC_EVENT_PAYMENT_SUCCESS,
    NFC_EVENT_PAYMENT_FAILED,
    VALID_NFC_EVENTS,
)
from shoppad.time_utils import utcnow, parse_iso_datetime, WIRE_RESOLUTION
from . import cart_service, checkout_service, nfc_link_service
from .concurrency import conditional_update
from .errors import ConflictError, EmptyInputError, NotFoundError


logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = timedelta(seconds=30)
DEFAULT_LIST_LIMIT = 10
DEFAULT_LIST_MAX = 100


@dataclass
class NFCPaymentOutcome:
    transaction: Transaction
    event: NFCEvent
    user: User
    gateway_error: bool = False

    @property
    def approved(self) -> bool:
        return self.event.event == NFC_EVENT_PAYMENT_SUCCESS


# =============================================================================
# EVENT LOG
# =============================================================================

def record_tap(
    uid: str,
    event_kind: str = NFC_EVENT_DETECTED,
    device_id: str | None = None,
    transaction_id: int | None = None,
    user_name: str | None = None,
    total: Decimal | None = None,
) -> NFCEvent:
    """Append an event. Does not decide anything about payment."""
    normalized = nfc_link_service.normalize_uid(uid)
    if event_kind not in VALID_NFC_EVENTS:
        raise EmptyInputError(
            f"Invalid event: {event_kind}. Must be one of {list(VALID_NFC_EVENTS)}",
            code="INVALID_EVENT",
        )

    event = NFCEvent(
        uid=normalized,
        event=event_kind,
        device_id=device_id or "unknown",
        processed=False,
        transaction_id=transaction_id,
        user_name=user_name,
        total=total,
        created_at=utcnow(),
    )
    db.session.add(event)
    db.session.commit()
    return event


def list_events(limit: int = DEFAULT_LIST_LIMIT, unprocessed: bool = False) -> list[NFCEvent]:
    """Newest first. `limit` is clamped to [1, NFC_EVENT_LIST_MAX]."""
    max_limit = current_app.config.get("NFC_EVENT_LIST_MAX", DEFAULT_LIST_MAX)
    limit = max(1, min(int(limit), max_limit))

    query = db.session.query(NFCEvent)
    if unprocessed:
        query = query.filter(NFCEvent.processed.is_(False))
    return query.order_by(NFCEvent.created_at.desc(), NFCEvent.id.desc()).limit(limit).all()


def mark_processed(
    event_id: int,
    transaction_id: int | None = None,
    user_name: str | None = None,
    total: Decimal | None = None,
) -> NFCEvent:
    """
    Flag an event as handled by the display.

    Only the first call writes; later calls return the event unchanged.
    Raises NotFoundError for unknown events or transactions.
    """
    if transaction_id is not None and db.session.get(Transaction, transaction_id) is None:
        raise NotFoundError(f"Transaction {transaction_id} not found", code="TRANSACTION_NOT_FOUND")

    values = {NFCEvent.processed: True, NFCEvent.processed_at: utcnow()}
    if transaction_id is not None:
        values[NFCEvent.transaction_id] = transaction_id
    if user_name is not None:
        values[NFCEvent.user_name] = user_name
    if total is not None:
        values[NFCEvent.total] = total

    query = db.session.query(NFCEvent).filter(
        NFCEvent.id == event_id,
        NFCEvent.processed.is_(False),
    )
    conditional_update(query, values)

    event = db.session.get(NFCEvent, event_id)
    if event is None:
        raise NotFoundError("NFC event not found", code="NFC_EVENT_NOT_FOUND")
    return event


def mark_processed_by_uid(uid: str, timestamp: str) -> int:
    """
    Flag every event for `uid` up to and including the poll cursor `timestamp`.

    Returns the number of events newly marked. Raises NotFoundError if the
    card has no event at or before the cursor.
    """
    normalized = nfc_link_service.normalize_uid(uid)
    if timestamp is not None and not isinstance(timestamp, str):
        raise EmptyInputError("Invalid timestamp", code="INVALID_TIMESTAMP")
    try:
        cursor = parse_iso_datetime(timestamp)
    except (TypeError, ValueError):
        raise EmptyInputError("Invalid timestamp", code="INVALID_TIMESTAMP")
    if cursor is None:
        raise EmptyInputError("eventId or uid and timestamp required", code="EVENT_REQUIRED")

    upper = cursor + WIRE_RESOLUTION
    exists = db.session.query(NFCEvent.id).filter(
        NFCEvent.uid == normalized,
        NFCEvent.created_at < upper,
    ).first()
    if not exists:
        raise NotFoundError("NFC event not found", code="NFC_EVENT_NOT_FOUND")

    query = db.session.query(NFCEvent).filter(
        NFCEvent.uid == normalized,
        NFCEvent.processed.is_(False),
        NFCEvent.created_at < upper,
    )
    return conditional_update(query, {NFCEvent.processed: True, NFCEvent.processed_at: utcnow()})


def prune(*, retention_days: int = 7) -> int:
    """Delete processed events older than the retention window."""
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = db.session.query(NFCEvent).filter(
        NFCEvent.processed.is_(True),
        NFCEvent.created_at < cutoff,
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted


# =============================================================================
# PER-CARD SERIALIZATION
# =============================================================================

def _lock_timeout() -> timedelta:
    seconds = current_app.config.get("NFC_LOCK_TIMEOUT_SECONDS")
    return timedelta(seconds=seconds) if seconds is not None else DEFAULT_LOCK_TIMEOUT


def acquire_lock(uid: str) -> str | None:
    """
    Claim the card for one tap-to-pay. Returns an ownership token, or None
    if another payment for this card is in flight.
    """
    token = secrets.token_hex(8)
    now = utcnow()
    try:
        db.session.execute(insert(NFCPaymentLock).values(uid=uid, token=token, acquired_at=now))
        db.session.commit()
        return token
    except IntegrityError:
        db.session.rollback()

    # Held already. Take it over only if the holder has been gone too long.
    query = db.session.query(NFCPaymentLock).filter(
        NFCPaymentLock.uid == uid,
        NFCPaymentLock.acquired_at < now - _lock_timeout(),
    )
    if conditional_update(query, {NFCPaymentLock.token: token, NFCPaymentLock.acquired_at: now}) == 1:
        logger.warning("Took over stale NFC payment lock for card %s", nfc_link_service.mask_uid(uid))
        return token
    return None


def refresh_lock(uid: str, token: str) -> bool:
    """
    Restart the holder's timeout. Returns False if the lock is no longer
    ours (taken over as stale).
    """
    query = db.session.query(NFCPaymentLock).filter(
        NFCPaymentLock.uid == uid,
        NFCPaymentLock.token == token,
    )
    return conditional_update(query, {NFCPaymentLock.acquired_at: utcnow()}) == 1


def release_lock(uid: str, token: str) -> None:
    db.session.query(NFCPaymentLock).filter(
        NFCPaymentLock.uid == uid,
        NFCPaymentLock.token == token,
    ).delete(synchronize_session=False)
    db.session.commit()


def release_stale_locks() -> int:
    cutoff = utcnow() - _lock_timeout()
    deleted = db.session.query(NFCPaymentLock).filter(
        NFCPaymentLock.acquired_at < cutoff
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted


# =============================================================================
# TAP-TO-PAY
# =============================================================================

def trigger_payment(uid: str, gateway=None, device_id: str = "auto-payment") -> NFCPaymentOutcome:
    """
    Turn a card tap into a checkout of the card owner's cart.

    Raises:
        EmptyInputError: missing uid, or cart empty (CART_EMPTY)
        NotFoundError: card not linked (NFC_NOT_LINKED)
        ConflictError: a payment for this card is already in flight

    A declined payment is not an exception: the outcome carries the failed
    transaction and the payment_failed event for the display.
    """
    normalized = nfc_link_service.normalize_uid(uid)

    token = acquire_lock(normalized)
    if token is None:
        logger.warning("Rejected overlapping tap-to-pay for card %s", nfc_link_service.mask_uid(normalized))
        raise ConflictError(
            "A payment for this card is already in progress",
            code="NFC_PAYMENT_IN_PROGRESS",
        )

    try:
        user = nfc_link_service.resolve(normalized)

        if not cart_service.has_items(user.id):
            raise EmptyInputError("Cart is empty", code="CART_EMPTY")

        # Full timeout for the gateway call
        if not refresh_lock(normalized, token):
            raise ConflictError(
                "A payment for this card is already in progress",
                code="NFC_PAYMENT_IN_PROGRESS",
            )

        outcome = checkout_service.checkout(user.id, nfc_uid=normalized, gateway=gateway)
        transaction = outcome.transaction

        event = record_tap(
            normalized,
            NFC_EVENT_PAYMENT_SUCCESS if outcome.approved else NFC_EVENT_PAYMENT_FAILED,
            device_id=device_id,
            transaction_id=transaction.id,
            user_name=user.name,
            total=transaction.total,
        )
        return NFCPaymentOutcome(
            transaction=transaction,
            event=event,
            user=user,
            gateway_error=outcome.gateway_error,
        )
    except Exception:
        db.session.rollback()
        raise
    finally:
        release_lock(normalized, token)
