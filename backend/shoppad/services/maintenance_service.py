# Overview: Service-layer operations for maintenance; encapsulates business logic and database work.

from __future__ import annotations

from datetime import timedelta

from ..extensions import db
from ..models import Transaction
from ..models.sales import TXN_STATUS_PENDING, TXN_STATUS_FAILED
from shoppad.time_utils import utcnow
from . import qr_session_service, nfc_service, token_service
from .concurrency import conditional_update


def cleanup_qr_sessions(*, retention_days: int = 7) -> tuple[int, int]:
    """
    Expire overdue pending sessions, then delete sessions past retention.

    Returns (expired_count, deleted_count).
    """
    expired = qr_session_service.cleanup_expired()
    deleted = qr_session_service.delete_old(days=retention_days)
    return expired, deleted


def prune_nfc_events(*, retention_days: int = 7) -> int:
    return nfc_service.prune(retention_days=retention_days)


def release_stale_nfc_locks() -> int:
    return nfc_service.release_stale_locks()


def cleanup_access_tokens(*, older_than_days: int = 30) -> int:
    return token_service.cleanup_expired_tokens(older_than_days=older_than_days)


def fail_abandoned_transactions(*, older_than_minutes: int = 15) -> int:
    """
    Mark transactions stuck in pending (process died mid-checkout) as failed.

    The cart was never cleared for these, so the shopper can simply retry.
    """
    cutoff = utcnow() - timedelta(minutes=older_than_minutes)
    query = db.session.query(Transaction).filter(
        Transaction.status == TXN_STATUS_PENDING,
        Transaction.created_at < cutoff,
    )
    return conditional_update(query, {Transaction.status: TXN_STATUS_FAILED})
