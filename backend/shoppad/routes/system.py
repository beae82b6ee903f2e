# backend/shoppad/routes/system.py
"""
System health and version endpoints.

Health covers the database plus the two polled subsystems (QR handshake and
NFC event queue), whose backlogs are the first thing to look at when a cart
display "hangs".
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import User, QRLoginSession, NFCEvent, NFCPaymentLock, Transaction
from ..models.qr import QR_STATUS_PENDING
from ..models.sales import TXN_STATUS_PENDING
from shoppad.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        pending_transactions = db.session.query(Transaction).filter_by(status=TXN_STATUS_PENDING).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "users": user_count,
                "pending_transactions": pending_transactions,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_polling_health() -> dict:
    """
    QR and NFC backlog. Overdue pending sessions are only cosmetic (readers
    re-check expiry) so they never make the service unhealthy.
    """
    start_time = time.time()
    try:
        now = utcnow()
        overdue_sessions = db.session.query(QRLoginSession).filter(
            QRLoginSession.status == QR_STATUS_PENDING,
            QRLoginSession.expires_at <= now,
        ).count()
        unprocessed_events = db.session.query(NFCEvent).filter(NFCEvent.processed.is_(False)).count()
        held_locks = db.session.query(NFCPaymentLock).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "overdue_qr_sessions": overdue_sessions,
                "unprocessed_nfc_events": unprocessed_events,
                "nfc_payment_locks": held_locks,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Polling subsystem health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Polling subsystem error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: All systems healthy
    - 503: One or more systems unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    polling_health = check_polling_health()

    all_checks = [database_health, polling_health]
    unhealthy_count = sum(1 for check in all_checks if check["status"] == "unhealthy")

    if unhealthy_count > 0:
        overall_status = "unhealthy"
        http_status = 503
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "polling": polling_health,
        }
    }

    return response, http_status


@system_bp.get("/version")
def version():
    """
    Version endpoint for deployment debugging.

    Does NOT expose secret keys, database credentials or internal paths.
    """
    import sys

    env = "production" if not current_app.debug else "development"

    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
