from __future__ import annotations

from ..extensions import db
from shoppad.time_utils import to_utc_z


NFC_EVENT_DETECTED = "nfc_detected"
NFC_EVENT_PAYMENT_SUCCESS = "payment_success"
NFC_EVENT_PAYMENT_FAILED = "payment_failed"

VALID_NFC_EVENTS = (NFC_EVENT_DETECTED, NFC_EVENT_PAYMENT_SUCCESS, NFC_EVENT_PAYMENT_FAILED)


class NFCEvent(db.Model):
    """
    Reader event log polled by the cart display.

    An event stays visible to "unprocessed" polls until the display marks it
    processed. Payment outcome events carry the transaction they describe.
    """
    __tablename__ = "nfc_events"
    __table_args__ = (
        db.Index("ix_nfc_events_processed_created", "processed", "created_at"),
        db.Index("ix_nfc_events_uid_created", "uid", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    uid = db.Column(db.String(64), nullable=False)
    event = db.Column(db.String(32), nullable=False, default=NFC_EVENT_DETECTED)
    device_id = db.Column(db.String(128), nullable=False, default="unknown")

    processed = db.Column(db.Boolean, nullable=False, default=False)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True)
    user_name = db.Column(db.String(128), nullable=True)
    total = db.Column(db.Numeric(12, 2), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "uid": self.uid,
            "event": self.event,
            "deviceId": self.device_id,
            "processed": self.processed,
            "transactionId": self.transaction_id,
            "userName": self.user_name,
            "total": str(self.total) if self.total is not None else None,
            "timestamp": to_utc_z(self.created_at),
            "processedAt": to_utc_z(self.processed_at),
        }


class NFCPaymentLock(db.Model):
    """
    One row per card UID while a tap-to-pay is in flight.

    Acquired by INSERT (primary key collision means busy), released by
    DELETE. A row older than the configured timeout is considered abandoned
    and may be taken over.
    """
    __tablename__ = "nfc_payment_locks"

    uid = db.Column(db.String(64), primary_key=True)
    token = db.Column(db.String(32), nullable=False)
    acquired_at = db.Column(db.DateTime(timezone=True), nullable=False)
