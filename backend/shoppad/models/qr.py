from __future__ import annotations

from ..extensions import db
from shoppad.time_utils import to_utc_z


QR_STATUS_PENDING = "pending"
QR_STATUS_AUTHORIZED = "authorized"
QR_STATUS_USED = "used"
QR_STATUS_EXPIRED = "expired"

QR_TERMINAL_STATUSES = (QR_STATUS_USED, QR_STATUS_EXPIRED)


class QRLoginSession(db.Model):
    """
    Short-lived handshake that lets a cart tablet borrow a shopper's identity.

    Lifecycle: pending -> authorized -> used, with pending/authorized ->
    expired. The id is printed in the QR code and is therefore public; the
    secret never leaves the tablet that created the session.
    """
    __tablename__ = "qr_login_sessions"
    __table_args__ = (
        db.Index("ix_qr_login_sessions_status_expires", "status", "expires_at"),
    )

    id = db.Column(db.String(32), primary_key=True)
    secret = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=QR_STATUS_PENDING)

    device_info = db.Column(db.String(255), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    authorized_at = db.Column(db.DateTime(timezone=True), nullable=True)
    used_at = db.Column(db.DateTime(timezone=True), nullable=True)

    user = db.relationship("User")

    def to_dict(self) -> dict:
        # Never includes the secret
        return {
            "sessionId": self.id,
            "status": self.status,
            "deviceInfo": self.device_info,
            "createdAt": to_utc_z(self.created_at),
            "expiresAt": to_utc_z(self.expires_at),
        }
