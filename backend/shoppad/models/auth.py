from __future__ import annotations

from ..extensions import db
from shoppad.time_utils import to_utc_z


def mask_uid(uid: str | None) -> str | None:
    """Display form of a card UID for account payloads: first four characters."""
    if not uid:
        return None
    return uid[:4] + "****"


class User(db.Model):
    """
    Shopper accounts.

    A user logs in on their phone with phone + password and may link one
    physical NFC card. The card UID is globally unique: a card identifies
    exactly one shopper at the reader.
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(128), nullable=False)
    phone = db.Column(db.String(32), nullable=False, unique=True, index=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    # Normalized (uppercase, no whitespace) NFC card UID
    nfc_uid = db.Column(db.String(64), nullable=True, unique=True, index=True)

    preferred_payment_method_id = db.Column(
        db.Integer, db.ForeignKey("payment_methods.id"), nullable=True
    )

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    preferred_payment_method = db.relationship("PaymentMethod")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "nfcUid": mask_uid(self.nfc_uid),
            "preferredPaymentMethodId": self.preferred_payment_method_id,
            "createdAt": to_utc_z(self.created_at),
        }


class AccessToken(db.Model):
    """
    Bearer tokens issued at login, registration and QR handshake redemption.

    SECURITY NOTES:
    - Tokens stored hashed in database (SHA-256)
    - Fixed absolute lifetime, no idle timeout
    - A token carries user identity only; it is unrelated to the QR session
      that may have produced it
    """
    __tablename__ = "access_tokens"
    __table_args__ = (
        db.Index("ix_access_tokens_user_active", "user_id", "revoked_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Token hash (never store plaintext tokens!)
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    user = db.relationship("User", backref=db.backref("access_tokens", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "createdAt": to_utc_z(self.created_at),
            "expiresAt": to_utc_z(self.expires_at),
        }
