# Overview: Service-layer operations for bearer tokens; encapsulates business logic and database work.

"""
Bearer Token Issuer

WHY: Phones log in with a password, tablets log in through the QR handshake;
both end up holding the same kind of bearer token. Tokens are
cryptographically secure, hashed in database, and time-limited.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- 7-day absolute lifetime (ACCESS_TOKEN_TTL_DAYS)
- verify() tells "unknown/malformed" apart from "expired" so clients can
  react differently (re-login prompt vs silent refresh)
- Token identifies a user only; it is never tied to the QR session that
  produced it
"""

import secrets
import hashlib
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import AccessToken, User
from shoppad.time_utils import utcnow


TOKEN_VALID = "valid"
TOKEN_INVALID = "invalid"
TOKEN_EXPIRED = "expired"

DEFAULT_TOKEN_TTL = timedelta(days=7)


@dataclass
class TokenCheck:
    """Outcome of verify(). `user` is set only when status is valid."""
    status: str
    user: User | None = None
    token: AccessToken | None = None

    @property
    def is_valid(self) -> bool:
        return self.status == TOKEN_VALID


def generate_token() -> str:
    """
    Generate cryptographically secure random token.

    Returns 64-character hex string (32 bytes of entropy).
    This is the plaintext token sent to client (never stored).
    """
    return secrets.token_hex(32)  # 32 bytes = 64 hex characters


def hash_token(token: str) -> str:
    """
    Hash token for database storage using SHA-256.

    WHY SHA-256 not bcrypt: Tokens are already high-entropy (unlike passwords).
    """
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def _configured_ttl() -> timedelta:
    days = current_app.config.get("ACCESS_TOKEN_TTL_DAYS")
    return timedelta(days=days) if days is not None else DEFAULT_TOKEN_TTL


def mint(user_id: int, ttl: timedelta | None = None) -> tuple[AccessToken, str]:
    """
    Issue a new bearer token for user.

    Returns (token_record, plaintext_token).
    Client receives plaintext_token, database stores only the hash.

    Raises ValueError if the user does not exist.
    """
    user = db.session.get(User, user_id)
    if not user:
        raise ValueError("User not found")

    plaintext_token = generate_token()
    now = utcnow()

    record = AccessToken(
        user_id=user_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        expires_at=now + (ttl if ttl is not None else _configured_ttl()),
    )

    db.session.add(record)
    db.session.commit()

    return record, plaintext_token


def verify(token: str | None) -> TokenCheck:
    """
    Resolve a presented bearer token.

    Returns TokenCheck with status:
    - invalid: empty, unknown, revoked, or owner no longer exists
    - expired: known token past its expires_at
    - valid: user attached
    """
    if not token:
        return TokenCheck(status=TOKEN_INVALID)

    record = db.session.query(AccessToken).filter_by(
        token_hash=hash_token(token)
    ).first()

    if not record or record.revoked_at is not None:
        return TokenCheck(status=TOKEN_INVALID)

    if record.expires_at <= utcnow():
        return TokenCheck(status=TOKEN_EXPIRED, token=record)

    user = record.user
    if not user:
        return TokenCheck(status=TOKEN_INVALID)

    return TokenCheck(status=TOKEN_VALID, user=user, token=record)


def revoke(token: str) -> bool:
    """
    Revoke a token (logout).

    Returns True if an active token was revoked, False if not found.
    """
    changed = db.session.query(AccessToken).filter(
        AccessToken.token_hash == hash_token(token),
        AccessToken.revoked_at.is_(None),
    ).update({AccessToken.revoked_at: utcnow()}, synchronize_session=False)
    db.session.commit()
    return changed > 0


def cleanup_expired_tokens(*, older_than_days: int = 30) -> int:
    """
    Delete expired or revoked tokens older than the cutoff.

    Returns count of tokens deleted.
    """
    cutoff = utcnow() - timedelta(days=older_than_days)

    deleted = db.session.query(AccessToken).filter(
        db.or_(
            AccessToken.expires_at < utcnow(),
            AccessToken.revoked_at.isnot(None),
        ),
        AccessToken.created_at < cutoff,
    ).delete(synchronize_session=False)

    db.session.commit()
    return deleted
