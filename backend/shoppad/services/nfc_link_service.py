# Overview: Service-layer operations for NFC card links; encapsulates business logic and database work.

"""
NFC Identity Link Registry

Maps a physical card UID to exactly one shopper. The unique index on
users.nfc_uid is the final arbiter; the explicit owner check in link() only
exists to give a clean Conflict instead of a database error.
"""

import re

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import User
from ..models.auth import mask_uid
from shoppad.time_utils import utcnow
from .concurrency import conditional_update
from .errors import ConflictError, EmptyInputError, InvalidStateError, NotFoundError


_WHITESPACE = re.compile(r"\s+")


def normalize_uid(raw: str | None) -> str:
    """Uppercase, whitespace removed. Readers report the same card as "04 a1 b2" or "04A1B2"."""
    if not raw or not isinstance(raw, str):
        raise EmptyInputError("NFC UID is required", code="NFC_UID_REQUIRED")
    uid = _WHITESPACE.sub("", raw).upper()
    if not uid:
        raise EmptyInputError("NFC UID is required", code="NFC_UID_REQUIRED")
    return uid


def link(user_id: int, nfc_uid: str) -> User:
    """
    Attach a card to a user.

    - already linked to this user: no-op success
    - claimed by another user: ConflictError, never a silent reassignment
    """
    uid = normalize_uid(nfc_uid)

    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")

    owner = db.session.query(User).filter_by(nfc_uid=uid).first()
    if owner is not None:
        if owner.id == user.id:
            return user
        raise ConflictError(
            "This NFC card is already linked to another account",
            code="NFC_ALREADY_LINKED",
        )

    user.nfc_uid = uid
    user.updated_at = utcnow()
    try:
        db.session.commit()
    except IntegrityError:
        # Another request claimed the card between our check and commit
        db.session.rollback()
        raise ConflictError(
            "This NFC card is already linked to another account",
            code="NFC_ALREADY_LINKED",
        )
    return user


def unlink(user_id: int) -> str:
    """
    Detach the user's card. Returns the UID that was removed.

    Raises InvalidStateError if no card is linked.
    """
    user = db.session.get(User, user_id)
    if not user or not user.nfc_uid:
        raise InvalidStateError("No NFC card linked to this account", code="NO_NFC_LINKED")

    old_uid = user.nfc_uid
    query = db.session.query(User).filter(
        User.id == user_id,
        User.nfc_uid.isnot(None),
    )
    changed = conditional_update(query, {User.nfc_uid: None, User.updated_at: utcnow()})

    if changed != 1:
        raise InvalidStateError("No NFC card linked to this account", code="NO_NFC_LINKED")
    return old_uid


def resolve(nfc_uid: str) -> User:
    """Indexed lookup on the tap path. Raises NotFoundError for unknown cards."""
    uid = normalize_uid(nfc_uid)
    user = db.session.query(User).filter_by(nfc_uid=uid).first()
    if not user:
        raise NotFoundError("NFC card not linked to any user", code="NFC_NOT_LINKED")
    return user


def status(user_id: int) -> dict:
    user = db.session.get(User, user_id)
    uid = user.nfc_uid if user else None
    return {
        "hasNfcLinked": bool(uid),
        "nfcUid": mask_uid(uid),
    }
