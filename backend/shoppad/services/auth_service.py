# Overview: Service-layer operations for shopper accounts; encapsulates business logic and database work.

"""
Shopper Account Service

WHY: The phone side of every flow is an authenticated shopper. Uses bcrypt
for password hashing.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Phone number is the login identifier (unique)
- Bearer tokens managed separately (see token_service.py)
"""

import bcrypt
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import User, PaymentMethod
from shoppad.time_utils import utcnow
from .errors import ConflictError, EmptyInputError


MIN_PASSWORD_LENGTH = 4
MIN_PHONE_LENGTH = 9
MAX_PHONE_LENGTH = 15


class PasswordValidationError(EmptyInputError):
    """Raised when password doesn't meet the minimum requirements."""
    default_code = "WEAK_PASSWORD"


def validate_password(password: str) -> None:
    """Raises PasswordValidationError if requirements not met."""
    if len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
        )


def validate_phone(phone: str) -> None:
    if not MIN_PHONE_LENGTH <= len(phone) <= MAX_PHONE_LENGTH:
        raise EmptyInputError("Invalid phone number format", code="INVALID_PHONE")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt with cost factor 12.

    Password is validated before hashing.
    """
    validate_password(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    Returns True if password matches hash, False otherwise (including for
    malformed hashes).
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def register_user(
    name: str,
    phone: str,
    password: str,
    preferred_payment_method_id: int | None = None,
) -> User:
    """
    Create a shopper account.

    Raises:
        EmptyInputError: missing fields or bad phone format
        PasswordValidationError: password too short
        ConflictError: phone already registered
    """
    if not all(isinstance(value, str) and value for value in (name, phone, password)):
        raise EmptyInputError("Name, phone, and password are required")

    validate_phone(phone)
    validate_password(password)

    # Duplicate check runs before the bcrypt hash
    if db.session.query(User).filter_by(phone=phone).first():
        raise ConflictError("Phone number already registered", code="PHONE_TAKEN")

    password_hash = hash_password(password)

    if preferred_payment_method_id is not None:
        method = db.session.get(PaymentMethod, preferred_payment_method_id)
        if not method or not method.enabled:
            raise EmptyInputError("Invalid or disabled payment method", code="INVALID_PAYMENT_METHOD")

    user = User(
        name=name,
        phone=phone,
        password_hash=password_hash,
        preferred_payment_method_id=preferred_payment_method_id,
    )

    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Phone number already registered", code="PHONE_TAKEN")
    return user


def authenticate(phone: str, password: str) -> User | None:
    """
    Authenticate user with phone and password.

    Returns User if credentials valid, None otherwise.
    """
    user = db.session.query(User).filter_by(phone=phone).first()
    if not user:
        return None

    if verify_password(password, user.password_hash):
        return user

    return None


def update_preferred_payment_method(user_id: int, payment_method_id: int | None) -> User:
    """Set (or clear with None) the method used for tap-to-pay."""
    user = db.session.get(User, user_id)
    if payment_method_id is not None:
        method = db.session.get(PaymentMethod, payment_method_id)
        if not method or not method.enabled:
            raise EmptyInputError("Invalid or disabled payment method", code="INVALID_PAYMENT_METHOD")
    user.preferred_payment_method_id = payment_method_id
    user.updated_at = utcnow()
    db.session.commit()
    return user
