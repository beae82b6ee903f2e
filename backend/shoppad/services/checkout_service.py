# Overview: Service-layer operations for checkout transactions; encapsulates business logic and database work.

"""
Checkout Ledger

WHY: A purchase must be recorded before money moves, and recorded exactly
once. Transactions are written as pending together with their line items,
then resolved by the payment gateway.

DESIGN PRINCIPLES:
- Header and items are one database transaction: never a header without
  items, never items without a header
- Prices are snapshotted into the items; later catalog edits do not rewrite
  history
- Total is the exact Decimal sum of quantity x unit price, rounded to cents
  once, at the total
- Terminal transitions (complete / fail / cancel) are conditional on
  status = pending, so retries are harmless no-ops
- The cart is cleared only after the transaction is durably completed; a
  declined payment leaves the cart untouched for a retry
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import case, func

from ..extensions import db
from ..models import Transaction, TransactionItem, PaymentMethod, User
from ..models.sales import (
    TXN_STATUS_PENDING,
    TXN_STATUS_COMPLETED,
    TXN_STATUS_FAILED,
    TXN_STATUS_CANCELLED,
    TXN_STATUSES,
)
from shoppad.time_utils import utcnow
from . import cart_service, payment_simulator
from .concurrency import conditional_update, run_with_retry
from .errors import EmptyInputError, ForbiddenError, NotFoundError
from .payment_simulator import DECISION_APPROVED, DECISION_DECLINED


logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


@dataclass
class CheckoutOutcome:
    """Result of one pass through create -> authorize -> complete|fail."""
    transaction: Transaction
    decision: str
    gateway_error: bool = False

    @property
    def approved(self) -> bool:
        return self.transaction.status == TXN_STATUS_COMPLETED


@dataclass
class _LineSnapshot:
    product_id: int
    product_name: str
    quantity: int
    unit_price: Decimal


def round_total(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


# =============================================================================
# PAYMENT METHODS
# =============================================================================

def list_payment_methods() -> list[PaymentMethod]:
    return (
        db.session.query(PaymentMethod)
        .filter_by(enabled=True)
        .order_by(PaymentMethod.display_order, PaymentMethod.name)
        .all()
    )


def resolve_payment_method(user: User, requested_id: int | None = None) -> PaymentMethod:
    """
    Pick the method to charge.

    Explicit request wins; otherwise the user's preferred method; otherwise
    the first enabled method by display order.
    """
    if requested_id is not None:
        method = db.session.get(PaymentMethod, requested_id)
        if not method or not method.enabled:
            raise EmptyInputError("Invalid or disabled payment method", code="INVALID_PAYMENT_METHOD")
        return method

    preferred = user.preferred_payment_method
    if preferred is not None and preferred.enabled:
        return preferred

    methods = list_payment_methods()
    if not methods:
        raise EmptyInputError("No payment method available", code="NO_PAYMENT_METHOD")
    return methods[0]


# =============================================================================
# TRANSACTION CREATION
# =============================================================================

def _snapshot_line(transaction_id: int, line: _LineSnapshot) -> TransactionItem:
    return TransactionItem(
        transaction_id=transaction_id,
        product_id=line.product_id,
        product_name=line.product_name,
        quantity=line.quantity,
        unit_price=line.unit_price,
    )


def create_from_cart(user_id: int, payment_method_id: int, nfc_uid: str | None = None) -> Transaction:
    """
    Materialize the user's cart as a pending transaction.

    Raises:
        EmptyInputError: cart has no items (code CART_EMPTY)

    The cart itself is NOT cleared here.
    """
    lines = [
        _LineSnapshot(
            product_id=item.product_id,
            product_name=item.product.name,
            quantity=item.quantity,
            unit_price=Decimal(item.product.price),
        )
        for item in cart_service.get_items(user_id)
    ]
    if not lines:
        raise EmptyInputError("Cart is empty", code="CART_EMPTY")

    total = round_total(sum((line.unit_price * line.quantity for line in lines), Decimal("0")))

    def _op():
        transaction = Transaction(
            user_id=user_id,
            total=total,
            payment_method_id=payment_method_id,
            status=TXN_STATUS_PENDING,
            nfc_uid=nfc_uid,
            created_at=utcnow(),
        )
        db.session.add(transaction)
        db.session.flush()  # Get transaction ID

        for line in lines:
            db.session.add(_snapshot_line(transaction.id, line))

        db.session.commit()
        return transaction

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise


# =============================================================================
# TERMINAL TRANSITIONS
# =============================================================================

def _finish(transaction_id: int, new_status: str) -> Transaction:
    values = {Transaction.status: new_status}
    if new_status == TXN_STATUS_COMPLETED:
        values[Transaction.completed_at] = utcnow()

    query = db.session.query(Transaction).filter(
        Transaction.id == transaction_id,
        Transaction.status == TXN_STATUS_PENDING,
    )
    conditional_update(query, values)

    transaction = db.session.get(Transaction, transaction_id)
    if transaction is None:
        raise NotFoundError(f"Transaction {transaction_id} not found", code="TRANSACTION_NOT_FOUND")
    return transaction


def complete(transaction_id: int) -> Transaction:
    """pending -> completed. No-op on a transaction that is already terminal."""
    return _finish(transaction_id, TXN_STATUS_COMPLETED)


def fail(transaction_id: int) -> Transaction:
    """pending -> failed. No-op on a transaction that is already terminal."""
    return _finish(transaction_id, TXN_STATUS_FAILED)


def cancel(transaction_id: int) -> Transaction:
    """pending -> cancelled. No-op on a transaction that is already terminal."""
    return _finish(transaction_id, TXN_STATUS_CANCELLED)


# =============================================================================
# CHECKOUT PIPELINE
# =============================================================================

def checkout(
    user_id: int,
    payment_method_id: int | None = None,
    nfc_uid: str | None = None,
    gateway=None,
) -> CheckoutOutcome:
    """
    create_from_cart -> gateway.authorize -> complete | fail.

    The cart is cleared only after the transaction is durably completed.
    A gateway exception after the row exists marks the transaction failed.
    """
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")

    method = resolve_payment_method(user, payment_method_id)
    transaction = create_from_cart(user.id, method.id, nfc_uid=nfc_uid)
    transaction_id = transaction.id

    gateway = gateway or payment_simulator.get_gateway()
    gateway_error = False
    try:
        decision = gateway.authorize(transaction)
    except Exception:
        logger.exception("Payment gateway failed for transaction %s", transaction_id)
        decision = DECISION_DECLINED
        gateway_error = True

    if decision == DECISION_APPROVED:
        transaction = complete(transaction_id)
        if transaction.status == TXN_STATUS_COMPLETED:
            cart_service.clear(user.id)
            logger.info(
                "Transaction %s completed for user %s (total %s)",
                transaction_id, user.id, transaction.total,
            )
        else:
            # Finished elsewhere (abandoned sweep, cancel) while the gateway
            # was deciding. A real gateway charge must be voided here.
            logger.warning(
                "Gateway approved transaction %s for user %s but it is already %s; "
                "approved charge of %s needs a void or refund",
                transaction_id, user.id, transaction.status, transaction.total,
            )
    else:
        decision = DECISION_DECLINED
        transaction = fail(transaction_id)
        logger.warning("Transaction %s declined for user %s", transaction_id, user.id)

    return CheckoutOutcome(transaction=transaction, decision=decision, gateway_error=gateway_error)


# =============================================================================
# QUERIES
# =============================================================================

def get_for_user(transaction_id: int, user_id: int) -> Transaction:
    """
    Owner-only read.

    Unknown ids and other users' transactions fail identically with
    ForbiddenError so the response never reveals whether an id exists.
    """
    transaction = db.session.get(Transaction, transaction_id)
    if transaction is None or transaction.user_id != user_id:
        raise ForbiddenError("Access denied", code="ACCESS_DENIED")
    return transaction


def list_for_user(
    user_id: int,
    limit: int = 50,
    offset: int = 0,
    status: str | None = None,
) -> tuple[list[Transaction], int]:
    """Newest first. Returns (page, total_count)."""
    if status is not None and status not in TXN_STATUSES:
        raise EmptyInputError(f"Invalid status: {status}", code="INVALID_STATUS")

    query = db.session.query(Transaction).filter(Transaction.user_id == user_id)
    if status is not None:
        query = query.filter(Transaction.status == status)

    total = query.count()
    page = (
        query.order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    return page, total


def stats_for_user(user_id: int) -> dict:
    row = db.session.query(
        func.count(Transaction.id),
        func.coalesce(func.sum(case((Transaction.status == TXN_STATUS_COMPLETED, Transaction.total), else_=0)), 0),
        func.sum(case((Transaction.status == TXN_STATUS_COMPLETED, 1), else_=0)),
        func.sum(case((Transaction.status == TXN_STATUS_FAILED, 1), else_=0)),
    ).filter(Transaction.user_id == user_id).one()

    return {
        "totalTransactions": row[0] or 0,
        "totalSpent": str(round_total(Decimal(str(row[1] or 0)))),
        "completedCount": int(row[2] or 0),
        "failedCount": int(row[3] or 0),
    }
