from __future__ import annotations

from ..extensions import db
from shoppad.time_utils import to_utc_z


TXN_STATUS_PENDING = "pending"
TXN_STATUS_COMPLETED = "completed"
TXN_STATUS_FAILED = "failed"
TXN_STATUS_CANCELLED = "cancelled"

TXN_STATUSES = (TXN_STATUS_PENDING, TXN_STATUS_COMPLETED, TXN_STATUS_FAILED, TXN_STATUS_CANCELLED)


class Transaction(db.Model):
    """
    Checkout transaction header.

    WHY: A transaction is the durable record of a purchase attempt. It is
    written as pending together with its items, then resolved exactly once
    to completed, failed or cancelled.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    total = db.Column(db.Numeric(12, 2), nullable=False)
    payment_method_id = db.Column(db.Integer, db.ForeignKey("payment_methods.id"), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=TXN_STATUS_PENDING, index=True)

    # Set when the purchase was started by a card tap
    nfc_uid = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    user = db.relationship("User", backref=db.backref("transactions", lazy=True))
    payment_method = db.relationship("PaymentMethod")
    items = db.relationship(
        "TransactionItem",
        backref="transaction",
        order_by="TransactionItem.id",
        lazy=True,
    )

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "userId": self.user_id,
            "total": str(self.total),
            "status": self.status,
            "nfcUid": self.nfc_uid,
            "paymentMethod": self.payment_method.to_dict() if self.payment_method else None,
            "itemCount": sum(item.quantity for item in self.items),
            "createdAt": to_utc_z(self.created_at),
            "completedAt": to_utc_z(self.completed_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class TransactionItem(db.Model):
    """Line snapshot: product, quantity and the price paid at checkout time."""
    __tablename__ = "transaction_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(10, 2), nullable=False)

    def to_dict(self) -> dict:
        return {
            "productId": self.product_id,
            "productName": self.product_name,
            "quantity": self.quantity,
            "unitPrice": str(self.unit_price),
            "subtotal": str(self.unit_price * self.quantity),
        }
