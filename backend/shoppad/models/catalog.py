from __future__ import annotations

from ..extensions import db
from shoppad.time_utils import to_utc_z


class Product(db.Model):
    """Catalog product. Only the fields checkout snapshots are modelled."""
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    barcode = db.Column(db.String(64), nullable=True, unique=True)
    category = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "price": str(self.price),
            "barcode": self.barcode,
            "category": self.category,
        }


class CartItem(db.Model):
    """Server-side cart line. One row per (user, product)."""
    __tablename__ = "user_carts"
    __table_args__ = (
        db.UniqueConstraint("user_id", "product_id", name="uq_user_carts_user_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    added_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "productId": self.product_id,
            "quantity": self.quantity,
            "addedAt": to_utc_z(self.added_at),
        }


class PaymentMethod(db.Model):
    """Tender offered at checkout (card, wallet, ...). Settlement is simulated."""
    __tablename__ = "payment_methods"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True)
    name = db.Column(db.String(64), nullable=False)
    icon = db.Column(db.String(64), nullable=True)
    enabled = db.Column(db.Boolean, nullable=False, default=True)
    display_order = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "icon": self.icon,
            "enabled": self.enabled,
            "displayOrder": self.display_order,
        }
