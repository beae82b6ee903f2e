# Overview: Service-layer operations for the server-side cart; encapsulates business logic and database work.

"""
Cart access used by checkout.

The cart is only read (snapshotted) and cleared here; editing it belongs to
the catalog UI.
"""

from ..extensions import db
from ..models import CartItem, Product
from .errors import EmptyInputError, NotFoundError


def get_items(user_id: int) -> list[CartItem]:
    """Cart lines with their products, oldest first (stable line order)."""
    return (
        db.session.query(CartItem)
        .join(Product, CartItem.product_id == Product.id)
        .filter(CartItem.user_id == user_id)
        .order_by(CartItem.id)
        .all()
    )


def has_items(user_id: int) -> bool:
    return db.session.query(CartItem.id).filter_by(user_id=user_id).first() is not None


def add_item(user_id: int, product_id: int, quantity: int = 1) -> CartItem:
    """Add quantity of a product, merging into an existing line."""
    if quantity <= 0:
        raise EmptyInputError("Quantity must be positive", code="INVALID_QUANTITY")

    if not db.session.get(Product, product_id):
        raise NotFoundError("Product not found", code="PRODUCT_NOT_FOUND")

    item = db.session.query(CartItem).filter_by(user_id=user_id, product_id=product_id).first()
    if item:
        item.quantity += quantity
    else:
        item = CartItem(user_id=user_id, product_id=product_id, quantity=quantity)
        db.session.add(item)

    db.session.commit()
    return item


def clear(user_id: int) -> int:
    """Remove every line. Returns count removed."""
    deleted = db.session.query(CartItem).filter_by(user_id=user_id).delete(synchronize_session=False)
    db.session.commit()
    return deleted
