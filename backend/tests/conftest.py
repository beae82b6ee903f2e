"""
Pytest fixtures for ShopPad backend tests.

Provides an in-memory database, a test client, shopper/catalog/cart
factories and deterministic payment gateways.
"""

from decimal import Decimal

import pytest
from shoppad import create_app
from shoppad.extensions import db
from shoppad.models import User, Product, CartItem, PaymentMethod
from shoppad.services import token_service
from shoppad.services.auth_service import hash_password
from shoppad.services.payment_simulator import (
    FixedDecisionGateway,
    DECISION_APPROVED,
    DECISION_DECLINED,
    set_gateway,
)


TEST_PASSWORD = "secret123"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test',
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'CORS_ALLOWED_ORIGINS': ['http://localhost:5173'],
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        # Deterministic payments unless a test asks otherwise
        set_gateway(app, FixedDecisionGateway(DECISION_APPROVED))

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def approving_gateway(app, db_session):
    gateway = FixedDecisionGateway(DECISION_APPROVED)
    set_gateway(app, gateway)
    return gateway


@pytest.fixture(scope='function')
def declining_gateway(app, db_session):
    gateway = FixedDecisionGateway(DECISION_DECLINED)
    set_gateway(app, gateway)
    return gateway


@pytest.fixture(scope='function')
def payment_methods(db_session):
    """Card (first by display order) and wallet."""
    card = PaymentMethod(code="card", name="Card", icon="credit-card", enabled=True, display_order=1)
    wallet = PaymentMethod(code="wallet", name="Wallet", icon="smartphone", enabled=True, display_order=2)
    db_session.add_all([card, wallet])
    db_session.commit()
    return {"card": card, "wallet": wallet}


def make_user(db_session, name: str, phone: str, nfc_uid: str | None = None) -> User:
    """Helper to insert a shopper with the shared test password."""
    user = User(
        name=name,
        phone=phone,
        password_hash=hash_password(TEST_PASSWORD),
        nfc_uid=nfc_uid,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def alice(db_session):
    return make_user(db_session, "Alice", "0111111111")


@pytest.fixture(scope='function')
def bob(db_session):
    return make_user(db_session, "Bob", "0122222222")


@pytest.fixture(scope='function')
def products(db_session):
    """Prices chosen so that sums are not exact in binary floating point."""
    items = [
        Product(name="Milk", price=Decimal("0.10"), barcode="1001", category="Dairy"),
        Product(name="Bread", price=Decimal("0.20"), barcode="1002", category="Bakery"),
        Product(name="Coffee", price=Decimal("7.85"), barcode="1003", category="Pantry"),
    ]
    db_session.add_all(items)
    db_session.commit()
    return items


def fill_cart(db_session, user: User, lines) -> None:
    """Helper to put (product, quantity) lines into a shopper's cart."""
    for product, quantity in lines:
        db_session.add(CartItem(user_id=user.id, product_id=product.id, quantity=quantity))
    db_session.commit()


@pytest.fixture(scope='function')
def alice_cart(db_session, alice, products, payment_methods):
    """Alice's cart: 3 x 0.10 + 1 x 0.20 + 2 x 7.85 = 16.20."""
    milk, bread, coffee = products
    fill_cart(db_session, alice, [(milk, 3), (bread, 1), (coffee, 2)])
    return alice


def issue_token(user: User) -> str:
    """Helper to mint a bearer token for a user."""
    _, token = token_service.mint(user.id)
    return token


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def alice_headers(alice):
    return auth_headers(issue_token(alice))


@pytest.fixture(scope='function')
def bob_headers(bob):
    return auth_headers(issue_token(bob))
