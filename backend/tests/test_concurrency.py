"""
Concurrency tests against a file-backed SQLite database.

Verifies:
- Many pollers racing on one authorized QR session redeem it exactly once
- Simultaneous taps of one card charge the cart exactly once

Each worker thread runs in its own app context, so it gets its own session
and its own pooled connection.
"""

import threading
from decimal import Decimal

import pytest

from shoppad import create_app
from shoppad.extensions import db
from shoppad.models import Transaction, NFCEvent, NFCPaymentLock, Product, PaymentMethod
from shoppad.models.nfc import NFC_EVENT_PAYMENT_SUCCESS
from shoppad.services import qr_session_service, nfc_link_service, nfc_service
from shoppad.services.errors import ConflictError, EmptyInputError
from shoppad.services.payment_simulator import FixedDecisionGateway, DECISION_APPROVED

from conftest import make_user, fill_cart


WORKERS = 8
CARD = "04C0FFEE"


@pytest.fixture(scope='function')
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test',
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'race.sqlite3'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {"connect_args": {"timeout": 30}},
    })

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _run_together(app, target):
    """Start WORKERS threads that call target() at the same moment."""
    barrier = threading.Barrier(WORKERS)
    results = []
    errors = []
    lock = threading.Lock()

    def worker():
        with app.app_context():
            try:
                barrier.wait(timeout=10)
                result = target()
                with lock:
                    results.append(result)
            except Exception as exc:
                with lock:
                    errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker) for _ in range(WORKERS)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    return results, errors


class TestQRRedemptionRace:

    def test_one_poller_redeems(self, file_app):
        with file_app.app_context():
            user = make_user(db.session, "Racer", "0155555555")
            user_id = user.id
            session = qr_session_service.create()
            session_id = session.id
            assert qr_session_service.authorize(session_id, user_id)

        results, errors = _run_together(
            file_app, lambda: qr_session_service.consume_if_authorized(session_id)
        )

        assert errors == []
        assert results.count(user_id) == 1
        assert results.count(None) == WORKERS - 1


class TestTapRace:

    def test_simultaneous_taps_charge_once(self, file_app):
        with file_app.app_context():
            db.session.add(PaymentMethod(code="card", name="Card", icon="credit-card", enabled=True, display_order=1))
            coffee = Product(name="Coffee", price=Decimal("7.85"), barcode="2001", category="Pantry")
            water = Product(name="Water", price=Decimal("4.14"), barcode="2002", category="Drinks")
            db.session.add_all([coffee, water])
            db.session.commit()

            user = make_user(db.session, "Tapper", "0166666666")
            fill_cart(db.session, user, [(coffee, 2), (water, 1)])
            nfc_link_service.link(user.id, CARD)

        gateway = FixedDecisionGateway(DECISION_APPROVED)
        results, errors = _run_together(
            file_app, lambda: nfc_service.trigger_payment(CARD, gateway=gateway)
        )

        # Losers either hit the held lock or arrive after the cart was cleared
        assert len(results) == 1
        assert len(errors) == WORKERS - 1
        for exc in errors:
            assert isinstance(exc, (ConflictError, EmptyInputError)), repr(exc)
            assert exc.code in ("NFC_PAYMENT_IN_PROGRESS", "CART_EMPTY")

        assert len(gateway.seen) == 1

        with file_app.app_context():
            transactions = db.session.query(Transaction).all()
            assert len(transactions) == 1
            assert transactions[0].total == Decimal("19.84")
            assert db.session.query(NFCEvent).filter_by(event=NFC_EVENT_PAYMENT_SUCCESS).count() == 1
            assert db.session.query(NFCPaymentLock).count() == 0
