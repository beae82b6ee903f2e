"""
Checkout ledger tests.

Verifies:
- Totals are exact decimal sums rounded once to cents
- A transaction is written with all of its items or not at all
- Terminal transitions happen once; retries are no-ops
- The cart is cleared only after a completed payment
- Transactions are readable by their owner only
"""

import logging
from decimal import Decimal

import pytest

from shoppad.models import Transaction, TransactionItem, CartItem, PaymentMethod
from shoppad.models.sales import (
    TXN_STATUS_PENDING,
    TXN_STATUS_COMPLETED,
    TXN_STATUS_FAILED,
    TXN_STATUS_CANCELLED,
)
from shoppad.services import checkout_service, cart_service
from shoppad.services.errors import EmptyInputError, ForbiddenError, NotFoundError
from shoppad.services.payment_simulator import PaymentGateway, DECISION_APPROVED

from conftest import fill_cart


class ExplodingGateway(PaymentGateway):
    def authorize(self, transaction) -> str:
        raise RuntimeError("gateway unreachable")


class LateApprovalGateway(PaymentGateway):
    """Approves, but only after the pending row was swept to failed."""

    def authorize(self, transaction) -> str:
        checkout_service.fail(transaction.id)
        return DECISION_APPROVED


# =============================================================================
# LEDGER
# =============================================================================


class TestCreateFromCart:

    def test_total_is_exact(self, db_session, alice_cart, payment_methods):
        txn = checkout_service.create_from_cart(alice_cart.id, payment_methods["card"].id)
        assert txn.status == TXN_STATUS_PENDING
        assert txn.total == Decimal("16.20")
        assert [(i.product_name, i.quantity) for i in txn.items] == [("Milk", 3), ("Bread", 1), ("Coffee", 2)]

    def test_tenths_sum_without_float_drift(self, db_session, alice, products, payment_methods):
        milk, bread, _ = products
        fill_cart(db_session, alice, [(milk, 1), (bread, 1)])
        txn = checkout_service.create_from_cart(alice.id, payment_methods["card"].id)
        assert txn.total == Decimal("0.30")

    def test_prices_are_snapshotted(self, db_session, alice_cart, payment_methods, products):
        txn = checkout_service.create_from_cart(alice_cart.id, payment_methods["card"].id)
        products[2].price = Decimal("99.99")
        db_session.commit()
        db_session.expire_all()

        coffee_line = [i for i in txn.items if i.product_name == "Coffee"][0]
        assert coffee_line.unit_price == Decimal("7.85")

    def test_cart_left_alone(self, db_session, alice_cart, payment_methods):
        checkout_service.create_from_cart(alice_cart.id, payment_methods["card"].id)
        assert cart_service.has_items(alice_cart.id)

    def test_empty_cart(self, db_session, alice, payment_methods):
        with pytest.raises(EmptyInputError) as exc:
            checkout_service.create_from_cart(alice.id, payment_methods["card"].id)
        assert exc.value.code == "CART_EMPTY"
        assert db_session.query(Transaction).count() == 0

    def test_item_failure_leaves_nothing(self, db_session, alice_cart, payment_methods, monkeypatch):
        calls = {"n": 0}
        original = checkout_service._snapshot_line

        def flaky(transaction_id, line):
            calls["n"] += 1
            if calls["n"] == 2:
                raise RuntimeError("disk full")
            return original(transaction_id, line)

        monkeypatch.setattr(checkout_service, "_snapshot_line", flaky)

        with pytest.raises(RuntimeError):
            checkout_service.create_from_cart(alice_cart.id, payment_methods["card"].id)

        db_session.expire_all()
        assert db_session.query(Transaction).count() == 0
        assert db_session.query(TransactionItem).count() == 0
        assert db_session.query(CartItem).filter_by(user_id=alice_cart.id).count() == 3


class TestTransitions:

    def test_complete_once(self, db_session, alice_cart, payment_methods):
        txn = checkout_service.create_from_cart(alice_cart.id, payment_methods["card"].id)
        first = checkout_service.complete(txn.id)
        completed_at = first.completed_at
        assert first.status == TXN_STATUS_COMPLETED

        again = checkout_service.complete(txn.id)
        assert again.status == TXN_STATUS_COMPLETED
        assert again.completed_at == completed_at

    def test_terminal_state_is_final(self, db_session, alice_cart, payment_methods):
        txn = checkout_service.create_from_cart(alice_cart.id, payment_methods["card"].id)
        checkout_service.fail(txn.id)

        assert checkout_service.complete(txn.id).status == TXN_STATUS_FAILED
        assert checkout_service.cancel(txn.id).status == TXN_STATUS_FAILED

    def test_cancel(self, db_session, alice_cart, payment_methods):
        txn = checkout_service.create_from_cart(alice_cart.id, payment_methods["card"].id)
        assert checkout_service.cancel(txn.id).status == TXN_STATUS_CANCELLED
        assert checkout_service.cancel(txn.id).status == TXN_STATUS_CANCELLED

    def test_unknown_transaction(self, db_session):
        with pytest.raises(NotFoundError):
            checkout_service.complete(424242)


# =============================================================================
# PIPELINE
# =============================================================================


class TestCheckoutPipeline:

    def test_approved_clears_cart(self, db_session, alice_cart, approving_gateway):
        outcome = checkout_service.checkout(alice_cart.id)
        assert outcome.approved
        assert outcome.transaction.status == TXN_STATUS_COMPLETED
        assert outcome.transaction.completed_at is not None
        assert approving_gateway.seen == [outcome.transaction.id]
        assert not cart_service.has_items(alice_cart.id)

    def test_declined_keeps_cart(self, db_session, alice_cart, declining_gateway):
        outcome = checkout_service.checkout(alice_cart.id)
        assert not outcome.approved
        assert outcome.transaction.status == TXN_STATUS_FAILED
        assert cart_service.has_items(alice_cart.id)

    def test_gateway_error_fails_transaction(self, db_session, alice_cart):
        outcome = checkout_service.checkout(alice_cart.id, gateway=ExplodingGateway())
        assert outcome.gateway_error
        assert outcome.transaction.status == TXN_STATUS_FAILED
        assert db_session.query(Transaction).filter_by(status=TXN_STATUS_PENDING).count() == 0
        assert cart_service.has_items(alice_cart.id)

    def test_cart_not_cleared_if_complete_fails(self, db_session, alice_cart, monkeypatch):
        def broken_complete(transaction_id):
            raise RuntimeError("database went away")

        monkeypatch.setattr(checkout_service, "complete", broken_complete)
        with pytest.raises(RuntimeError):
            checkout_service.checkout(alice_cart.id)
        assert cart_service.has_items(alice_cart.id)

    def test_late_approval_on_swept_transaction(self, db_session, alice_cart, caplog):
        with caplog.at_level(logging.INFO, logger="shoppad.services.checkout_service"):
            outcome = checkout_service.checkout(alice_cart.id, gateway=LateApprovalGateway())

        assert not outcome.approved
        assert outcome.transaction.status == TXN_STATUS_FAILED
        assert cart_service.has_items(alice_cart.id)

        messages = [r.getMessage() for r in caplog.records]
        assert any("already failed" in m and "void or refund" in m for m in messages)
        assert not any("completed for user" in m for m in messages)

    def test_preferred_method_used(self, db_session, alice_cart, payment_methods):
        alice_cart.preferred_payment_method_id = payment_methods["wallet"].id
        db_session.commit()

        outcome = checkout_service.checkout(alice_cart.id)
        assert outcome.transaction.payment_method_id == payment_methods["wallet"].id

    def test_first_enabled_method_is_default(self, db_session, alice_cart, payment_methods):
        outcome = checkout_service.checkout(alice_cart.id)
        assert outcome.transaction.payment_method_id == payment_methods["card"].id

    def test_disabled_method_rejected(self, db_session, alice_cart, payment_methods):
        payment_methods["wallet"].enabled = False
        db_session.commit()
        with pytest.raises(EmptyInputError) as exc:
            checkout_service.checkout(alice_cart.id, payment_method_id=payment_methods["wallet"].id)
        assert exc.value.code == "INVALID_PAYMENT_METHOD"

    def test_no_methods_configured(self, db_session, alice, products):
        fill_cart(db_session, alice, [(products[0], 1)])
        db_session.query(PaymentMethod).delete()
        db_session.commit()
        with pytest.raises(EmptyInputError) as exc:
            checkout_service.checkout(alice.id)
        assert exc.value.code == "NO_PAYMENT_METHOD"


# =============================================================================
# OWNERSHIP
# =============================================================================


class TestOwnership:

    def test_owner_reads(self, db_session, alice_cart):
        txn = checkout_service.checkout(alice_cart.id).transaction
        assert checkout_service.get_for_user(txn.id, alice_cart.id).id == txn.id

    def test_other_user_forbidden(self, db_session, alice_cart, bob):
        txn = checkout_service.checkout(alice_cart.id).transaction
        with pytest.raises(ForbiddenError):
            checkout_service.get_for_user(txn.id, bob.id)

    def test_unknown_id_forbidden(self, db_session, bob):
        with pytest.raises(ForbiddenError):
            checkout_service.get_for_user(999999, bob.id)


# =============================================================================
# HTTP
# =============================================================================


class TestCheckoutRoutes:

    def test_checkout_success(self, client, db_session, alice_cart, alice_headers):
        resp = client.post("/api/checkout", json={}, headers=alice_headers)
        assert resp.status_code == 200
        txn = resp.json["transaction"]
        assert txn["status"] == TXN_STATUS_COMPLETED
        assert txn["total"] == "16.20"
        assert txn["itemCount"] == 6
        assert len(txn["items"]) == 3

        db_session.expire_all()
        assert not cart_service.has_items(alice_cart.id)

    def test_checkout_declined_is_402(self, client, db_session, alice_cart, alice_headers, declining_gateway):
        resp = client.post("/api/checkout", json={}, headers=alice_headers)
        assert resp.status_code == 402
        assert resp.json["code"] == "PAYMENT_DECLINED"
        assert resp.json["transaction"]["status"] == TXN_STATUS_FAILED

    def test_checkout_empty_cart(self, client, db_session, alice, payment_methods, alice_headers):
        resp = client.post("/api/checkout", json={}, headers=alice_headers)
        assert resp.status_code == 400
        assert resp.json["code"] == "CART_EMPTY"

    def test_checkout_requires_auth(self, client, db_session):
        assert client.post("/api/checkout", json={}).status_code == 401

    def test_payment_methods(self, client, db_session, payment_methods):
        resp = client.get("/api/checkout/payment-methods")
        assert resp.status_code == 200
        assert [m["code"] for m in resp.json["paymentMethods"]] == ["card", "wallet"]

    def test_history_and_detail(self, client, db_session, alice_cart, alice_headers, bob_headers):
        client.post("/api/checkout", json={}, headers=alice_headers)

        history = client.get("/api/checkout/history", headers=alice_headers)
        assert history.status_code == 200
        assert history.json["total"] == 1
        txn_id = history.json["transactions"][0]["id"]

        own = client.get(f"/api/checkout/history/{txn_id}", headers=alice_headers)
        assert own.status_code == 200
        assert own.json["transaction"]["items"]

        other = client.get(f"/api/checkout/history/{txn_id}", headers=bob_headers)
        missing = client.get("/api/checkout/history/999999", headers=bob_headers)
        assert other.status_code == 403
        assert missing.status_code == 403
        assert other.json == missing.json

        assert client.get("/api/checkout/history", headers=bob_headers).json["total"] == 0

    def test_history_filters(self, client, db_session, alice_cart, alice_headers):
        resp = client.get("/api/checkout/history?status=bogus", headers=alice_headers)
        assert resp.status_code == 400
        resp = client.get("/api/checkout/history?limit=abc", headers=alice_headers)
        assert resp.status_code == 400

    def test_stats(self, client, db_session, alice_cart, alice_headers, app, products):
        client.post("/api/checkout", json={}, headers=alice_headers)

        fill_cart(db_session, alice_cart, [(products[0], 1)])
        from shoppad.services.payment_simulator import set_gateway, FixedDecisionGateway, DECISION_DECLINED
        set_gateway(app, FixedDecisionGateway(DECISION_DECLINED))
        client.post("/api/checkout", json={}, headers=alice_headers)

        stats = client.get("/api/checkout/stats", headers=alice_headers).json
        assert stats == {
            "totalTransactions": 2,
            "totalSpent": "16.20",
            "completedCount": 1,
            "failedCount": 1,
        }


class TestCart:

    def test_add_item_merges_lines(self, db_session, alice, products):
        milk = products[0]
        cart_service.add_item(alice.id, milk.id, 2)
        item = cart_service.add_item(alice.id, milk.id, 3)
        assert item.quantity == 5
        assert len(cart_service.get_items(alice.id)) == 1

    def test_add_item_validates(self, db_session, alice, products):
        with pytest.raises(EmptyInputError):
            cart_service.add_item(alice.id, products[0].id, 0)
        with pytest.raises(NotFoundError):
            cart_service.add_item(alice.id, 999999)

    def test_clear(self, db_session, alice_cart):
        assert cart_service.clear(alice_cart.id) == 3
        assert not cart_service.has_items(alice_cart.id)
