# Overview: The single payment decision point; swappable for a real gateway.

"""
Payment Decision Seam

WHY: Settlement is simulated. Checkout and tap-to-pay only talk to a
gateway object with one method, authorize(transaction), so a real provider
can replace the coin flip without touching the ledger or the NFC router.

The gateway receives the whole transaction (not just the amount) so a real
implementation can apply per-payment-method rules.
"""

import random

from flask import current_app


DECISION_APPROVED = "approved"
DECISION_DECLINED = "declined"

DEFAULT_APPROVAL_RATE = 0.9


class PaymentGateway:
    """Interface. Implementations return DECISION_APPROVED or DECISION_DECLINED."""

    def authorize(self, transaction) -> str:
        raise NotImplementedError


class RandomPaymentSimulator(PaymentGateway):
    """Approves with probability `approval_rate`."""

    def __init__(self, approval_rate: float = DEFAULT_APPROVAL_RATE, rng: random.Random | None = None):
        if not 0.0 <= approval_rate <= 1.0:
            raise ValueError("approval_rate must be between 0 and 1")
        self.approval_rate = approval_rate
        self._rng = rng or random.Random()

    def authorize(self, transaction) -> str:
        if self._rng.random() < self.approval_rate:
            return DECISION_APPROVED
        return DECISION_DECLINED


class FixedDecisionGateway(PaymentGateway):
    """Always returns the same decision. Demos and tests."""

    def __init__(self, decision: str):
        if decision not in (DECISION_APPROVED, DECISION_DECLINED):
            raise ValueError(f"Unknown decision: {decision}")
        self.decision = decision
        self.seen = []

    def authorize(self, transaction) -> str:
        self.seen.append(transaction.id)
        return self.decision


def init_app(app) -> None:
    """Install the configured gateway unless one was provided already."""
    if "payment_gateway" not in app.extensions:
        rate = app.config.get("PAYMENT_APPROVAL_RATE", DEFAULT_APPROVAL_RATE)
        app.extensions["payment_gateway"] = RandomPaymentSimulator(approval_rate=rate)


def get_gateway() -> PaymentGateway:
    return current_app.extensions["payment_gateway"]


def set_gateway(app, gateway: PaymentGateway) -> None:
    app.extensions["payment_gateway"] = gateway
