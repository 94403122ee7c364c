# Overview: Payment gateway strategy. The app factory builds one and stores it on the app.

"""
Payment gateway abstraction.

A gateway creates payment intents and notifies the caller once an intent
succeeds. SimulatedGateway succeeds immediately and synchronously; a real
provider would defer on_success until its webhook arrives.
"""

from __future__ import annotations

import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable

from flask import current_app


logger = logging.getLogger(__name__)


@dataclass
class PaymentIntent:
    id: str
    amount_cents: int
    currency: str
    status: str
    client_secret: str
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "status": self.status,
            "client_secret": self.client_secret,
            "metadata": dict(self.metadata),
        }


SuccessCallback = Callable[[PaymentIntent], object]


class PaymentGateway(ABC):
    name = "abstract"

    def __init__(self, *, currency: str = "usd"):
        self.currency = currency

    @abstractmethod
    def create_payment_intent(self, amount_cents: int, *, metadata: dict | None = None) -> PaymentIntent:
        """Open an intent for amount_cents in the gateway's currency."""

    @abstractmethod
    def on_success(self, intent: PaymentIntent, callback: SuccessCallback):
        """Arrange for callback(intent) to run once the intent has succeeded."""


class SimulatedGateway(PaymentGateway):
    """In-process gateway for development and tests. Every intent succeeds."""

    name = "simulated"

    def create_payment_intent(self, amount_cents: int, *, metadata: dict | None = None) -> PaymentIntent:
        intent_id = f"sim_pi_{secrets.token_hex(12)}"
        intent = PaymentIntent(
            id=intent_id,
            amount_cents=amount_cents,
            currency=self.currency,
            status="succeeded",
            client_secret=f"{intent_id}_secret_{secrets.token_hex(8)}",
            metadata=dict(metadata or {}),
        )
        logger.info("Simulated payment intent %s for %d %s", intent.id, amount_cents, self.currency)
        return intent

    def on_success(self, intent: PaymentIntent, callback: SuccessCallback):
        if intent.status != "succeeded":
            return None
        return callback(intent)


GATEWAYS: dict[str, type[PaymentGateway]] = {
    SimulatedGateway.name: SimulatedGateway,
}


def build_gateway(config) -> PaymentGateway:
    name = config.get("PAYMENT_GATEWAY", "simulated")
    try:
        gateway_cls = GATEWAYS[name]
    except KeyError:
        raise ValueError(f"Unknown PAYMENT_GATEWAY '{name}'. Available: {', '.join(sorted(GATEWAYS))}")
    return gateway_cls(currency=config.get("CURRENCY", "usd"))


def current_gateway() -> PaymentGateway:
    return current_app.extensions["payment_gateway"]
