# Overview: Payment intents for invoices and subscription checkout.

from __future__ import annotations

import logging

from ..errors import InvalidStateTransitionError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Invoice, Subscription
from ..policy import Action, Actor, require
from ..validation import coerce_int
from . import invoice_service, subscription_service
from .payment_gateway import PaymentIntent, current_gateway


logger = logging.getLogger(__name__)


def pay_invoice(actor: Actor, invoice_id: int) -> tuple[PaymentIntent, Invoice]:
    """
    Open a gateway intent for the invoice total. On success the invoice is
    settled through mark_invoice_as_paid with the intent id as reference.
    """
    invoice = db.session.get(Invoice, invoice_id)
    if not invoice:
        raise NotFoundError("Invoice not found")
    require(Action.INVOICE_PAY, actor, invoice)
    if invoice.status == "paid":
        raise InvalidStateTransitionError("Invoice is already paid")
    if invoice.total_cents <= 0:
        raise ValidationError("Invoice total must be greater than zero")

    gateway = current_gateway()
    intent = gateway.create_payment_intent(
        invoice.total_cents,
        metadata={"invoice_id": invoice.id, "invoice_number": invoice.invoice_number, "user_id": actor.id},
    )

    def _settle(paid_intent: PaymentIntent) -> Invoice:
        return invoice_service.mark_invoice_as_paid(invoice.id, gateway.name, paid_intent.id)

    settled = gateway.on_success(intent, _settle)
    return intent, settled or invoice


def checkout_subscription(actor: Actor, payload: dict) -> tuple[PaymentIntent, Subscription | None]:
    """
    Charge a plan price through the gateway, then activate the subscription.
    """
    if payload.get("subscription_id") not in (None, ""):
        sub = subscription_service.get_subscription(coerce_int("subscription_id", payload["subscription_id"]))
        require(Action.SUBSCRIPTION_CREATE, actor, sub)
        plan = sub.plan
    else:
        _, plan = subscription_service.resolve_subscription_target(actor, payload)

    gateway = current_gateway()
    intent = gateway.create_payment_intent(
        plan.price_cents,
        metadata={"plan_id": plan.id, "user_id": actor.id},
    )

    def _activate(paid_intent: PaymentIntent) -> Subscription:
        return subscription_service.activate_paid_subscription(actor, payload, paid_intent.id)

    sub = gateway.on_success(intent, _activate)
    return intent, sub


def create_payment_intent(actor: Actor, payload: dict) -> dict:
    """
    POST /api/create-payment-intent entry point. The payload names either an
    invoice_id or a plan (plan_id / subscription_id).
    """
    if payload.get("invoice_id") not in (None, ""):
        intent, invoice = pay_invoice(actor, coerce_int("invoice_id", payload["invoice_id"]))
        return {"payment_intent": intent.to_dict(), "invoice": invoice.to_dict()}

    if payload.get("plan_id") in (None, "") and payload.get("subscription_id") in (None, ""):
        raise ValidationError("invoice_id or plan_id is required")

    intent, sub = checkout_subscription(actor, payload)
    return {"payment_intent": intent.to_dict(), "subscription": sub.to_dict() if sub else None}
