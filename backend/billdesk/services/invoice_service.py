# Overview: Invoice creation (direct or from an accepted quote), status changes and payment.

"""
Invoice lifecycle.

STATE MACHINE: pending -> {paid, overdue}, overdue -> paid. Paid is terminal.

RULES:
- mark_invoice_as_paid is the only code path that sets 'paid'; it stamps
  paid_date, payment_method and payment_reference together.
- A quote converts to at most one invoice, and only once accepted. Items
  and the discount amount are copied verbatim; the rest of the totals are
  recomputed from them.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Any

from flask import current_app

from ..errors import InvalidStateTransitionError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Invoice, Quote, User
from ..policy import Action, Actor, can, require
from ..time_utils import days_from_now, parse_iso_datetime, utcnow
from ..validation import coerce_int, coerce_percent
from . import discount_service, numbering_service, pricing_service
from .concurrency import lock_for_update, run_with_retry


logger = logging.getLogger(__name__)

INVOICE_STATUSES = ("pending", "paid", "overdue")

ALLOWED_TRANSITIONS = {
    "pending": {"paid", "overdue"},
    "overdue": {"paid"},
    "paid": set(),
}


def _due_date(raw: Any) -> datetime:
    if raw in (None, ""):
        return days_from_now(current_app.config.get("INVOICE_DUE_DAYS", 30))
    try:
        parsed = parse_iso_datetime(str(raw))
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError("due_date must be an ISO-8601 date")
    return parsed


def _vat_percent(raw: Any):
    if raw is None:
        raw = current_app.config.get("DEFAULT_VAT_PERCENT", 5)
    return coerce_percent("vat_percent", raw)


def create_invoice(actor: Actor, payload: dict) -> Invoice:
    """Direct invoice, or a conversion when the payload names a quote_id."""
    require(Action.INVOICE_CREATE, actor)

    if payload.get("quote_id") not in (None, ""):
        return create_from_quote(actor, coerce_int("quote_id", payload["quote_id"]), payload)

    if payload.get("user_id") in (None, ""):
        raise ValidationError("user_id is required")
    customer = db.session.get(User, coerce_int("user_id", payload["user_id"]))
    if not customer:
        raise NotFoundError("Customer not found")

    items = pricing_service.normalize_items(payload.get("items"))
    discount_percent, discount_amount = discount_service.parse_optional_discount(payload)
    totals = pricing_service.compute_totals(
        items,
        discount_percent or 0,
        _vat_percent(payload.get("vat_percent")),
        discount_amount_cents=discount_amount,
    )
    due_date = _due_date(payload.get("due_date"))

    def _op() -> Invoice:
        invoice = Invoice(
            user_id=customer.id,
            invoice_number=numbering_service.next_invoice_number(),
            status="pending",
            items=items,
            due_date=due_date,
            notes=payload.get("notes"),
        )
        pricing_service.apply_totals(invoice, totals)
        db.session.add(invoice)
        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    logger.info("Invoice %s created by user %s", invoice.invoice_number, actor.id)
    return invoice


def create_from_quote(actor: Actor, quote_id: int, payload: dict | None = None) -> Invoice:
    require(Action.QUOTE_CONVERT, actor)
    payload = payload or {}
    due_date = _due_date(payload.get("due_date"))

    def _op() -> Invoice:
        quote = lock_for_update(db.session.query(Quote).filter(Quote.id == quote_id)).first()
        if not quote:
            raise NotFoundError("Quote not found")
        if quote.status != "accepted":
            raise InvalidStateTransitionError("Only accepted quotes can be converted to invoices")
        if db.session.query(Invoice.id).filter(Invoice.quote_id == quote.id).first():
            raise InvalidStateTransitionError("Quote has already been invoiced")

        items = [dict(item) for item in (quote.items or [])]
        invoice = Invoice(
            user_id=quote.user_id,
            quote_id=quote.id,
            invoice_number=numbering_service.next_invoice_number(),
            status="pending",
            items=items,
            due_date=due_date,
            notes=payload.get("notes", quote.notes),
        )
        totals = pricing_service.compute_totals(
            items, vat_percent=quote.vat_percent, discount_amount_cents=quote.discount_amount_cents
        )
        # Keep the quote's percent; the amount derived it, not the other way round
        pricing_service.apply_totals(invoice, replace(totals, discount_percent=quote.discount_percent))
        db.session.add(invoice)
        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    logger.info("Quote %s converted to invoice %s", quote_id, invoice.invoice_number)
    return invoice


def list_invoices(actor: Actor, *, status: str | None = None, user_id: int | None = None) -> list[Invoice]:
    query = db.session.query(Invoice)
    if can(Action.INVOICE_LIST_ANY, actor):
        if user_id is not None:
            query = query.filter(Invoice.user_id == user_id)
    else:
        query = query.filter(Invoice.user_id == actor.id)

    if status:
        if status not in INVOICE_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(INVOICE_STATUSES)}")
        query = query.filter(Invoice.status == status)
    return query.order_by(Invoice.created_at.desc(), Invoice.id.desc()).all()


def get_invoice(actor: Actor, invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if not invoice:
        raise NotFoundError("Invoice not found")
    require(Action.INVOICE_VIEW, actor, invoice)
    return invoice


def _check_transition(invoice: Invoice, new_status: str) -> None:
    if new_status == invoice.status:
        raise InvalidStateTransitionError(f"Invoice is already {invoice.status}")
    if new_status not in ALLOWED_TRANSITIONS.get(invoice.status, set()):
        raise InvalidStateTransitionError(f"Cannot move a {invoice.status} invoice to {new_status}")


def mark_invoice_as_paid(
    invoice_id: int,
    payment_method: Any,
    payment_reference: str | None = None,
) -> Invoice:
    """
    Settle an invoice. Callers (status endpoint, gateway callback) are
    responsible for authorization.
    """
    payment_method = str(payment_method or "").strip()
    if not payment_method:
        raise ValidationError("payment_method is required")

    def _op() -> Invoice:
        invoice = lock_for_update(db.session.query(Invoice).filter(Invoice.id == invoice_id)).first()
        if not invoice:
            raise NotFoundError("Invoice not found")
        _check_transition(invoice, "paid")

        invoice.status = "paid"
        invoice.paid_date = utcnow()
        invoice.payment_method = payment_method
        invoice.payment_reference = payment_reference
        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    logger.info("Invoice %s paid via %s", invoice.invoice_number, payment_method)
    return invoice


def update_status(
    actor: Actor,
    invoice_id: int,
    new_status: Any,
    *,
    payment_method: Any = None,
    payment_reference: str | None = None,
) -> Invoice:
    require(Action.INVOICE_SET_STATUS, actor)
    new_status = str(new_status or "").strip().lower()
    if new_status not in INVOICE_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(INVOICE_STATUSES)}")

    if new_status == "paid":
        return mark_invoice_as_paid(invoice_id, payment_method or "manual", payment_reference)

    def _op() -> Invoice:
        invoice = lock_for_update(db.session.query(Invoice).filter(Invoice.id == invoice_id)).first()
        if not invoice:
            raise NotFoundError("Invoice not found")
        _check_transition(invoice, new_status)
        invoice.status = new_status
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def mark_overdue_invoices(now: datetime | None = None) -> int:
    """Flag pending invoices past their due date. Returns the count."""
    now = now or utcnow()
    invoices = (
        db.session.query(Invoice)
        .filter(Invoice.status == "pending", Invoice.due_date < now)
        .all()
    )
    for invoice in invoices:
        invoice.status = "overdue"
    db.session.commit()
    return len(invoices)
