# Overview: Quote creation, listing, status transitions and discounts.

"""
Quote lifecycle.

STATE MACHINE: pending -> {accepted, rejected, expired}

TRANSITION RULES:
- customer (owner only): pending -> accepted | rejected
- sales / finance: pending -> any terminal state
- admin: any change, including out of a terminal state
- Re-entering the current status is always refused.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from flask import current_app

from ..errors import AuthorizationError, InvalidStateTransitionError, NotFoundError, ValidationError
from ..extensions import db
from ..models import DiscountRequest, Quote, User
from ..policy import Action, Actor, Role, can, require
from ..time_utils import days_from_now, parse_iso_datetime, utcnow
from ..validation import coerce_cents, coerce_int, coerce_percent
from . import discount_service, numbering_service, pricing_service
from .concurrency import lock_for_update, run_with_retry


logger = logging.getLogger(__name__)

QUOTE_STATUSES = ("pending", "accepted", "rejected", "expired")
TERMINAL_STATUSES = ("accepted", "rejected", "expired")
CUSTOMER_RESPONSES = ("accepted", "rejected")


def _load(quote_id: int) -> Quote:
    quote = db.session.get(Quote, quote_id)
    if not quote:
        raise NotFoundError("Quote not found")
    return quote


def _expiry(raw: Any) -> datetime:
    if raw in (None, ""):
        return days_from_now(current_app.config.get("QUOTE_VALIDITY_DAYS", 30))
    try:
        parsed = parse_iso_datetime(str(raw))
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError("expiry_date must be an ISO-8601 date")
    return parsed


def create_quote(actor: Actor, payload: dict) -> Quote:
    """
    Staff create a quote for a customer.

    A sales creator's discount must be within their limit; anything higher
    goes through the discount-request queue after creation.
    """
    require(Action.QUOTE_CREATE, actor)

    if payload.get("user_id") in (None, ""):
        raise ValidationError("user_id is required")
    customer = db.session.get(User, coerce_int("user_id", payload["user_id"]))
    if not customer:
        raise NotFoundError("Customer not found")

    items = pricing_service.normalize_items(payload.get("items"))
    subtotal = pricing_service.subtotal_of(items)

    vat_percent = payload.get("vat_percent")
    if vat_percent is None:
        vat_percent = current_app.config.get("DEFAULT_VAT_PERCENT", 5)
    vat_percent = coerce_percent("vat_percent", vat_percent)

    percent = payload.get("discount_percent")
    amount = payload.get("discount_amount_cents")
    if percent is not None and amount is not None:
        raise ValidationError("Provide at most one of discount_percent or discount_amount_cents")
    amount = coerce_cents("discount_amount_cents", amount) if amount is not None else None
    evaluation = discount_service.evaluate_discount(
        actor,
        subtotal,
        percent=pricing_service.clamp_percent(percent) if percent is not None else None,
        amount_cents=amount,
    )
    if evaluation.percent > 0:
        discount_service.require_within_limit(actor, evaluation)

    def _op() -> Quote:
        quote = Quote(
            user_id=customer.id,
            created_by=actor.id,
            quote_number=numbering_service.next_quote_number(),
            status="pending",
            items=items,
            expiry_date=_expiry(payload.get("expiry_date")),
            notes=payload.get("notes"),
        )
        pricing_service.apply_totals(
            quote,
            pricing_service.compute_totals(items, evaluation.percent, vat_percent, discount_amount_cents=amount),
        )
        db.session.add(quote)
        db.session.commit()
        return quote

    quote = run_with_retry(_op)
    logger.info("Quote %s created by user %s", quote.quote_number, actor.id)
    return quote


def list_quotes(actor: Actor, *, status: str | None = None, user_id: int | None = None) -> list[Quote]:
    """Staff see every quote (optionally one customer's); customers see their own."""
    query = db.session.query(Quote)
    if can(Action.QUOTE_LIST_ANY, actor):
        if user_id is not None:
            query = query.filter(Quote.user_id == user_id)
    else:
        query = query.filter(Quote.user_id == actor.id)

    if status:
        if status not in QUOTE_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(QUOTE_STATUSES)}")
        query = query.filter(Quote.status == status)
    return query.order_by(Quote.created_at.desc(), Quote.id.desc()).all()


def get_quote(actor: Actor, quote_id: int) -> Quote:
    quote = _load(quote_id)
    require(Action.QUOTE_VIEW, actor, quote)
    return quote


def _check_transition(actor: Actor, quote: Quote, new_status: str) -> None:
    if actor.role is Role.CUSTOMER:
        require(Action.QUOTE_RESPOND, actor, quote)
        if new_status not in CUSTOMER_RESPONSES:
            raise AuthorizationError("Customers may only accept or reject a quote")
    else:
        require(Action.QUOTE_TRANSITION, actor)

    if new_status == quote.status:
        raise InvalidStateTransitionError(f"Quote is already {quote.status}")

    if can(Action.QUOTE_FORCE_TRANSITION, actor):
        return
    if quote.status != "pending":
        raise InvalidStateTransitionError(f"Cannot change a {quote.status} quote")
    if new_status not in TERMINAL_STATUSES:
        raise InvalidStateTransitionError(f"Cannot move a pending quote to {new_status}")


def update_status(actor: Actor, quote_id: int, new_status: Any) -> Quote:
    new_status = str(new_status or "").strip().lower()
    if new_status not in QUOTE_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(QUOTE_STATUSES)}")

    def _op() -> Quote:
        quote = lock_for_update(db.session.query(Quote).filter(Quote.id == quote_id)).first()
        if not quote:
            raise NotFoundError("Quote not found")
        _check_transition(actor, quote, new_status)
        old_status = quote.status
        quote.status = new_status
        db.session.commit()
        logger.info("Quote %s: %s -> %s by user %s", quote.quote_number, old_status, new_status, actor.id)
        return quote

    return run_with_retry(_op)


def apply_discount(actor: Actor, quote_id: int, payload: dict) -> tuple[Quote, DiscountRequest | None]:
    """
    Direct discount path.

    Within the caller's limit the discount is applied and totals recomputed.
    Over the limit nothing is applied: with a reason a pending request is
    queued and returned, without one the call is refused.
    """
    require(Action.QUOTE_DISCOUNT, actor)
    percent, amount = discount_service.parse_discount(payload)

    def _op() -> tuple[Quote, DiscountRequest | None]:
        quote = lock_for_update(db.session.query(Quote).filter(Quote.id == quote_id)).first()
        if not quote:
            raise NotFoundError("Quote not found")
        if quote.status != "pending":
            raise InvalidStateTransitionError(f"Quote is {quote.status}; discounts apply to pending quotes only")

        evaluation = discount_service.evaluate_discount(
            actor, quote.subtotal_cents, percent=percent, amount_cents=amount
        )
        if evaluation.allowed:
            if amount is not None:
                pricing_service.recompute(quote, discount_amount_cents=amount)
            else:
                pricing_service.recompute(quote, discount_percent=evaluation.percent)
            db.session.commit()
            return quote, None

        reason = str(payload.get("reason") or "").strip()
        if not reason:
            raise AuthorizationError(discount_service.limit_message(evaluation.limit))

        req = discount_service.create_request(
            actor,
            reason=reason,
            quote_id=quote.id,
            discount_percent=percent,
            discount_amount_cents=amount,
            commit=False,
        )
        db.session.commit()
        return quote, req

    return run_with_retry(_op)


def expire_stale_quotes(now: datetime | None = None) -> int:
    """Mark pending quotes past their expiry date as expired. Returns the count."""
    now = now or utcnow()
    quotes = (
        db.session.query(Quote)
        .filter(Quote.status == "pending", Quote.expiry_date.isnot(None), Quote.expiry_date < now)
        .all()
    )
    for quote in quotes:
        quote.status = "expired"
    db.session.commit()
    return len(quotes)
