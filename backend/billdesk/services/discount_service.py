# Overview: Discount limits and the discount-approval queue.

"""
Discount authorization policy and approval workflow.

RULES:
- A discount is always normalized to a percent of the subtotal before it is
  judged. Fixed amounts are capped at the subtotal and applied as exact
  cents; their percent is only used for the limit check and display.
- admin: no limit. sales: bound by their discount_limit. Everyone else may
  not set discounts.
- Over-limit discounts are never applied directly. They become a pending
  DiscountRequest that only an admin can decide.
- Deciding is a compare-and-swap on status == 'pending', so two concurrent
  decisions cannot both win. Approval recomputes the quote against its
  current subtotal, not the subtotal at request time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy import update

from ..errors import AuthorizationError, InvalidStateTransitionError, NotFoundError, ValidationError
from ..extensions import db
from ..models import DiscountRequest, Quote, User
from ..policy import Action, Actor, Role, can, require
from ..time_utils import utcnow
from ..validation import coerce_cents, coerce_int, coerce_percent
from . import pricing_service
from .concurrency import lock_for_update, run_with_retry


logger = logging.getLogger(__name__)

REQUEST_STATUSES = ("pending", "approved", "rejected")


@dataclass(frozen=True)
class DiscountEvaluation:
    percent: Decimal
    allowed: bool
    limit: Decimal | None


def limit_message(limit: Decimal) -> str:
    return f"Discount exceeds your limit of {_fmt_pct(limit)}%. Please submit for approval."


def _fmt_pct(value: Decimal) -> str:
    normalized = Decimal(value).normalize()
    # Decimal("1E+1") -> "10"
    return format(normalized, "f")


def parse_discount(payload: dict) -> tuple[Decimal | None, int | None]:
    """
    Read exactly one of discount_percent / discount_amount_cents from a payload.
    """
    raw_pct = payload.get("discount_percent")
    raw_amt = payload.get("discount_amount_cents")
    if (raw_pct is None) == (raw_amt is None):
        raise ValidationError("Provide exactly one of discount_percent or discount_amount_cents")
    if raw_pct is not None:
        return coerce_percent("discount_percent", raw_pct), None
    return None, coerce_cents("discount_amount_cents", raw_amt)


def parse_optional_discount(payload: dict) -> tuple[Decimal | None, int | None]:
    """Like parse_discount, but a payload without any discount is allowed."""
    if payload.get("discount_percent") is None and payload.get("discount_amount_cents") is None:
        return None, None
    return parse_discount(payload)


def evaluate_discount(
    actor: Actor,
    subtotal_cents: int,
    *,
    percent: Any = None,
    amount_cents: int | None = None,
) -> DiscountEvaluation:
    """
    Normalize a discount to a percent and decide whether the actor may apply
    it without approval.
    """
    if amount_cents is not None:
        pct = pricing_service.amount_to_percent(amount_cents, subtotal_cents)
    else:
        pct = coerce_percent("discount_percent", percent if percent is not None else 0)

    if can(Action.DISCOUNT_BYPASS_LIMIT, actor):
        return DiscountEvaluation(percent=pct, allowed=True, limit=None)
    if actor.role is Role.SALES:
        return DiscountEvaluation(percent=pct, allowed=pct <= actor.discount_limit, limit=actor.discount_limit)
    return DiscountEvaluation(percent=pct, allowed=False, limit=Decimal("0"))


def require_within_limit(actor: Actor, evaluation: DiscountEvaluation) -> None:
    if not evaluation.allowed:
        raise AuthorizationError(limit_message(evaluation.limit or Decimal("0")))


# =============================================================================
# REQUESTS
# =============================================================================

def create_request(
    actor: Actor,
    *,
    reason: Any,
    quote_id: int | None = None,
    user_id: int | None = None,
    discount_percent: Decimal | None = None,
    discount_amount_cents: int | None = None,
    commit: bool = True,
) -> DiscountRequest:
    """
    Queue a discount for admin approval.

    The customer is taken from the quote when one is given; a standalone
    request must name the customer explicitly.
    """
    require(Action.DISCOUNT_REQUEST_CREATE, actor)

    reason = str(reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required for discount requests")
    if (discount_percent is None) == (discount_amount_cents is None):
        raise ValidationError("Provide exactly one of discount_percent or discount_amount_cents")

    if quote_id is not None:
        quote = db.session.get(Quote, quote_id)
        if not quote:
            raise NotFoundError("Quote not found")
        if quote.status != "pending":
            raise InvalidStateTransitionError(f"Quote is {quote.status}; discounts apply to pending quotes only")
        user_id = quote.user_id
    elif user_id is None:
        raise ValidationError("quote_id or user_id is required")
    elif not db.session.get(User, user_id):
        raise NotFoundError("Customer not found")

    req = DiscountRequest(
        user_id=user_id,
        requested_by=actor.id,
        quote_id=quote_id,
        status="pending",
        discount_percent=discount_percent,
        discount_amount_cents=discount_amount_cents,
        reason=reason,
        requested_at=utcnow(),
    )
    db.session.add(req)
    if commit:
        db.session.commit()
    logger.info("Discount request queued by user %s for quote %s", actor.id, quote_id)
    return req


def request_from_payload(actor: Actor, payload: dict) -> DiscountRequest:
    percent, amount = parse_discount(payload)
    quote_id = payload.get("quote_id")
    user_id = payload.get("user_id")
    return create_request(
        actor,
        reason=payload.get("reason"),
        quote_id=coerce_int("quote_id", quote_id) if quote_id is not None else None,
        user_id=coerce_int("user_id", user_id) if user_id is not None else None,
        discount_percent=percent,
        discount_amount_cents=amount,
    )


def list_requests(actor: Actor, *, status: str | None = None) -> list[DiscountRequest]:
    """
    Admins see the queue (pending by default); sales see their own requests.
    """
    if status and status not in REQUEST_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(REQUEST_STATUSES)}")

    query = db.session.query(DiscountRequest)
    if can(Action.DISCOUNT_QUEUE_VIEW, actor):
        query = query.filter(DiscountRequest.status == (status or "pending"))
    elif can(Action.DISCOUNT_REQUEST_CREATE, actor):
        query = query.filter(DiscountRequest.requested_by == actor.id)
        if status:
            query = query.filter(DiscountRequest.status == status)
    else:
        raise AuthorizationError("Access denied")

    return query.order_by(DiscountRequest.requested_at.asc(), DiscountRequest.id.asc()).all()


def _claim(request_id: int, *, status: str, actor: Actor, notes: str) -> None:
    """Move a request out of pending. Zero rows means someone else decided first."""
    result = db.session.execute(
        update(DiscountRequest)
        .where(DiscountRequest.id == request_id, DiscountRequest.status == "pending")
        .values(status=status, approved_by=actor.id, decision_notes=notes, decided_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidStateTransitionError("Discount request has already been decided")


def _decide(actor: Actor, request_id: int, *, approve: bool, notes: Any) -> DiscountRequest:
    require(Action.DISCOUNT_DECIDE, actor)
    notes = str(notes).strip() if notes else ("Approved" if approve else "Rejected")

    def _op() -> DiscountRequest:
        req = db.session.get(DiscountRequest, request_id)
        if not req:
            raise NotFoundError("Discount request not found")
        if req.status != "pending":
            raise InvalidStateTransitionError("Discount request has already been decided")

        quote = None
        if approve and req.quote_id is not None:
            quote = lock_for_update(db.session.query(Quote).filter(Quote.id == req.quote_id)).first()
            if not quote:
                raise NotFoundError("Quote not found")
            if quote.status != "pending":
                raise InvalidStateTransitionError(f"Quote is {quote.status}; discount can no longer be applied")

        _claim(request_id, status="approved" if approve else "rejected", actor=actor, notes=notes)

        if quote is not None:
            # Re-derive against the live subtotal
            if req.discount_amount_cents is not None:
                pricing_service.recompute(quote, discount_amount_cents=req.discount_amount_cents)
            else:
                pricing_service.recompute(quote, discount_percent=req.discount_percent)

        db.session.commit()
        db.session.refresh(req)
        return req

    try:
        req = run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise

    logger.info("Discount request %s %s by admin %s", req.id, req.status, actor.id)
    return req


def approve_request(actor: Actor, request_id: int, notes: Any = None) -> DiscountRequest:
    return _decide(actor, request_id, approve=True, notes=notes)


def reject_request(actor: Actor, request_id: int, notes: Any = None) -> DiscountRequest:
    return _decide(actor, request_id, approve=False, notes=notes)
