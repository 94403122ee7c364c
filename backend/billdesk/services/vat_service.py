# Overview: VAT period calculation and VAT return lifecycle.

"""
VAT returns.

RULES:
- output VAT: VAT charged on invoices issued in the period.
- input VAT: VAT on approved, recoverable expenses dated in the period.
- net_vat_cents = output_vat_cents - input_vat_cents, recomputed on every
  write; it is never accepted from the client.
- STATE MACHINE: draft -> submitted -> paid. Only drafts can be edited or
  deleted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any

from sqlalchemy import func

from ..errors import InvalidStateTransitionError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Expense, Invoice, VatReturn
from ..policy import Action, Actor, require
from ..time_utils import parse_iso_date, utcnow
from ..validation import ModelValidationPolicy, validate_payload


logger = logging.getLogger(__name__)

# Returns are due 30 days after the period closes
DUE_AFTER_PERIOD = timedelta(days=30)

VAT_RETURN_POLICY = ModelValidationPolicy(
    writable_fields={
        "period_start", "period_end", "due_date", "output_vat_cents", "input_vat_cents",
        "reference_number", "notes",
    },
    required_on_create={"period_start", "period_end"},
)


@dataclass(frozen=True)
class VatCalculation:
    period_start: date
    period_end: date
    output_vat_cents: int
    input_vat_cents: int

    @property
    def net_vat_cents(self) -> int:
        return self.output_vat_cents - self.input_vat_cents

    def to_dict(self) -> dict:
        return {
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "output_vat_cents": self.output_vat_cents,
            "input_vat_cents": self.input_vat_cents,
            "net_vat_cents": self.net_vat_cents,
        }


def _date_arg(payload: dict, *keys: str) -> date:
    for key in keys:
        raw = payload.get(key)
        if raw not in (None, ""):
            try:
                parsed = parse_iso_date(str(raw))
            except ValueError:
                parsed = None
            if parsed is None:
                raise ValidationError(f"{keys[0]} must be a date in YYYY-MM-DD format")
            return parsed
    raise ValidationError(f"{keys[0]} is required")


def _check_period(start: date, end: date) -> None:
    if end < start:
        raise ValidationError("period_end must be on or after period_start")


def calculate_period(start: date, end: date) -> VatCalculation:
    _check_period(start, end)
    window_start = datetime.combine(start, time.min)
    window_end = datetime.combine(end + timedelta(days=1), time.min)

    output_vat = (
        db.session.query(func.coalesce(func.sum(Invoice.vat_amount_cents), 0))
        .filter(Invoice.created_at >= window_start, Invoice.created_at < window_end)
        .scalar()
    )
    input_vat = (
        db.session.query(func.coalesce(func.sum(Expense.vat_amount_cents), 0))
        .filter(
            Expense.status == "approved",
            Expense.vat_recoverable.is_(True),
            Expense.expense_date >= start,
            Expense.expense_date <= end,
        )
        .scalar()
    )
    return VatCalculation(start, end, int(output_vat or 0), int(input_vat or 0))


def calculate(actor: Actor, payload: dict) -> VatCalculation:
    require(Action.VAT_MANAGE, actor)
    return calculate_period(
        _date_arg(payload, "period_start", "start_date", "startDate"),
        _date_arg(payload, "period_end", "end_date", "endDate"),
    )


def _sync_net(vat_return: VatReturn) -> None:
    vat_return.net_vat_cents = (vat_return.output_vat_cents or 0) - (vat_return.input_vat_cents or 0)


def get_return(vat_return_id: int) -> VatReturn:
    vat_return = db.session.get(VatReturn, vat_return_id)
    if not vat_return:
        raise NotFoundError("VAT return not found")
    return vat_return


def list_returns(actor: Actor, *, status: str | None = None) -> list[VatReturn]:
    require(Action.VAT_MANAGE, actor)
    query = db.session.query(VatReturn)
    if status:
        query = query.filter(VatReturn.status == status)
    return query.order_by(VatReturn.period_start.desc(), VatReturn.id.desc()).all()


def create_return(actor: Actor, payload: dict) -> VatReturn:
    """
    Draft a return for a period. Output and input VAT default to the
    calculated figures for the period.
    """
    require(Action.VAT_MANAGE, actor)
    patch = validate_payload(model=VatReturn, payload=payload, policy=VAT_RETURN_POLICY, partial=False)
    _check_period(patch["period_start"], patch["period_end"])

    if patch.get("output_vat_cents") is None or patch.get("input_vat_cents") is None:
        calc = calculate_period(patch["period_start"], patch["period_end"])
        if patch.get("output_vat_cents") is None:
            patch["output_vat_cents"] = calc.output_vat_cents
        if patch.get("input_vat_cents") is None:
            patch["input_vat_cents"] = calc.input_vat_cents
    if patch.get("due_date") is None:
        patch["due_date"] = patch["period_end"] + DUE_AFTER_PERIOD

    vat_return = VatReturn(status="draft", created_by=actor.id, **patch)
    _sync_net(vat_return)
    db.session.add(vat_return)
    db.session.commit()
    return vat_return


def _draft(vat_return_id: int) -> VatReturn:
    vat_return = get_return(vat_return_id)
    if vat_return.status != "draft":
        raise InvalidStateTransitionError(f"VAT return is {vat_return.status}; only drafts can be changed")
    return vat_return


def update_return(actor: Actor, vat_return_id: int, payload: dict) -> VatReturn:
    require(Action.VAT_MANAGE, actor)
    vat_return = _draft(vat_return_id)
    patch = validate_payload(model=VatReturn, payload=payload, policy=VAT_RETURN_POLICY, partial=True)
    _check_period(patch.get("period_start", vat_return.period_start), patch.get("period_end", vat_return.period_end))
    for key, value in patch.items():
        setattr(vat_return, key, value)
    _sync_net(vat_return)
    db.session.commit()
    return vat_return


def delete_return(actor: Actor, vat_return_id: int) -> None:
    require(Action.VAT_MANAGE, actor)
    vat_return = _draft(vat_return_id)
    db.session.delete(vat_return)
    db.session.commit()


def submit_return(actor: Actor, vat_return_id: int, reference_number: Any = None) -> VatReturn:
    require(Action.VAT_MANAGE, actor)
    vat_return = _draft(vat_return_id)
    if reference_number:
        vat_return.reference_number = str(reference_number).strip()
    vat_return.status = "submitted"
    vat_return.submitted_at = utcnow()
    _sync_net(vat_return)
    db.session.commit()
    logger.info("VAT return %s submitted by user %s", vat_return.id, actor.id)
    return vat_return


def pay_return(actor: Actor, vat_return_id: int) -> VatReturn:
    require(Action.VAT_MANAGE, actor)
    vat_return = get_return(vat_return_id)
    if vat_return.status != "submitted":
        raise InvalidStateTransitionError(f"VAT return is {vat_return.status}; only submitted returns can be paid")
    vat_return.status = "paid"
    vat_return.paid_at = utcnow()
    db.session.commit()
    return vat_return


def returns_summary(actor: Actor) -> dict:
    require(Action.VAT_MANAGE, actor)
    next_due = (
        db.session.query(func.min(VatReturn.due_date))
        .filter(VatReturn.status.in_(("draft", "submitted")))
        .scalar()
    )
    pending = db.session.query(func.count(VatReturn.id)).filter(VatReturn.status != "paid").scalar()
    total_paid = (
        db.session.query(func.coalesce(func.sum(VatReturn.net_vat_cents), 0))
        .filter(VatReturn.status == "paid")
        .scalar()
    )
    count = db.session.query(func.count(VatReturn.id)).scalar()
    return {
        "next_due_date": next_due.isoformat() if next_due else None,
        "pending_returns": int(pending or 0),
        "total_paid_cents": int(total_paid or 0),
        "returns_count": int(count or 0),
    }
