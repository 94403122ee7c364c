# Overview: Plans, subscriptions and the token ledger.

"""
Subscription token ledger.

INVARIANTS:
- token_balance never goes negative. deduct_tokens decrements with a single
  conditional UPDATE (WHERE token_balance >= amount); zero affected rows
  means the balance was too small at write time and nothing is written.
- Every successful deduction writes exactly one TokenUsage row in the same
  transaction as the decrement.
- top_up_tokens is the only explicit increase. New subscriptions start at
  plan.token_amount.

STATE MACHINE: pending -> active -> expired
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import update

from ..errors import InsufficientBalanceError, InvalidStateTransitionError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Plan, Subscription, TokenUsage, User
from ..policy import Action, Actor, Role, can, require
from ..time_utils import add_months, utcnow
from ..validation import ModelValidationPolicy, coerce_int, validate_payload
from .concurrency import run_with_retry


logger = logging.getLogger(__name__)

SUBSCRIPTION_STATUSES = ("pending", "active", "expired")

PLAN_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "price_cents", "token_amount", "is_active", "features"},
    required_on_create={"name", "price_cents", "token_amount"},
)


# =============================================================================
# PLANS
# =============================================================================

def list_plans(*, include_inactive: bool = False) -> list[Plan]:
    query = db.session.query(Plan)
    if not include_inactive:
        query = query.filter(Plan.is_active.is_(True))
    return query.order_by(Plan.price_cents.asc(), Plan.id.asc()).all()


def get_plan(plan_id: int) -> Plan:
    plan = db.session.get(Plan, plan_id)
    if not plan:
        raise NotFoundError("Plan not found")
    return plan


def _check_plan_patch(patch: dict) -> None:
    if patch.get("token_amount") is not None and patch["token_amount"] < 0:
        raise ValidationError("token_amount must be >= 0")
    if "features" in patch and patch["features"] is not None and not isinstance(patch["features"], dict):
        raise ValidationError("features must be an object")


def create_plan(actor: Actor, payload: dict) -> Plan:
    require(Action.PLAN_MANAGE, actor)
    patch = validate_payload(model=Plan, payload=payload, policy=PLAN_POLICY, partial=False)
    _check_plan_patch(patch)
    plan = Plan(**patch)
    db.session.add(plan)
    db.session.commit()
    return plan


def update_plan(actor: Actor, plan_id: int, payload: dict) -> Plan:
    require(Action.PLAN_MANAGE, actor)
    plan = get_plan(plan_id)
    patch = validate_payload(model=Plan, payload=payload, policy=PLAN_POLICY, partial=True)
    _check_plan_patch(patch)
    for key, value in patch.items():
        setattr(plan, key, value)
    db.session.commit()
    return plan


# =============================================================================
# SUBSCRIPTIONS
# =============================================================================

def get_subscription(subscription_id: int) -> Subscription:
    sub = db.session.get(Subscription, subscription_id)
    if not sub:
        raise NotFoundError("Subscription not found")
    return sub


def view_subscription(actor: Actor, subscription_id: int) -> Subscription:
    sub = get_subscription(subscription_id)
    require(Action.SUBSCRIPTION_VIEW, actor, sub)
    return sub


def list_subscriptions(actor: Actor, *, user_id: int | None = None, status: str | None = None) -> list[Subscription]:
    query = db.session.query(Subscription)
    if can(Action.SUBSCRIPTION_LIST_ANY, actor):
        if user_id is not None:
            query = query.filter(Subscription.user_id == user_id)
    else:
        query = query.filter(Subscription.user_id == actor.id)
    if status:
        if status not in SUBSCRIPTION_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(SUBSCRIPTION_STATUSES)}")
        query = query.filter(Subscription.status == status)
    return query.order_by(Subscription.start_date.desc(), Subscription.id.desc()).all()


def get_active_subscription(actor: Actor, user_id: int | None = None) -> Subscription | None:
    """Latest active, unexpired subscription for the user (default: the caller)."""
    user_id = actor.id if user_id is None else user_id
    if user_id != actor.id:
        require(Action.SUBSCRIPTION_LIST_ANY, actor)
    now = utcnow()
    return (
        db.session.query(Subscription)
        .filter(
            Subscription.user_id == user_id,
            Subscription.status == "active",
            db.or_(Subscription.end_date.is_(None), Subscription.end_date >= now),
        )
        .order_by(Subscription.start_date.desc(), Subscription.id.desc())
        .first()
    )


def _new_subscription(user_id: int, plan: Plan, *, status: str, gateway_reference: str | None = None) -> Subscription:
    now = utcnow()
    period_end = add_months(now, 1)
    return Subscription(
        user_id=user_id,
        plan_id=plan.id,
        status=status,
        token_balance=plan.token_amount,
        auto_renew=True,
        start_date=now,
        end_date=period_end,
        current_period_start=now,
        current_period_end=period_end,
        gateway_reference=gateway_reference,
    )


def resolve_subscription_target(actor: Actor, payload: dict) -> tuple[User, Plan]:
    if payload.get("plan_id") in (None, ""):
        raise ValidationError("plan_id is required")
    plan = get_plan(coerce_int("plan_id", payload["plan_id"]))
    if not plan.is_active:
        raise ValidationError("Plan is not available")

    user_id = payload.get("user_id")
    user_id = actor.id if user_id in (None, "") else coerce_int("user_id", user_id)
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    require(Action.SUBSCRIPTION_CREATE, actor, user)
    return user, plan


def create_subscription(actor: Actor, payload: dict) -> Subscription:
    """
    Direct subscription.

    Admin-created subscriptions are active immediately; self-service ones
    stay pending until paid through checkout.
    """
    user, plan = resolve_subscription_target(actor, payload)
    status = "active" if actor.role is Role.ADMIN else "pending"
    sub = _new_subscription(user.id, plan, status=status)
    db.session.add(sub)
    db.session.commit()
    logger.info("Subscription %s (%s) created for user %s", sub.id, status, user.id)
    return sub


def activate_paid_subscription(
    actor: Actor,
    payload: dict,
    gateway_reference: str,
) -> Subscription:
    """
    Record a subscription paid through the gateway. Activates the named
    pending subscription, or creates a new active one for one month.
    """
    if payload.get("subscription_id") not in (None, ""):
        sub = get_subscription(coerce_int("subscription_id", payload["subscription_id"]))
        require(Action.SUBSCRIPTION_CREATE, actor, sub)
        if sub.status != "pending":
            raise InvalidStateTransitionError(f"Subscription is {sub.status}, not pending")
        now = utcnow()
        sub.status = "active"
        sub.start_date = now
        sub.current_period_start = now
        sub.current_period_end = sub.end_date = add_months(now, 1)
        sub.gateway_reference = gateway_reference
    else:
        user, plan = resolve_subscription_target(actor, payload)
        sub = _new_subscription(user.id, plan, status="active", gateway_reference=gateway_reference)
        db.session.add(sub)
    db.session.commit()
    return sub


def cancel_subscription(actor: Actor, subscription_id: int) -> Subscription:
    sub = get_subscription(subscription_id)
    require(Action.SUBSCRIPTION_CANCEL, actor, sub)
    if sub.status == "expired":
        raise InvalidStateTransitionError("Subscription is already cancelled")
    sub.status = "expired"
    sub.auto_renew = False
    sub.end_date = utcnow()
    db.session.commit()
    logger.info("Subscription %s cancelled by user %s", sub.id, actor.id)
    return sub


# =============================================================================
# TOKEN LEDGER
# =============================================================================

def _positive_amount(amount: Any) -> int:
    value = coerce_int("amount", amount)
    if value <= 0:
        raise ValidationError("amount must be a positive integer")
    return value


def deduct_tokens(subscription_id: int, amount: Any, description: Any, *, actor: Actor | None = None) -> TokenUsage:
    """
    Spend tokens from a subscription.

    Raises NotFoundError for an unknown subscription, ValidationError for a
    non-positive amount and InsufficientBalanceError when the balance at
    write time is smaller than amount (nothing is written in that case).
    """
    amount = _positive_amount(amount)
    description = str(description or "").strip() or "Token usage"

    if actor is not None:
        require(Action.TOKENS_DEDUCT, actor, get_subscription(subscription_id))

    def _op() -> TokenUsage:
        result = db.session.execute(
            update(Subscription)
            .where(Subscription.id == subscription_id, Subscription.token_balance >= amount)
            .values(token_balance=Subscription.token_balance - amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.session.rollback()
            if not db.session.get(Subscription, subscription_id):
                raise NotFoundError("Subscription not found")
            raise InsufficientBalanceError("Insufficient token balance")

        usage = TokenUsage(
            subscription_id=subscription_id,
            amount=amount,
            description=description,
            used_at=utcnow(),
        )
        db.session.add(usage)
        db.session.commit()
        return usage

    try:
        usage = run_with_retry(_op)
    except InsufficientBalanceError:
        logger.info("Token deduction of %d refused for subscription %s", amount, subscription_id)
        raise

    sub = db.session.get(Subscription, subscription_id)
    if sub is not None:
        db.session.refresh(sub)
    return usage


def top_up_tokens(actor: Actor, subscription_id: int, amount: Any) -> Subscription:
    require(Action.SUBSCRIPTION_TOP_UP, actor)
    amount = _positive_amount(amount)

    def _op() -> Subscription:
        result = db.session.execute(
            update(Subscription)
            .where(Subscription.id == subscription_id)
            .values(token_balance=Subscription.token_balance + amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.session.rollback()
            raise NotFoundError("Subscription not found")
        db.session.commit()
        sub = db.session.get(Subscription, subscription_id)
        db.session.refresh(sub)
        return sub

    sub = run_with_retry(_op)
    logger.info("Subscription %s topped up by %d tokens", subscription_id, amount)
    return sub


def list_usage(actor: Actor, subscription_id: int) -> list[TokenUsage]:
    sub = get_subscription(subscription_id)
    require(Action.TOKENS_VIEW, actor, sub)
    return (
        db.session.query(TokenUsage)
        .filter(TokenUsage.subscription_id == sub.id)
        .order_by(TokenUsage.used_at.desc(), TokenUsage.id.desc())
        .all()
    )
