# Overview: Subscription and billing metrics for the reports endpoint.

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import func

from ..extensions import db
from ..models import Invoice, Plan, Quote, Subscription
from ..policy import Action, Actor, require
from ..time_utils import utcnow


def _rate(part: int, whole: int) -> float:
    if not whole:
        return 0.0
    return float((Decimal(part) * 100 / Decimal(whole)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def subscription_metrics(now=None) -> dict:
    """
    MRR: sum of plan prices over active subscriptions that have not ended.
    ARR: 12 x MRR.
    Churn: expired subscriptions as a percent of all subscriptions.
    """
    now = now or utcnow()
    live = db.or_(Subscription.end_date.is_(None), Subscription.end_date >= now)

    mrr = (
        db.session.query(func.coalesce(func.sum(Plan.price_cents), 0))
        .select_from(Subscription)
        .join(Plan, Plan.id == Subscription.plan_id)
        .filter(Subscription.status == "active", live)
        .scalar()
    )
    active = db.session.query(func.count(Subscription.id)).filter(Subscription.status == "active", live).scalar()
    expired = db.session.query(func.count(Subscription.id)).filter(Subscription.status == "expired").scalar()
    total = db.session.query(func.count(Subscription.id)).scalar()

    mrr = int(mrr or 0)
    return {
        "mrr_cents": mrr,
        "arr_cents": mrr * 12,
        "active_subscriptions": int(active or 0),
        "total_subscriptions": int(total or 0),
        "churn_rate": _rate(int(expired or 0), int(total or 0)),
    }


def billing_metrics() -> dict:
    invoice_rows = (
        db.session.query(Invoice.status, func.count(Invoice.id), func.coalesce(func.sum(Invoice.total_cents), 0))
        .group_by(Invoice.status)
        .all()
    )
    invoices = {status: (int(n), int(total)) for status, n, total in invoice_rows}

    quote_rows = db.session.query(Quote.status, func.count(Quote.id)).group_by(Quote.status).all()
    quotes = {status: int(n) for status, n in quote_rows}
    decided = quotes.get("accepted", 0) + quotes.get("rejected", 0)

    return {
        "revenue_cents": invoices.get("paid", (0, 0))[1],
        "outstanding_cents": invoices.get("pending", (0, 0))[1] + invoices.get("overdue", (0, 0))[1],
        "invoices_by_status": {status: n for status, (n, _) in invoices.items()},
        "quotes_by_status": quotes,
        "quote_acceptance_rate": _rate(quotes.get("accepted", 0), decided),
    }


def metrics(actor: Actor) -> dict:
    require(Action.REPORTS_VIEW, actor)
    data = subscription_metrics()
    data.update(billing_metrics())
    return data
