# backend/billdesk/routes/billing.py
"""
Plans, subscriptions and token usage.

GET /api/plans is public; everything else requires a session.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth
from ..services import payment_service, subscription_service
from ..validation import coerce_int


billing_bp = Blueprint("billing", __name__, url_prefix="/api")


def _payload() -> dict:
    return request.get_json(silent=True) or {}


# =============================================================================
# PLANS
# =============================================================================

@billing_bp.get("/plans")
def list_plans_route():
    include_inactive = request.args.get("include_inactive", "").lower() in ("1", "true", "yes")
    plans = subscription_service.list_plans(include_inactive=include_inactive)
    return jsonify([p.to_dict() for p in plans]), 200


@billing_bp.post("/plans")
@require_auth
def create_plan_route():
    return jsonify(subscription_service.create_plan(g.actor, _payload()).to_dict()), 201


@billing_bp.patch("/plans/<int:plan_id>")
@require_auth
def update_plan_route(plan_id: int):
    return jsonify(subscription_service.update_plan(g.actor, plan_id, _payload()).to_dict()), 200


# =============================================================================
# SUBSCRIPTIONS
# =============================================================================

@billing_bp.get("/subscriptions")
@require_auth
def list_subscriptions_route():
    subs = subscription_service.list_subscriptions(
        g.actor,
        user_id=request.args.get("user_id", type=int),
        status=request.args.get("status"),
    )
    return jsonify([s.to_dict() for s in subs]), 200


@billing_bp.get("/subscriptions/active")
@require_auth
def active_subscription_route():
    sub = subscription_service.get_active_subscription(g.actor, request.args.get("user_id", type=int))
    if sub is None:
        return jsonify({"message": "No active subscription"}), 404
    data = sub.to_dict()
    data["plan"] = sub.plan.to_dict()
    return jsonify(data), 200


@billing_bp.post("/subscriptions")
@require_auth
def create_subscription_route():
    return jsonify(subscription_service.create_subscription(g.actor, _payload()).to_dict()), 201


@billing_bp.post("/subscriptions/checkout")
@require_auth
def checkout_route():
    intent, sub = payment_service.checkout_subscription(g.actor, _payload())
    return jsonify({
        "payment_intent": intent.to_dict(),
        "subscription": sub.to_dict() if sub else None,
    }), 201


@billing_bp.post("/subscriptions/<int:subscription_id>/cancel")
@require_auth
def cancel_subscription_route(subscription_id: int):
    return jsonify(subscription_service.cancel_subscription(g.actor, subscription_id).to_dict()), 200


@billing_bp.post("/subscriptions/<int:subscription_id>/top-up")
@require_auth
def top_up_route(subscription_id: int):
    sub = subscription_service.top_up_tokens(g.actor, subscription_id, _payload().get("amount"))
    return jsonify(sub.to_dict()), 200


# =============================================================================
# TOKEN USAGE
# =============================================================================

@billing_bp.get("/token-usage/<int:subscription_id>")
@require_auth
def list_usage_route(subscription_id: int):
    usage = subscription_service.list_usage(g.actor, subscription_id)
    return jsonify([u.to_dict() for u in usage]), 200


@billing_bp.post("/token-usage")
@require_auth
def deduct_tokens_route():
    data = _payload()
    subscription_id = data.get("subscription_id")
    if subscription_id is None:
        sub = subscription_service.get_active_subscription(g.actor)
        if sub is None:
            return jsonify({"message": "No active subscription"}), 404
        subscription_id = sub.id

    usage = subscription_service.deduct_tokens(
        coerce_int("subscription_id", subscription_id), data.get("amount"), data.get("description"), actor=g.actor
    )
    sub = subscription_service.get_subscription(usage.subscription_id)
    return jsonify({"usage": usage.to_dict(), "token_balance": sub.token_balance}), 201
