from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Plan(db.Model):
    """Subscription plan. Price in cents; token_amount seeds new subscriptions."""
    __tablename__ = "plans"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    price_cents = db.Column(db.Integer, nullable=False)
    token_amount = db.Column(db.Integer, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    features = db.Column(db.JSON, nullable=False, default=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price_cents": self.price_cents,
            "token_amount": self.token_amount,
            "is_active": self.is_active,
            "features": self.features or {},
        }


class Subscription(db.Model):
    """
    A user's subscription to a plan, carrying the token balance.

    INVARIANT: token_balance >= 0. It is only decremented by
    subscription_service.deduct_tokens (conditional UPDATE) and only
    incremented by an explicit top-up.
    """
    __tablename__ = "subscriptions"
    __table_args__ = (
        db.CheckConstraint("token_balance >= 0", name="ck_subscriptions_token_balance_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("plans.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    token_balance = db.Column(db.Integer, nullable=False)
    auto_renew = db.Column(db.Boolean, nullable=False, default=True)

    start_date = db.Column(db.DateTime(timezone=True), nullable=False)
    end_date = db.Column(db.DateTime(timezone=True), nullable=True)
    current_period_start = db.Column(db.DateTime(timezone=True), nullable=True)
    current_period_end = db.Column(db.DateTime(timezone=True), nullable=True)

    # Reference returned by the payment gateway at checkout
    gateway_reference = db.Column(db.String(128), nullable=True)

    plan = db.relationship("Plan", backref=db.backref("subscriptions", lazy=True))
    user = db.relationship("User", backref=db.backref("subscriptions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "plan_id": self.plan_id,
            "status": self.status,
            "token_balance": self.token_balance,
            "auto_renew": self.auto_renew,
            "start_date": to_utc_z(self.start_date),
            "end_date": to_utc_z(self.end_date),
            "current_period_start": to_utc_z(self.current_period_start),
            "current_period_end": to_utc_z(self.current_period_end),
            "gateway_reference": self.gateway_reference,
        }


class TokenUsage(db.Model):
    """Append-only usage audit row. One row per successful deduction."""
    __tablename__ = "token_usage"
    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_token_usage_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    subscription_id = db.Column(
        db.Integer, db.ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount = db.Column(db.Integer, nullable=False)
    description = db.Column(db.Text, nullable=False)
    used_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "subscription_id": self.subscription_id,
            "amount": self.amount,
            "description": self.description,
            "used_at": to_utc_z(self.used_at),
        }
