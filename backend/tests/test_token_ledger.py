"""
Subscription token ledger.

Verifies:
- Deductions never take a balance below zero
- Every successful deduction writes exactly one usage row
- Concurrent deductions against one balance cannot overspend it
"""

import threading

import pytest

from conftest import actor_for, make_subscription, make_user
from billdesk import create_app
from billdesk.config import TestConfig
from billdesk.errors import AuthorizationError, InsufficientBalanceError, NotFoundError, ValidationError
from billdesk.extensions import db
from billdesk.models import Plan, Subscription, TokenUsage
from billdesk.services import subscription_service


class TestDeduction:
    def test_spend_to_zero_then_refuse(self, app, customer, plan):
        sub = make_subscription(customer, plan, balance=500)

        subscription_service.deduct_tokens(sub.id, 500, "Report generation")
        assert db.session.get(Subscription, sub.id).token_balance == 0

        with pytest.raises(InsufficientBalanceError):
            subscription_service.deduct_tokens(sub.id, 1, "One more")

        assert db.session.get(Subscription, sub.id).token_balance == 0
        assert db.session.query(TokenUsage).filter_by(subscription_id=sub.id).count() == 1

    def test_usage_row_per_deduction(self, app, customer, plan):
        sub = make_subscription(customer, plan, balance=100)
        for _ in range(3):
            subscription_service.deduct_tokens(sub.id, 10, "")

        rows = db.session.query(TokenUsage).filter_by(subscription_id=sub.id).all()
        assert len(rows) == 3
        assert {r.description for r in rows} == {"Token usage"}
        assert db.session.get(Subscription, sub.id).token_balance == 70

    @pytest.mark.parametrize("amount", [0, -5, "abc", 1.5])
    def test_invalid_amount(self, app, customer, plan, amount):
        sub = make_subscription(customer, plan)
        with pytest.raises(ValidationError):
            subscription_service.deduct_tokens(sub.id, amount, "bad")

    def test_unknown_subscription(self, app):
        with pytest.raises(NotFoundError):
            subscription_service.deduct_tokens(12345, 1, "missing")

    def test_customer_cannot_spend_foreign_tokens(self, app, customer, other_customer, plan):
        sub = make_subscription(other_customer, plan)
        with pytest.raises(AuthorizationError):
            subscription_service.deduct_tokens(sub.id, 1, "steal", actor=actor_for(customer))
        assert db.session.get(Subscription, sub.id).token_balance == plan.token_amount


class TestTokenUsageApi:
    def test_deduct_from_active_subscription(self, client, customer, customer_headers, plan):
        make_subscription(customer, plan, balance=500)
        resp = client.post("/api/token-usage", json={"amount": 200, "description": "Export"}, headers=customer_headers)
        assert resp.status_code == 201
        assert resp.json["token_balance"] == 300
        assert resp.json["usage"]["amount"] == 200

    def test_insufficient_balance_is_400(self, client, customer, customer_headers, plan):
        sub = make_subscription(customer, plan, balance=5)
        resp = client.post(
            "/api/token-usage",
            json={"subscription_id": sub.id, "amount": 6},
            headers=customer_headers,
        )
        assert resp.status_code == 400
        assert resp.json["message"] == "Insufficient token balance"

    def test_no_active_subscription(self, client, customer_headers):
        resp = client.post("/api/token-usage", json={"amount": 1}, headers=customer_headers)
        assert resp.status_code == 404

    def test_usage_history_visible_to_owner(self, client, customer, customer_headers, other_customer_headers, plan):
        sub = make_subscription(customer, plan)
        client.post("/api/token-usage", json={"amount": 7}, headers=customer_headers)

        resp = client.get(f"/api/token-usage/{sub.id}", headers=customer_headers)
        assert resp.status_code == 200
        assert [u["amount"] for u in resp.json] == [7]

        resp = client.get(f"/api/token-usage/{sub.id}", headers=other_customer_headers)
        assert resp.status_code == 403

    def test_admin_top_up(self, client, admin_headers, customer, plan):
        sub = make_subscription(customer, plan, balance=0)
        resp = client.post(f"/api/subscriptions/{sub.id}/top-up", json={"amount": 250}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["token_balance"] == 250

    def test_customer_cannot_top_up(self, client, customer, customer_headers, plan):
        sub = make_subscription(customer, plan, balance=0)
        resp = client.post(f"/api/subscriptions/{sub.id}/top-up", json={"amount": 250}, headers=customer_headers)
        assert resp.status_code == 403


@pytest.fixture()
def file_app(tmp_path):
    """File-backed database so worker threads get real, separate connections."""

    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'ledger.sqlite3'}"

    app = create_app(FileConfig)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


class TestConcurrentDeduction:
    WORKERS = 8
    BALANCE = 5

    def test_balance_is_never_overspent(self, file_app):
        with file_app.app_context():
            user = make_user("racer", "customer")
            plan = Plan(name="Race", description="", price_cents=100, token_amount=self.BALANCE, features={})
            db.session.add(plan)
            db.session.commit()
            sub_id = make_subscription(user, plan).id
            db.session.remove()

        barrier = threading.Barrier(self.WORKERS)
        outcomes = []
        lock = threading.Lock()

        def worker():
            with file_app.app_context():
                barrier.wait()
                try:
                    subscription_service.deduct_tokens(sub_id, 1, "race")
                    result = "ok"
                except InsufficientBalanceError:
                    result = "insufficient"
                except Exception as exc:
                    result = repr(exc)
                finally:
                    db.session.remove()
                with lock:
                    outcomes.append(result)

        threads = [threading.Thread(target=worker) for _ in range(self.WORKERS)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert sorted(set(outcomes)) == ["insufficient", "ok"], outcomes
        assert outcomes.count("ok") == self.BALANCE
        assert outcomes.count("insufficient") == self.WORKERS - self.BALANCE

        with file_app.app_context():
            assert db.session.get(Subscription, sub_id).token_balance == 0
            assert db.session.query(TokenUsage).filter_by(subscription_id=sub_id).count() == self.BALANCE
