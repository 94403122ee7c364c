"""
Pytest fixtures for billdesk backend tests.

Provides a fresh in-memory application per test, one active user per role
and bearer-token headers for the API client.
"""

import bcrypt
import pytest

from billdesk import create_app
from billdesk.config import TestConfig
from billdesk.extensions import db
from billdesk.models import Plan, Subscription, User
from billdesk.policy import Actor
from billdesk.services import session_service
from billdesk.time_utils import add_months, utcnow


PASSWORD = "Password123!"

# Cheap hash shared by fixture users; bcrypt.checkpw accepts any cost factor
PASSWORD_HASH = bcrypt.hashpw(PASSWORD.encode("utf-8"), bcrypt.gensalt(rounds=4)).decode("utf-8")


@pytest.fixture(scope='function')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


def make_user(username: str, role: str, *, status: str = "active", discount_limit=10) -> User:
    user = User(
        username=username,
        email=f"{username}@example.com",
        name=username.replace("_", " ").title(),
        password_hash=PASSWORD_HASH,
        role=role,
        status=status,
        discount_limit=discount_limit,
    )
    db.session.add(user)
    db.session.commit()
    return user


def auth_headers(user: User) -> dict:
    """Helper to create Authorization headers for a fresh session."""
    _, token = session_service.create_session(user_id=user.id)
    return {'Authorization': f'Bearer {token}'}


def actor_for(user: User) -> Actor:
    return Actor.from_user(user)


@pytest.fixture(scope='function')
def admin(app):
    return make_user("admin", "admin", discount_limit=100)


@pytest.fixture(scope='function')
def sales(app):
    return make_user("sales_rep", "sales", discount_limit=10)


@pytest.fixture(scope='function')
def finance(app):
    return make_user("finance", "finance", discount_limit=0)


@pytest.fixture(scope='function')
def customer(app):
    return make_user("customer", "customer", discount_limit=0)


@pytest.fixture(scope='function')
def other_customer(app):
    return make_user("other_customer", "customer", discount_limit=0)


@pytest.fixture(scope='function')
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture(scope='function')
def sales_headers(sales):
    return auth_headers(sales)


@pytest.fixture(scope='function')
def finance_headers(finance):
    return auth_headers(finance)


@pytest.fixture(scope='function')
def customer_headers(customer):
    return auth_headers(customer)


@pytest.fixture(scope='function')
def other_customer_headers(other_customer):
    return auth_headers(other_customer)


@pytest.fixture(scope='function')
def plan(app):
    plan = Plan(
        name="Starter",
        description="Test plan",
        price_cents=900,
        token_amount=500,
        is_active=True,
        features={},
    )
    db.session.add(plan)
    db.session.commit()
    return plan


def make_subscription(user: User, plan: Plan, *, balance: int | None = None, status: str = "active") -> Subscription:
    now = utcnow()
    sub = Subscription(
        user_id=user.id,
        plan_id=plan.id,
        status=status,
        token_balance=plan.token_amount if balance is None else balance,
        auto_renew=True,
        start_date=now,
        end_date=add_months(now, 1),
        current_period_start=now,
        current_period_end=add_months(now, 1),
    )
    db.session.add(sub)
    db.session.commit()
    return sub


QUOTE_ITEMS = [{"name": "Consulting", "price_cents": 10000, "quantity": 1}]
