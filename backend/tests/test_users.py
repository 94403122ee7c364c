"""
Registration, approval and account administration.
"""

from conftest import PASSWORD
from billdesk.extensions import db
from billdesk.models import SecurityEvent, SessionToken, User


def _register(client, **overrides):
    body = {
        "username": "newbie",
        "email": "Newbie@Example.com",
        "password": "longenough",
        "name": "New User",
    }
    body.update(overrides)
    return client.post("/api/register", json=body)


def _login(client, username, password=PASSWORD):
    return client.post("/api/login", json={"username": username, "password": password})


class TestRegistration:
    def test_register_starts_pending(self, client):
        resp = _register(client)
        assert resp.status_code == 201
        assert resp.json["user"]["status"] == "pending"
        assert resp.json["user"]["role"] == "customer"
        assert resp.json["user"]["email"] == "newbie@example.com"
        assert "password_hash" not in resp.json["user"]

    def test_pending_user_cannot_log_in(self, client):
        _register(client)
        resp = _login(client, "newbie", "longenough")
        assert resp.status_code == 401
        assert resp.json["message"] == "Account pending approval"

    def test_admin_role_not_self_assignable(self, client):
        resp = _register(client, role="admin")
        assert resp.status_code == 400

    def test_short_password(self, client):
        resp = _register(client, password="short")
        assert resp.status_code == 400
        assert "at least 8" in resp.json["message"]

    def test_duplicate_email(self, client):
        _register(client)
        resp = _register(client, username="other")
        assert resp.status_code == 400

    def test_failed_login_is_audited(self, client, customer):
        resp = _login(client, "customer", "wrong-password")
        assert resp.status_code == 401
        assert resp.json["message"] == "Invalid credentials"
        assert db.session.query(SecurityEvent).filter_by(event_type="LOGIN_FAILED").count() == 1


class TestApproval:
    def test_approve_then_login(self, client, admin_headers):
        user_id = _register(client).json["user"]["id"]

        resp = client.get("/api/users/pending", headers=admin_headers)
        assert [u["id"] for u in resp.json] == [user_id]

        resp = client.post(f"/api/users/{user_id}/approve", json={}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["status"] == "active"

        resp = _login(client, "newbie", "longenough")
        assert resp.status_code == 200
        assert resp.json["token"]
        assert resp.json["user"]["last_login_at"] is not None

    def test_approve_with_role(self, client, admin_headers):
        user_id = _register(client, role="sales").json["user"]["id"]
        resp = client.post(f"/api/users/{user_id}/approve", json={"role": "finance"}, headers=admin_headers)
        assert resp.json["role"] == "finance"

    def test_approve_active_user_conflicts(self, client, admin_headers, customer):
        resp = client.post(f"/api/users/{customer.id}/approve", json={}, headers=admin_headers)
        assert resp.status_code == 409

    def test_approval_is_audited(self, client, admin, admin_headers):
        user_id = _register(client).json["user"]["id"]
        client.post(f"/api/users/{user_id}/approve", json={}, headers=admin_headers)
        event = db.session.query(SecurityEvent).filter_by(event_type="USER_APPROVED").one()
        assert event.user_id == admin.id
        assert event.target_user_id == user_id


class TestAdministration:
    def test_suspend_revokes_sessions(self, client, admin_headers, customer, customer_headers):
        resp = client.post(f"/api/users/{customer.id}/suspend", json={"reason": "Fraud check"}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["status"] == "suspended"

        assert client.get("/api/user", headers=customer_headers).status_code == 401
        resp = _login(client, "customer")
        assert resp.status_code == 401
        assert resp.json["message"] == "Account suspended: Fraud check"

    def test_suspend_requires_reason(self, client, admin_headers, customer):
        resp = client.post(f"/api/users/{customer.id}/suspend", json={}, headers=admin_headers)
        assert resp.status_code == 400

    def test_pending_user_cannot_be_suspended(self, client, admin_headers):
        user_id = _register(client).json["user"]["id"]
        resp = client.post(f"/api/users/{user_id}/suspend", json={"reason": "Spam"}, headers=admin_headers)
        assert resp.status_code == 409
        assert db.session.get(User, user_id).status == "pending"

    def test_reactivate(self, client, admin_headers, customer):
        client.post(f"/api/users/{customer.id}/suspend", json={"reason": "x"}, headers=admin_headers)
        resp = client.post(f"/api/users/{customer.id}/reactivate", json={}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["status"] == "active"
        assert resp.json["suspension_reason"] is None

    def test_admin_cannot_suspend_self(self, client, admin, admin_headers):
        resp = client.post(f"/api/users/{admin.id}/suspend", json={"reason": "oops"}, headers=admin_headers)
        assert resp.status_code == 403
        assert resp.json["message"] == "Cannot suspend yourself"

    def test_admin_cannot_change_own_role(self, client, admin, admin_headers):
        resp = client.patch(f"/api/users/{admin.id}/role", json={"role": "sales"}, headers=admin_headers)
        assert resp.status_code == 403

    def test_change_role(self, client, admin_headers, sales):
        resp = client.patch(f"/api/users/{sales.id}/role", json={"role": "finance"}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["role"] == "finance"

    def test_set_discount_limit(self, client, admin_headers, sales):
        resp = client.patch(
            f"/api/users/{sales.id}/discount-limit", json={"discount_limit": 25}, headers=admin_headers
        )
        assert resp.status_code == 200
        assert resp.json["discount_limit"] == 25.0

    def test_discount_limit_bounds(self, client, admin_headers, sales):
        resp = client.patch(
            f"/api/users/{sales.id}/discount-limit", json={"discount_limit": 150}, headers=admin_headers
        )
        assert resp.status_code == 400

    def test_admin_create_user_is_active(self, client, admin_headers):
        resp = client.post(
            "/api/users",
            json={"username": "rep2", "email": "rep2@example.com", "password": "longenough",
                  "name": "Rep Two", "role": "sales"},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        assert resp.json["status"] == "active"
        assert resp.json["role"] == "sales"

    def test_customer_edits_own_profile(self, client, customer, customer_headers):
        resp = client.patch(f"/api/users/{customer.id}", json={"company": "Acme"}, headers=customer_headers)
        assert resp.status_code == 200
        assert resp.json["company"] == "Acme"

    def test_profile_cannot_set_role(self, client, customer, customer_headers):
        resp = client.patch(f"/api/users/{customer.id}", json={"role": "admin"}, headers=customer_headers)
        assert resp.status_code == 400
        assert db.session.get(User, customer.id).role == "customer"


class TestPasswords:
    def test_change_password_revokes_sessions(self, client, customer, customer_headers):
        resp = client.post(
            f"/api/users/{customer.id}/change-password",
            json={"current_password": PASSWORD, "new_password": "brand-new-pass"},
            headers=customer_headers,
        )
        assert resp.status_code == 200
        assert client.get("/api/user", headers=customer_headers).status_code == 401
        assert _login(client, "customer", "brand-new-pass").status_code == 200

    def test_change_password_wrong_current(self, client, customer, customer_headers):
        resp = client.post(
            f"/api/users/{customer.id}/change-password",
            json={"current_password": "nope-nope", "new_password": "brand-new-pass"},
            headers=customer_headers,
        )
        assert resp.status_code == 400

    def test_cannot_change_someone_elses_password(self, client, customer, admin_headers):
        resp = client.post(
            f"/api/users/{customer.id}/change-password",
            json={"current_password": PASSWORD, "new_password": "brand-new-pass"},
            headers=admin_headers,
        )
        assert resp.status_code == 403

    def test_admin_reset_password(self, client, admin_headers, customer, customer_headers):
        resp = client.post(
            f"/api/users/{customer.id}/reset-password", json={"new_password": "reset-pass-1"}, headers=admin_headers
        )
        assert resp.status_code == 200
        assert db.session.query(SessionToken).filter_by(user_id=customer.id, is_revoked=False).count() == 0
        assert _login(client, "customer", "reset-pass-1").status_code == 200


class TestSessions:
    def test_logout_revokes_token(self, client, customer):
        token = _login(client, "customer").json["token"]
        headers = {"Authorization": f"Bearer {token}"}
        assert client.get("/api/user", headers=headers).status_code == 200
        assert client.post("/api/logout", headers=headers).status_code == 200
        assert client.get("/api/user", headers=headers).status_code == 401

    def test_login_by_email(self, client, customer):
        resp = client.post("/api/login", json={"email": "customer@example.com", "password": PASSWORD})
        assert resp.status_code == 200
