"""
Discount limits and the admin approval queue.

Sales users may discount up to their personal limit. Anything above that
becomes a pending request which only an admin decides, exactly once.
"""

from decimal import Decimal

from conftest import QUOTE_ITEMS, actor_for
from billdesk.extensions import db
from billdesk.models import DiscountRequest, Quote
from billdesk.services import discount_service


UNEVEN_ITEMS = [{"name": "Retainer", "price_cents": 30001, "quantity": 1}]


def _quote(client, headers, customer, items=QUOTE_ITEMS, vat_percent=5):
    resp = client.post(
        "/api/quotes",
        json={"user_id": customer.id, "items": items, "vat_percent": vat_percent},
        headers=headers,
    )
    assert resp.status_code == 201, resp.json
    return resp.json


class TestDirectDiscount:
    def test_within_limit_applies(self, client, sales_headers, customer):
        quote = _quote(client, sales_headers, customer)
        resp = client.put(f"/api/quotes/{quote['id']}/discount", json={"discount_percent": 10}, headers=sales_headers)
        assert resp.status_code == 200
        assert resp.json["discount_percent"] == 10.0
        assert resp.json["total_cents"] == 9450

    def test_fixed_amount_is_normalized(self, client, sales_headers, customer):
        quote = _quote(client, sales_headers, customer)
        resp = client.put(
            f"/api/quotes/{quote['id']}/discount", json={"discount_amount_cents": 500}, headers=sales_headers
        )
        assert resp.status_code == 200
        assert resp.json["discount_percent"] == 5.0
        assert resp.json["discount_amount_cents"] == 500

    def test_fixed_amount_is_exact_on_uneven_subtotal(self, client, sales_headers, customer):
        quote = _quote(client, sales_headers, customer, items=UNEVEN_ITEMS, vat_percent=0)
        resp = client.put(
            f"/api/quotes/{quote['id']}/discount", json={"discount_amount_cents": 1000}, headers=sales_headers
        )
        assert resp.status_code == 200
        assert resp.json["discount_amount_cents"] == 1000
        assert resp.json["discount_percent"] == 3.33
        assert resp.json["total_cents"] == 29001

    def test_over_limit_without_reason_refused(self, client, sales_headers, customer):
        quote = _quote(client, sales_headers, customer)
        resp = client.put(f"/api/quotes/{quote['id']}/discount", json={"discount_percent": 15}, headers=sales_headers)
        assert resp.status_code == 403
        assert "limit of 10%" in resp.json["message"]
        assert db.session.query(DiscountRequest).count() == 0

    def test_over_limit_with_reason_is_queued(self, client, sales_headers, customer):
        quote = _quote(client, sales_headers, customer)
        resp = client.put(
            f"/api/quotes/{quote['id']}/discount",
            json={"discount_percent": 15, "reason": "Loyal customer"},
            headers=sales_headers,
        )
        assert resp.status_code == 202
        assert resp.json["discount_request"]["status"] == "pending"
        assert resp.json["discount_request"]["user_id"] == customer.id
        # Nothing applied yet
        assert resp.json["quote"]["discount_percent"] == 0.0
        assert resp.json["quote"]["total_cents"] == 10500

    def test_admin_has_no_limit(self, client, admin_headers, customer):
        quote = _quote(client, admin_headers, customer)
        resp = client.put(f"/api/quotes/{quote['id']}/discount", json={"discount_percent": 60}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["discount_amount_cents"] == 6000

    def test_finance_cannot_discount(self, client, admin_headers, finance_headers, customer):
        quote = _quote(client, admin_headers, customer)
        resp = client.put(f"/api/quotes/{quote['id']}/discount", json={"discount_percent": 1}, headers=finance_headers)
        assert resp.status_code == 403

    def test_exactly_one_discount_field(self, client, sales_headers, customer):
        quote = _quote(client, sales_headers, customer)
        resp = client.put(
            f"/api/quotes/{quote['id']}/discount",
            json={"discount_percent": 5, "discount_amount_cents": 100},
            headers=sales_headers,
        )
        assert resp.status_code == 400


class TestApprovalQueue:
    def _queue(self, client, sales_headers, customer, percent=15):
        quote = _quote(client, sales_headers, customer)
        resp = client.post(
            "/api/discount-requests",
            json={"quote_id": quote["id"], "discount_percent": percent, "reason": "Competitor offer"},
            headers=sales_headers,
        )
        assert resp.status_code == 201, resp.json
        return quote, resp.json

    def test_request_requires_reason(self, client, sales_headers, customer):
        quote = _quote(client, sales_headers, customer)
        resp = client.post(
            "/api/discount-requests",
            json={"quote_id": quote["id"], "discount_percent": 15},
            headers=sales_headers,
        )
        assert resp.status_code == 400

    def test_admin_sees_pending_queue(self, client, sales_headers, admin_headers, customer):
        _, req = self._queue(client, sales_headers, customer)
        resp = client.get("/api/discount-requests", headers=admin_headers)
        assert resp.status_code == 200
        assert [r["id"] for r in resp.json] == [req["id"]]

    def test_sales_sees_own_requests(self, client, sales_headers, customer):
        _, req = self._queue(client, sales_headers, customer)
        resp = client.get("/api/discount-requests", headers=sales_headers)
        assert [r["id"] for r in resp.json] == [req["id"]]

    def test_customer_cannot_list(self, client, customer_headers):
        resp = client.get("/api/discount-requests", headers=customer_headers)
        assert resp.status_code == 403

    def test_approve_applies_discount(self, client, sales_headers, admin_headers, admin, customer):
        quote, req = self._queue(client, sales_headers, customer)
        resp = client.put(f"/api/discount-requests/{req['id']}/approve", json={"notes": "ok"}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["status"] == "approved"
        assert resp.json["approved_by"] == admin.id
        assert resp.json["decision_notes"] == "ok"
        assert resp.json["decided_at"] is not None
        assert resp.json["quote"]["discount_percent"] == 15.0
        assert resp.json["quote"]["discount_amount_cents"] == 1500
        # (10000 - 1500) * 5% = 425
        assert resp.json["quote"]["total_cents"] == 8925

    def test_reject_uses_default_notes(self, client, sales_headers, admin_headers, customer):
        quote, req = self._queue(client, sales_headers, customer)
        resp = client.put(f"/api/discount-requests/{req['id']}/reject", json={}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["status"] == "rejected"
        assert resp.json["decision_notes"] == "Rejected"
        assert db.session.get(Quote, quote["id"]).discount_percent == Decimal("0")

    def test_decide_twice_conflicts(self, client, sales_headers, admin_headers, customer):
        _, req = self._queue(client, sales_headers, customer)
        first = client.put(f"/api/discount-requests/{req['id']}/approve", json={}, headers=admin_headers)
        second = client.put(f"/api/discount-requests/{req['id']}/reject", json={}, headers=admin_headers)
        assert first.status_code == 200
        assert second.status_code == 409
        assert db.session.get(DiscountRequest, req["id"]).status == "approved"

    def test_sales_cannot_decide(self, client, sales_headers, customer):
        _, req = self._queue(client, sales_headers, customer)
        resp = client.put(f"/api/discount-requests/{req['id']}/approve", json={}, headers=sales_headers)
        assert resp.status_code == 403

    def test_unknown_request(self, client, admin_headers):
        resp = client.put("/api/discount-requests/999/approve", json={}, headers=admin_headers)
        assert resp.status_code == 404

    def test_approval_uses_live_subtotal(self, client, sales, sales_headers, admin, customer):
        quote_resp = client.post(
            "/api/quotes",
            json={"user_id": customer.id, "items": QUOTE_ITEMS, "vat_percent": 0},
            headers=sales_headers,
        )
        quote_id = quote_resp.json["id"]
        req = discount_service.create_request(
            actor_for(sales),
            reason="Volume",
            quote_id=quote_id,
            discount_amount_cents=2000,
        )

        # Subtotal doubles after the request was raised
        quote = db.session.get(Quote, quote_id)
        quote.items = [{"name": "Consulting", "description": "", "price_cents": 10000, "quantity": 2}]
        quote.subtotal_cents = 20000
        quote.total_cents = 20000
        db.session.commit()

        discount_service.approve_request(actor_for(admin), req.id)

        quote = db.session.get(Quote, quote_id)
        assert quote.discount_percent == Decimal("10.00")
        assert quote.discount_amount_cents == 2000
        assert quote.total_cents == 18000

    def test_amount_approval_is_exact(self, client, sales_headers, admin_headers, customer):
        quote = _quote(client, sales_headers, customer, items=UNEVEN_ITEMS, vat_percent=0)
        resp = client.post(
            "/api/discount-requests",
            json={"quote_id": quote["id"], "discount_amount_cents": 10000, "reason": "Annual prepay"},
            headers=sales_headers,
        )
        assert resp.status_code == 201

        resp = client.put(f"/api/discount-requests/{resp.json['id']}/approve", json={}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["quote"]["discount_amount_cents"] == 10000
        assert resp.json["quote"]["discount_percent"] == 33.33
        assert resp.json["quote"]["total_cents"] == 20001

    def test_approval_on_closed_quote_refused(self, client, sales_headers, admin_headers, customer):
        quote, req = self._queue(client, sales_headers, customer)
        client.put(f"/api/quotes/{quote['id']}/status", json={"status": "rejected"}, headers=admin_headers)
        resp = client.put(f"/api/discount-requests/{req['id']}/approve", json={}, headers=admin_headers)
        assert resp.status_code == 409
        assert db.session.get(DiscountRequest, req["id"]).status == "pending"
