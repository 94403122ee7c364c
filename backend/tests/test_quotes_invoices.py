"""
Quote lifecycle, quote-to-invoice conversion and invoice status changes.
"""

import pytest

from conftest import QUOTE_ITEMS
from billdesk.extensions import db
from billdesk.models import Invoice, Quote


def _create_quote(client, headers, customer, **extra):
    body = {"user_id": customer.id, "items": QUOTE_ITEMS, "vat_percent": 5}
    body.update(extra)
    resp = client.post("/api/quotes", json=body, headers=headers)
    assert resp.status_code == 201, resp.json
    return resp.json


class TestQuoteCreation:
    def test_totals_and_number(self, client, admin_headers, customer):
        quote = _create_quote(client, admin_headers, customer, discount_percent=10)
        assert quote["quote_number"] == "QT-000001"
        assert quote["status"] == "pending"
        assert quote["subtotal_cents"] == 10000
        assert quote["discount_amount_cents"] == 1000
        assert quote["vat_amount_cents"] == 450
        assert quote["total_cents"] == 9450
        assert quote["expiry_date"] is not None

    def test_numbers_are_sequential(self, client, admin_headers, customer):
        first = _create_quote(client, admin_headers, customer)
        second = _create_quote(client, admin_headers, customer)
        assert first["quote_number"] == "QT-000001"
        assert second["quote_number"] == "QT-000002"

    def test_default_vat(self, client, admin_headers, customer):
        resp = client.post(
            "/api/quotes",
            json={"user_id": customer.id, "items": QUOTE_ITEMS},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        assert resp.json["vat_percent"] == 5.0

    def test_sales_within_limit(self, client, sales_headers, customer):
        quote = _create_quote(client, sales_headers, customer, discount_percent=10)
        assert quote["discount_percent"] == 10.0

    def test_sales_over_limit_refused(self, client, sales_headers, customer):
        resp = client.post(
            "/api/quotes",
            json={"user_id": customer.id, "items": QUOTE_ITEMS, "discount_percent": 15},
            headers=sales_headers,
        )
        assert resp.status_code == 403
        assert resp.json["message"] == "Discount exceeds your limit of 10%. Please submit for approval."
        assert db.session.query(Quote).count() == 0

    def test_customer_cannot_create(self, client, customer_headers, customer):
        resp = client.post(
            "/api/quotes",
            json={"user_id": customer.id, "items": QUOTE_ITEMS},
            headers=customer_headers,
        )
        assert resp.status_code == 403

    def test_empty_items_rejected(self, client, admin_headers, customer):
        resp = client.post("/api/quotes", json={"user_id": customer.id, "items": []}, headers=admin_headers)
        assert resp.status_code == 400


class TestQuoteVisibility:
    def test_customer_sees_only_own(self, client, admin_headers, customer, other_customer, customer_headers):
        _create_quote(client, admin_headers, customer)
        _create_quote(client, admin_headers, other_customer)

        resp = client.get("/api/quotes", headers=customer_headers)
        assert resp.status_code == 200
        assert [q["user_id"] for q in resp.json] == [customer.id]

    def test_customer_cannot_view_foreign_quote(self, client, admin_headers, other_customer, customer_headers):
        quote = _create_quote(client, admin_headers, other_customer)
        resp = client.get(f"/api/quotes/{quote['id']}", headers=customer_headers)
        assert resp.status_code == 403


class TestQuoteTransitions:
    def test_customer_accepts_own_quote(self, client, admin_headers, customer, customer_headers):
        quote = _create_quote(client, admin_headers, customer)
        resp = client.put(f"/api/quotes/{quote['id']}/status", json={"status": "accepted"}, headers=customer_headers)
        assert resp.status_code == 200
        assert resp.json["status"] == "accepted"

    def test_customer_cannot_expire(self, client, admin_headers, customer, customer_headers):
        quote = _create_quote(client, admin_headers, customer)
        resp = client.put(f"/api/quotes/{quote['id']}/status", json={"status": "expired"}, headers=customer_headers)
        assert resp.status_code == 403

    def test_customer_cannot_answer_foreign_quote(self, client, admin_headers, other_customer, customer_headers):
        quote = _create_quote(client, admin_headers, other_customer)
        resp = client.put(f"/api/quotes/{quote['id']}/status", json={"status": "accepted"}, headers=customer_headers)
        assert resp.status_code == 403

    def test_terminal_quote_is_final_for_staff(self, client, admin_headers, sales_headers, customer):
        quote = _create_quote(client, admin_headers, customer)
        client.put(f"/api/quotes/{quote['id']}/status", json={"status": "rejected"}, headers=sales_headers)
        resp = client.put(f"/api/quotes/{quote['id']}/status", json={"status": "accepted"}, headers=sales_headers)
        assert resp.status_code == 409

    def test_admin_can_reopen(self, client, admin_headers, customer):
        quote = _create_quote(client, admin_headers, customer)
        client.put(f"/api/quotes/{quote['id']}/status", json={"status": "rejected"}, headers=admin_headers)
        resp = client.put(f"/api/quotes/{quote['id']}/status", json={"status": "pending"}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["status"] == "pending"

    def test_same_status_refused(self, client, admin_headers, customer):
        quote = _create_quote(client, admin_headers, customer)
        resp = client.put(f"/api/quotes/{quote['id']}/status", json={"status": "pending"}, headers=admin_headers)
        assert resp.status_code == 409

    def test_unknown_status(self, client, admin_headers, customer):
        quote = _create_quote(client, admin_headers, customer)
        resp = client.put(f"/api/quotes/{quote['id']}/status", json={"status": "won"}, headers=admin_headers)
        assert resp.status_code == 400


class TestConversion:
    def _accepted_quote(self, client, admin_headers, customer, customer_headers):
        quote = _create_quote(client, admin_headers, customer, discount_percent=10)
        client.put(f"/api/quotes/{quote['id']}/status", json={"status": "accepted"}, headers=customer_headers)
        return quote

    def test_convert_accepted_quote(self, client, admin_headers, customer, customer_headers):
        quote = self._accepted_quote(client, admin_headers, customer, customer_headers)
        resp = client.post(f"/api/quotes/{quote['id']}/invoice", json={}, headers=admin_headers)
        assert resp.status_code == 201
        invoice = resp.json
        assert invoice["invoice_number"] == "INV-000001"
        assert invoice["quote_id"] == quote["id"]
        assert invoice["user_id"] == customer.id
        assert invoice["items"] == quote["items"]
        assert invoice["discount_percent"] == 10.0
        assert invoice["total_cents"] == 9450
        assert invoice["status"] == "pending"

    def test_convert_keeps_fixed_discount_amount(self, client, admin_headers, customer, customer_headers):
        quote = _create_quote(
            client, admin_headers, customer,
            items=[{"name": "Retainer", "price_cents": 30001, "quantity": 1}],
            discount_amount_cents=10000,
        )
        assert quote["discount_amount_cents"] == 10000
        client.put(f"/api/quotes/{quote['id']}/status", json={"status": "accepted"}, headers=customer_headers)

        invoice = client.post(f"/api/quotes/{quote['id']}/invoice", json={}, headers=admin_headers).json
        assert invoice["discount_amount_cents"] == 10000
        assert invoice["discount_percent"] == quote["discount_percent"] == 33.33
        assert invoice["vat_amount_cents"] == quote["vat_amount_cents"] == 1000
        assert invoice["total_cents"] == quote["total_cents"] == 21001

    def test_convert_twice_refused(self, client, admin_headers, customer, customer_headers):
        quote = self._accepted_quote(client, admin_headers, customer, customer_headers)
        client.post(f"/api/quotes/{quote['id']}/invoice", json={}, headers=admin_headers)
        resp = client.post(f"/api/quotes/{quote['id']}/invoice", json={}, headers=admin_headers)
        assert resp.status_code == 409
        assert db.session.query(Invoice).count() == 1

    def test_pending_quote_cannot_convert(self, client, admin_headers, customer):
        quote = _create_quote(client, admin_headers, customer)
        resp = client.post(f"/api/quotes/{quote['id']}/invoice", json={}, headers=admin_headers)
        assert resp.status_code == 409

    def test_sales_cannot_convert(self, client, admin_headers, sales_headers, customer, customer_headers):
        quote = self._accepted_quote(client, admin_headers, customer, customer_headers)
        resp = client.post(f"/api/quotes/{quote['id']}/invoice", json={}, headers=sales_headers)
        assert resp.status_code == 403

    def test_invoice_endpoint_with_quote_id(self, client, finance_headers, admin_headers, customer, customer_headers):
        quote = self._accepted_quote(client, admin_headers, customer, customer_headers)
        resp = client.post("/api/invoices", json={"quote_id": quote["id"]}, headers=finance_headers)
        assert resp.status_code == 201
        assert resp.json["quote_id"] == quote["id"]


class TestInvoiceStatus:
    def _invoice(self, client, headers, customer):
        resp = client.post(
            "/api/invoices",
            json={"user_id": customer.id, "items": QUOTE_ITEMS, "vat_percent": 5},
            headers=headers,
        )
        assert resp.status_code == 201, resp.json
        return resp.json

    def test_direct_invoice_totals(self, client, finance_headers, customer):
        invoice = self._invoice(client, finance_headers, customer)
        assert invoice["total_cents"] == 10500
        assert invoice["due_date"] is not None

    def test_direct_invoice_fixed_discount(self, client, finance_headers, customer):
        resp = client.post(
            "/api/invoices",
            json={"user_id": customer.id, "items": QUOTE_ITEMS, "vat_percent": 5, "discount_amount_cents": 500},
            headers=finance_headers,
        )
        assert resp.status_code == 201
        assert resp.json["discount_amount_cents"] == 500
        assert resp.json["discount_percent"] == 5.0
        assert resp.json["total_cents"] == 9975

    def test_direct_invoice_rejects_both_discounts(self, client, finance_headers, customer):
        resp = client.post(
            "/api/invoices",
            json={
                "user_id": customer.id,
                "items": QUOTE_ITEMS,
                "discount_percent": 5,
                "discount_amount_cents": 500,
            },
            headers=finance_headers,
        )
        assert resp.status_code == 400
        assert db.session.query(Invoice).count() == 0

    def test_mark_paid_stamps_payment(self, client, finance_headers, customer):
        invoice = self._invoice(client, finance_headers, customer)
        resp = client.put(
            f"/api/invoices/{invoice['id']}/status",
            json={"status": "paid", "payment_method": "bank_transfer", "payment_reference": "TX-1"},
            headers=finance_headers,
        )
        assert resp.status_code == 200
        assert resp.json["status"] == "paid"
        assert resp.json["paid_date"] is not None
        assert resp.json["payment_method"] == "bank_transfer"
        assert resp.json["payment_reference"] == "TX-1"

    def test_paid_is_terminal(self, client, finance_headers, customer):
        invoice = self._invoice(client, finance_headers, customer)
        client.put(f"/api/invoices/{invoice['id']}/status", json={"status": "paid"}, headers=finance_headers)
        resp = client.put(f"/api/invoices/{invoice['id']}/status", json={"status": "overdue"}, headers=finance_headers)
        assert resp.status_code == 409

    def test_overdue_then_paid(self, client, finance_headers, customer):
        invoice = self._invoice(client, finance_headers, customer)
        resp = client.put(f"/api/invoices/{invoice['id']}/status", json={"status": "overdue"}, headers=finance_headers)
        assert resp.json["status"] == "overdue"
        resp = client.put(f"/api/invoices/{invoice['id']}/status", json={"status": "paid"}, headers=finance_headers)
        assert resp.json["status"] == "paid"
        assert resp.json["payment_method"] == "manual"

    @pytest.mark.parametrize("headers_fixture", ["sales_headers", "customer_headers"])
    def test_status_change_requires_finance(self, request, client, finance_headers, customer, headers_fixture):
        invoice = self._invoice(client, finance_headers, customer)
        headers = request.getfixturevalue(headers_fixture)
        resp = client.put(f"/api/invoices/{invoice['id']}/status", json={"status": "paid"}, headers=headers)
        assert resp.status_code == 403

    def test_customer_sees_own_invoices(self, client, finance_headers, customer, other_customer, customer_headers):
        self._invoice(client, finance_headers, customer)
        self._invoice(client, finance_headers, other_customer)
        resp = client.get("/api/invoices", headers=customer_headers)
        assert [i["user_id"] for i in resp.json] == [customer.id]
