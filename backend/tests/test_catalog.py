"""
Products and product categories.
"""

from billdesk.extensions import db
from billdesk.models import ProductCategory


def _category(client, headers, name, parent_id=None):
    body = {"name": name}
    if parent_id is not None:
        body["parent_id"] = parent_id
    resp = client.post("/api/product-categories", json=body, headers=headers)
    assert resp.status_code == 201, resp.json
    return resp.json


class TestCategories:
    def test_nested_categories(self, client, admin_headers):
        root = _category(client, admin_headers, "Services")
        child = _category(client, admin_headers, "Consulting", root["id"])
        assert child["parent_id"] == root["id"]

    def test_two_step_cycle_rejected(self, client, admin_headers):
        a = _category(client, admin_headers, "A")
        b = _category(client, admin_headers, "B", a["id"])

        resp = client.patch(f"/api/product-categories/{a['id']}", json={"parent_id": b["id"]}, headers=admin_headers)
        assert resp.status_code == 400
        assert db.session.get(ProductCategory, a["id"]).parent_id is None

    def test_self_parent_rejected(self, client, admin_headers):
        a = _category(client, admin_headers, "A")
        resp = client.patch(f"/api/product-categories/{a['id']}", json={"parent_id": a["id"]}, headers=admin_headers)
        assert resp.status_code == 400

    def test_unknown_parent(self, client, admin_headers):
        resp = client.post("/api/product-categories", json={"name": "Orphan", "parent_id": 999}, headers=admin_headers)
        assert resp.status_code == 404

    def test_delete_with_children_refused(self, client, admin_headers):
        root = _category(client, admin_headers, "Root")
        _category(client, admin_headers, "Leaf", root["id"])
        resp = client.delete(f"/api/product-categories/{root['id']}", headers=admin_headers)
        assert resp.status_code == 409

    def test_delete_empty_category(self, client, finance_headers):
        cat = _category(client, finance_headers, "Temp")
        resp = client.delete(f"/api/product-categories/{cat['id']}", headers=finance_headers)
        assert resp.status_code == 200
        assert db.session.get(ProductCategory, cat["id"]) is None


class TestProducts:
    def test_create_and_list(self, client, admin_headers, customer_headers):
        cat = _category(client, admin_headers, "Software")
        resp = client.post(
            "/api/products",
            json={"name": "Licence", "sku": "LIC-1", "price_cents": 4900, "category_id": cat["id"], "token_cost": 10},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        assert resp.json["vat_rate"] == "standard"

        resp = client.get("/api/products", headers=customer_headers)
        assert resp.status_code == 200
        assert [p["sku"] for p in resp.json] == ["LIC-1"]

    def test_duplicate_sku(self, client, admin_headers):
        client.post("/api/products", json={"name": "A", "sku": "DUP", "price_cents": 100}, headers=admin_headers)
        resp = client.post("/api/products", json={"name": "B", "sku": "DUP", "price_cents": 100}, headers=admin_headers)
        assert resp.status_code == 400

    def test_invalid_vat_rate_code(self, client, admin_headers):
        resp = client.post(
            "/api/products", json={"name": "A", "price_cents": 100, "vat_rate": "luxury"}, headers=admin_headers
        )
        assert resp.status_code == 400

    def test_category_with_products_cannot_be_deleted(self, client, admin_headers):
        cat = _category(client, admin_headers, "Hardware")
        client.post("/api/products", json={"name": "Box", "price_cents": 100, "category_id": cat["id"]},
                    headers=admin_headers)
        resp = client.delete(f"/api/product-categories/{cat['id']}", headers=admin_headers)
        assert resp.status_code == 409

    def test_update_and_deactivate(self, client, admin_headers):
        product = client.post("/api/products", json={"name": "A", "price_cents": 100}, headers=admin_headers).json
        resp = client.patch(
            f"/api/products/{product['id']}", json={"price_cents": 250, "is_active": False}, headers=admin_headers
        )
        assert resp.status_code == 200
        assert resp.json["price_cents"] == 250
        assert client.get("/api/products", headers=admin_headers).json == []
        assert len(client.get("/api/products?include_inactive=true", headers=admin_headers).json) == 1
