# backend/billdesk/routes/products.py
"""
Catalog routes: products and product categories.

Reads require a session; writes require catalog management rights
(admin, finance).
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth
from ..services import catalog_service


products_bp = Blueprint("products", __name__, url_prefix="/api")


def _payload() -> dict:
    return request.get_json(silent=True) or {}


def _flag(name: str) -> bool:
    return request.args.get(name, "").lower() in ("1", "true", "yes")


@products_bp.get("/products")
@require_auth
def list_products_route():
    products = catalog_service.list_products(
        include_inactive=_flag("include_inactive"),
        category_id=request.args.get("category_id", type=int),
    )
    return jsonify([p.to_dict() for p in products]), 200


@products_bp.post("/products")
@require_auth
def create_product_route():
    return jsonify(catalog_service.create_product(g.actor, _payload()).to_dict()), 201


@products_bp.patch("/products/<int:product_id>")
@require_auth
def update_product_route(product_id: int):
    return jsonify(catalog_service.update_product(g.actor, product_id, _payload()).to_dict()), 200


@products_bp.delete("/products/<int:product_id>")
@require_auth
def delete_product_route(product_id: int):
    catalog_service.delete_product(g.actor, product_id)
    return jsonify({"ok": True}), 200


@products_bp.get("/product-categories")
@require_auth
def list_categories_route():
    return jsonify([c.to_dict() for c in catalog_service.list_categories()]), 200


@products_bp.post("/product-categories")
@require_auth
def create_category_route():
    return jsonify(catalog_service.create_category(g.actor, _payload()).to_dict()), 201


@products_bp.patch("/product-categories/<int:category_id>")
@require_auth
def update_category_route(category_id: int):
    return jsonify(catalog_service.update_category(g.actor, category_id, _payload()).to_dict()), 200


@products_bp.delete("/product-categories/<int:category_id>")
@require_auth
def delete_category_route(category_id: int):
    catalog_service.delete_category(g.actor, category_id)
    return jsonify({"ok": True}), 200
