# Overview: Products and product categories.

"""
Catalog service.

RULES:
- Category parent chains are acyclic. Every parent_id write walks the
  proposed parent's ancestors and refuses the change if it reaches the
  category itself (A -> B -> A, not only A -> A).
- A category with children or products cannot be deleted.
- Product SKUs are unique when present.
"""

from __future__ import annotations

from ..errors import InvalidStateTransitionError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Product, ProductCategory
from ..models.catalog import VAT_RATE_CODES
from ..policy import Action, Actor, require
from ..validation import ModelValidationPolicy, validate_payload


PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "description", "sku", "category_id", "internal_cost_cents",
        "price_cents", "token_cost", "vat_rate", "is_active",
    },
    required_on_create={"name", "price_cents"},
    enums={"vat_rate": VAT_RATE_CODES},
)

CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "parent_id"},
    required_on_create={"name"},
)


# =============================================================================
# CATEGORIES
# =============================================================================

def list_categories() -> list[ProductCategory]:
    return db.session.query(ProductCategory).order_by(ProductCategory.name.asc(), ProductCategory.id.asc()).all()


def get_category(category_id: int) -> ProductCategory:
    category = db.session.get(ProductCategory, category_id)
    if not category:
        raise NotFoundError("Category not found")
    return category


def check_parent(category_id: int | None, parent_id: int | None) -> None:
    """Refuse a parent assignment that would close a cycle."""
    if parent_id is None:
        return
    if category_id is not None and parent_id == category_id:
        raise ValidationError("A category cannot be its own parent")

    seen: set[int] = set()
    current = get_category(parent_id)
    while current is not None:
        if category_id is not None and current.id == category_id:
            raise ValidationError("Category parent would create a cycle")
        if current.id in seen:
            # Pre-existing loop in stored data
            raise ValidationError("Category hierarchy contains a cycle")
        seen.add(current.id)
        current = current.parent


def create_category(actor: Actor, payload: dict) -> ProductCategory:
    require(Action.CATALOG_MANAGE, actor)
    patch = validate_payload(model=ProductCategory, payload=payload, policy=CATEGORY_POLICY, partial=False)
    check_parent(None, patch.get("parent_id"))
    category = ProductCategory(**patch)
    db.session.add(category)
    db.session.commit()
    return category


def update_category(actor: Actor, category_id: int, payload: dict) -> ProductCategory:
    require(Action.CATALOG_MANAGE, actor)
    category = get_category(category_id)
    patch = validate_payload(model=ProductCategory, payload=payload, policy=CATEGORY_POLICY, partial=True)
    if "parent_id" in patch:
        check_parent(category.id, patch["parent_id"])
    for key, value in patch.items():
        setattr(category, key, value)
    db.session.commit()
    return category


def delete_category(actor: Actor, category_id: int) -> None:
    require(Action.CATALOG_MANAGE, actor)
    category = get_category(category_id)
    if category.children:
        raise InvalidStateTransitionError("Category has subcategories")
    if category.products:
        raise InvalidStateTransitionError("Category has products")
    db.session.delete(category)
    db.session.commit()


# =============================================================================
# PRODUCTS
# =============================================================================

def list_products(*, include_inactive: bool = False, category_id: int | None = None) -> list[Product]:
    query = db.session.query(Product)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)
    return query.order_by(Product.name.asc(), Product.id.asc()).all()


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if not product:
        raise NotFoundError("Product not found")
    return product


def _check_product_patch(patch: dict, *, product_id: int | None = None) -> None:
    if patch.get("token_cost") is not None and patch["token_cost"] < 0:
        raise ValidationError("token_cost must be >= 0")
    if patch.get("category_id") is not None:
        get_category(patch["category_id"])
    if patch.get("sku"):
        query = db.session.query(Product.id).filter(Product.sku == patch["sku"])
        if product_id is not None:
            query = query.filter(Product.id != product_id)
        if query.first():
            raise ValidationError(f"SKU '{patch['sku']}' already exists")
    elif "sku" in patch:
        patch["sku"] = None


def create_product(actor: Actor, payload: dict) -> Product:
    require(Action.CATALOG_MANAGE, actor)
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    _check_product_patch(patch)
    product = Product(**patch)
    db.session.add(product)
    db.session.commit()
    return product


def update_product(actor: Actor, product_id: int, payload: dict) -> Product:
    require(Action.CATALOG_MANAGE, actor)
    product = get_product(product_id)
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    _check_product_patch(patch, product_id=product.id)
    for key, value in patch.items():
        setattr(product, key, value)
    db.session.commit()
    return product


def delete_product(actor: Actor, product_id: int) -> None:
    require(Action.CATALOG_MANAGE, actor)
    product = get_product(product_id)
    db.session.delete(product)
    db.session.commit()
