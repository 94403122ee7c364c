from __future__ import annotations

from ..extensions import db


VAT_RATE_CODES = ("standard", "zero", "exempt", "reverse_charge")


class ProductCategory(db.Model):
    """
    Catalog category with an optional parent.

    INVARIANT: parent chains are acyclic (checked by catalog_service on
    every parent_id write).
    """
    __tablename__ = "product_categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=True)
    parent_id = db.Column(db.Integer, db.ForeignKey("product_categories.id"), nullable=True, index=True)

    parent = db.relationship("ProductCategory", remote_side=[id], backref=db.backref("children", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "parent_id": self.parent_id,
        }


class Product(db.Model):
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    sku = db.Column(db.String(64), nullable=True, unique=True)
    category_id = db.Column(db.Integer, db.ForeignKey("product_categories.id"), nullable=True, index=True)

    # Authoritative storage in cents
    internal_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    price_cents = db.Column(db.Integer, nullable=False)
    token_cost = db.Column(db.Integer, nullable=False, default=0)
    vat_rate = db.Column(db.String(16), nullable=False, default="standard")

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    category = db.relationship("ProductCategory", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "sku": self.sku,
            "category_id": self.category_id,
            "internal_cost_cents": self.internal_cost_cents,
            "price_cents": self.price_cents,
            "token_cost": self.token_cost,
            "vat_rate": self.vat_rate,
            "is_active": self.is_active,
        }
