from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


def _pct(value) -> float | None:
    return float(value) if value is not None else None


class PricedDocumentMixin:
    """
    Money columns shared by quotes and invoices.

    INVARIANT: total_cents == subtotal_cents - discount_amount_cents + vat_amount_cents.
    All five are written together by pricing_service.apply_totals, never one by one.
    """
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_percent = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    discount_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    vat_percent = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    vat_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    # Frozen snapshot: [{name, description, price_cents, quantity}]
    items = db.Column(db.JSON, nullable=False, default=list)

    def money_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "discount_percent": _pct(self.discount_percent),
            "discount_amount_cents": self.discount_amount_cents,
            "vat_percent": _pct(self.vat_percent),
            "vat_amount_cents": self.vat_amount_cents,
            "total_cents": self.total_cents,
            "items": list(self.items or []),
        }


class Quote(PricedDocumentMixin, db.Model):
    """
    Non-binding proposed sale.

    STATE MACHINE: pending -> {accepted, rejected, expired}
    """
    __tablename__ = "quotes"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    quote_number = db.Column(db.String(32), nullable=False, unique=True)
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    expiry_date = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("User", foreign_keys=[user_id])
    creator = db.relationship("User", foreign_keys=[created_by])

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Quote id={self.id} number={self.quote_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "created_by": self.created_by,
            "quote_number": self.quote_number,
            "status": self.status,
            "expiry_date": to_utc_z(self.expiry_date),
            "notes": self.notes,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }
        data.update(self.money_dict())
        return data


class Invoice(PricedDocumentMixin, db.Model):
    """
    Binding bill.

    STATE MACHINE: pending -> {paid, overdue}, overdue -> paid.
    'paid' is only ever set by invoice_service.mark_invoice_as_paid.
    """
    __tablename__ = "invoices"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    quote_id = db.Column(db.Integer, db.ForeignKey("quotes.id"), nullable=True, unique=True)
    invoice_number = db.Column(db.String(32), nullable=False, unique=True)
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    due_date = db.Column(db.DateTime(timezone=True), nullable=False)
    paid_date = db.Column(db.DateTime(timezone=True), nullable=True)
    payment_method = db.Column(db.String(64), nullable=True)
    payment_reference = db.Column(db.String(128), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("User", foreign_keys=[user_id])
    quote = db.relationship("Quote", backref=db.backref("invoice", uselist=False))

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} number={self.invoice_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "quote_id": self.quote_id,
            "invoice_number": self.invoice_number,
            "status": self.status,
            "due_date": to_utc_z(self.due_date),
            "paid_date": to_utc_z(self.paid_date),
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "notes": self.notes,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }
        data.update(self.money_dict())
        return data


class DiscountRequest(db.Model):
    """
    Escalation of a discount above the requester's limit.

    STATE MACHINE: pending -> {approved, rejected}; decided requests are final.
    Exactly one of discount_percent / discount_amount_cents is set.
    """
    __tablename__ = "discount_requests"
    __table_args__ = (
        db.CheckConstraint(
            "(discount_percent IS NULL) != (discount_amount_cents IS NULL)",
            name="ck_discount_requests_percent_xor_amount",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    requested_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    quote_id = db.Column(db.Integer, db.ForeignKey("quotes.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    discount_percent = db.Column(db.Numeric(5, 2), nullable=True)
    discount_amount_cents = db.Column(db.Integer, nullable=True)
    reason = db.Column(db.Text, nullable=False)
    decision_notes = db.Column(db.Text, nullable=True)

    requested_at = db.Column(db.DateTime(timezone=True), nullable=False)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)

    quote = db.relationship("Quote", backref=db.backref("discount_requests", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "requested_by": self.requested_by,
            "approved_by": self.approved_by,
            "quote_id": self.quote_id,
            "status": self.status,
            "discount_percent": _pct(self.discount_percent),
            "discount_amount_cents": self.discount_amount_cents,
            "reason": self.reason,
            "decision_notes": self.decision_notes,
            "requested_at": to_utc_z(self.requested_at),
            "decided_at": to_utc_z(self.decided_at),
        }


class DocumentSequence(db.Model):
    """Per-document-type counter used to allocate quote/invoice numbers."""
    __tablename__ = "document_sequences"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, unique=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
