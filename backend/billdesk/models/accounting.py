from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


ACCOUNT_TYPES = ("asset", "liability", "equity", "income", "expense")
EXPENSE_CATEGORIES = ("utilities", "software", "marketing", "office", "payroll", "other")


class Account(db.Model):
    """Named ledger account with a running balance (cents)."""
    __tablename__ = "accounts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    account_number = db.Column(db.String(32), nullable=True, unique=True)
    type = db.Column(db.String(16), nullable=False)
    description = db.Column(db.Text, nullable=True)
    balance_cents = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "account_number": self.account_number,
            "type": self.type,
            "description": self.description,
            "balance_cents": self.balance_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class AccountTransaction(db.Model):
    """
    Append-only account movement. amount_cents is signed.

    Account.balance_cents always equals the sum of its transactions.
    """
    __tablename__ = "account_transactions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.Text, nullable=False)
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)

    account = db.relationship("Account", backref=db.backref("transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "amount_cents": self.amount_cents,
            "description": self.description,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "created_by": self.created_by,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class Expense(db.Model):
    """
    Business expense with input VAT.

    STATE MACHINE: pending -> {approved, rejected}. Only pending expenses
    may be edited or deleted.
    """
    __tablename__ = "expenses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    vat_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    vat_rate = db.Column(db.Numeric(5, 2), nullable=False, default=5)
    vat_recoverable = db.Column(db.Boolean, nullable=False, default=True)
    expense_date = db.Column(db.Date, nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(32), nullable=False, default="other")
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    payment_method = db.Column(db.String(64), nullable=True)
    payment_reference = db.Column(db.String(128), nullable=True)
    receipt_url = db.Column(db.String(512), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    account = db.relationship("Account", backref=db.backref("expenses", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "amount_cents": self.amount_cents,
            "vat_amount_cents": self.vat_amount_cents,
            "vat_rate": float(self.vat_rate) if self.vat_rate is not None else None,
            "vat_recoverable": self.vat_recoverable,
            "expense_date": to_iso_date(self.expense_date),
            "description": self.description,
            "category": self.category,
            "account_id": self.account_id,
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "receipt_url": self.receipt_url,
            "status": self.status,
            "created_by": self.created_by,
            "approved_by": self.approved_by,
            "approved_at": to_utc_z(self.approved_at),
            "rejection_reason": self.rejection_reason,
            "created_at": to_utc_z(self.created_at),
        }


class VatReturn(db.Model):
    """
    VAT return for a period.

    INVARIANT: net_vat_cents == output_vat_cents - input_vat_cents.
    STATE MACHINE: draft -> submitted -> paid. Only drafts are editable.
    """
    __tablename__ = "vat_returns"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    period_start = db.Column(db.Date, nullable=False)
    period_end = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=False)
    output_vat_cents = db.Column(db.Integer, nullable=False, default=0)
    input_vat_cents = db.Column(db.Integer, nullable=False, default=0)
    net_vat_cents = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default="draft", index=True)
    reference_number = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "period_start": to_iso_date(self.period_start),
            "period_end": to_iso_date(self.period_end),
            "due_date": to_iso_date(self.due_date),
            "output_vat_cents": self.output_vat_cents,
            "input_vat_cents": self.input_vat_cents,
            "net_vat_cents": self.net_vat_cents,
            "status": self.status,
            "reference_number": self.reference_number,
            "notes": self.notes,
            "submitted_at": to_utc_z(self.submitted_at),
            "paid_at": to_utc_z(self.paid_at),
            "created_at": to_utc_z(self.created_at),
        }
