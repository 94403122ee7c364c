# Overview: Ledger accounts, account transactions and expenses.

"""
Accounting service.

INVARIANTS:
- Account.balance_cents equals the sum of its AccountTransaction amounts.
  Balances only change through post_transaction, which writes both under
  a row lock.
- Expenses are editable and deletable only while pending.
- Approving an expense posts its gross amount (amount + VAT) to the
  expense's account in the same transaction.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from sqlalchemy import func

from ..errors import InvalidStateTransitionError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Account, AccountTransaction, Expense
from ..models.accounting import ACCOUNT_TYPES, EXPENSE_CATEGORIES
from ..policy import Action, Actor, can, require
from ..time_utils import utcnow
from ..validation import MAX_AMOUNT_CENTS, ModelValidationPolicy, coerce_int, validate_payload
from .concurrency import lock_for_update, run_with_retry
from .pricing_service import HUNDRED, round_half_up


logger = logging.getLogger(__name__)

EXPENSE_STATUSES = ("pending", "approved", "rejected")

ACCOUNT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "account_number", "type", "description", "is_active"},
    required_on_create={"name", "type"},
    enums={"type": ACCOUNT_TYPES},
)

EXPENSE_POLICY = ModelValidationPolicy(
    writable_fields={
        "title", "amount_cents", "vat_amount_cents", "vat_rate", "vat_recoverable",
        "expense_date", "description", "category", "account_id", "payment_method",
        "payment_reference", "receipt_url",
    },
    required_on_create={"title", "amount_cents", "expense_date", "account_id"},
    enums={"category": EXPENSE_CATEGORIES},
)


# =============================================================================
# ACCOUNTS
# =============================================================================

def get_account(account_id: int) -> Account:
    account = db.session.get(Account, account_id)
    if not account:
        raise NotFoundError("Account not found")
    return account


def list_accounts(actor: Actor, *, include_inactive: bool = True, account_type: str | None = None) -> list[Account]:
    require(Action.ACCOUNTING_VIEW, actor)
    query = db.session.query(Account)
    if not include_inactive:
        query = query.filter(Account.is_active.is_(True))
    if account_type:
        query = query.filter(Account.type == account_type)
    return query.order_by(Account.type.asc(), Account.name.asc(), Account.id.asc()).all()


def _check_account_number(patch: dict, *, account_id: int | None = None) -> None:
    number = patch.get("account_number")
    if not number:
        if "account_number" in patch:
            patch["account_number"] = None
        return
    query = db.session.query(Account.id).filter(Account.account_number == number)
    if account_id is not None:
        query = query.filter(Account.id != account_id)
    if query.first():
        raise ValidationError(f"Account number '{number}' already exists")


def create_account(actor: Actor, payload: dict) -> Account:
    require(Action.ACCOUNTING_MANAGE, actor)
    patch = validate_payload(model=Account, payload=payload, policy=ACCOUNT_POLICY, partial=False)
    _check_account_number(patch)
    account = Account(balance_cents=0, **patch)
    db.session.add(account)
    db.session.commit()
    return account


def update_account(actor: Actor, account_id: int, payload: dict) -> Account:
    require(Action.ACCOUNTING_MANAGE, actor)
    account = get_account(account_id)
    patch = validate_payload(model=Account, payload=payload, policy=ACCOUNT_POLICY, partial=True)
    _check_account_number(patch, account_id=account.id)
    for key, value in patch.items():
        setattr(account, key, value)
    db.session.commit()
    return account


def delete_account(actor: Actor, account_id: int) -> None:
    """Accounts with history are deactivated instead; delete only empty ones."""
    require(Action.ACCOUNTING_MANAGE, actor)
    account = get_account(account_id)
    if account.transactions or account.expenses:
        raise InvalidStateTransitionError("Account has transactions or expenses; deactivate it instead")
    db.session.delete(account)
    db.session.commit()


def accounts_summary(actor: Actor) -> dict:
    require(Action.ACCOUNTING_VIEW, actor)
    rows = (
        db.session.query(Account.type, func.coalesce(func.sum(Account.balance_cents), 0), func.count(Account.id))
        .filter(Account.is_active.is_(True))
        .group_by(Account.type)
        .all()
    )
    totals = {f"{t}_total_cents": 0 for t in ACCOUNT_TYPES}
    count = 0
    for account_type, balance, n in rows:
        totals[f"{account_type}_total_cents"] = int(balance)
        count += n
    totals["accounts_count"] = count
    return totals


def post_transaction(
    account_id: int,
    amount_cents: int,
    description: str,
    *,
    created_by: int | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
) -> AccountTransaction:
    """
    Apply a signed movement to an account. Does not commit.
    """
    if amount_cents == 0:
        raise ValidationError("amount_cents must not be zero")
    if abs(amount_cents) > MAX_AMOUNT_CENTS:
        raise ValidationError("amount_cents exceeds maximum")

    account = lock_for_update(db.session.query(Account).filter(Account.id == account_id)).first()
    if not account:
        raise NotFoundError("Account not found")
    if not account.is_active:
        raise ValidationError("Account is inactive")

    account.balance_cents = (account.balance_cents or 0) + amount_cents
    txn = AccountTransaction(
        account_id=account.id,
        amount_cents=amount_cents,
        description=description,
        reference_type=reference_type,
        reference_id=reference_id,
        created_by=created_by,
        occurred_at=utcnow(),
    )
    db.session.add(txn)
    return txn


def record_transaction(actor: Actor, account_id: int, payload: dict) -> AccountTransaction:
    require(Action.ACCOUNTING_MANAGE, actor)
    if payload.get("amount_cents") in (None, ""):
        raise ValidationError("amount_cents is required")
    amount = coerce_int("amount_cents", payload["amount_cents"])
    description = str(payload.get("description") or "").strip()
    if not description:
        raise ValidationError("description is required")

    def _op() -> AccountTransaction:
        txn = post_transaction(
            account_id,
            amount,
            description,
            created_by=actor.id,
            reference_type=payload.get("reference_type"),
            reference_id=(
                coerce_int("reference_id", payload["reference_id"])
                if payload.get("reference_id") is not None else None
            ),
        )
        db.session.commit()
        return txn

    return run_with_retry(_op)


def list_transactions(actor: Actor, account_id: int) -> list[AccountTransaction]:
    require(Action.ACCOUNTING_VIEW, actor)
    account = get_account(account_id)
    return (
        db.session.query(AccountTransaction)
        .filter(AccountTransaction.account_id == account.id)
        .order_by(AccountTransaction.occurred_at.desc(), AccountTransaction.id.desc())
        .all()
    )


# =============================================================================
# EXPENSES
# =============================================================================

def get_expense(expense_id: int) -> Expense:
    expense = db.session.get(Expense, expense_id)
    if not expense:
        raise NotFoundError("Expense not found")
    return expense


def _fill_vat(patch: dict, expense: Expense | None = None) -> None:
    """Derive vat_amount_cents from amount and rate unless given explicitly."""
    if "vat_amount_cents" in patch and patch["vat_amount_cents"] is not None:
        return
    if not {"amount_cents", "vat_rate", "vat_recoverable"} & patch.keys():
        return

    amount = patch.get("amount_cents", expense.amount_cents if expense else 0)
    rate = patch.get("vat_rate", expense.vat_rate if expense else None)
    if rate is None:
        rate = Decimal("5")
    if Decimal(rate) < 0 or Decimal(rate) > HUNDRED:
        raise ValidationError("vat_rate must be between 0 and 100")
    recoverable = patch.get("vat_recoverable", expense.vat_recoverable if expense else True)

    patch["vat_amount_cents"] = round_half_up(Decimal(amount) * Decimal(rate) / HUNDRED) if recoverable else 0


def _check_expense_patch(patch: dict) -> None:
    if patch.get("amount_cents") is not None and patch["amount_cents"] <= 0:
        raise ValidationError("amount_cents must be > 0")
    if patch.get("account_id") is not None:
        get_account(patch["account_id"])


def list_expenses(actor: Actor, *, status: str | None = None) -> list[Expense]:
    query = db.session.query(Expense)
    if not can(Action.ACCOUNTING_VIEW, actor):
        query = query.filter(Expense.created_by == actor.id)
    if status:
        if status not in EXPENSE_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(EXPENSE_STATUSES)}")
        query = query.filter(Expense.status == status)
    return query.order_by(Expense.expense_date.desc(), Expense.id.desc()).all()


def view_expense(actor: Actor, expense_id: int) -> Expense:
    expense = get_expense(expense_id)
    require(Action.EXPENSE_EDIT, actor, expense)
    return expense


def create_expense(actor: Actor, payload: dict) -> Expense:
    require(Action.EXPENSE_CREATE, actor)
    patch = validate_payload(model=Expense, payload=payload, policy=EXPENSE_POLICY, partial=False)
    _check_expense_patch(patch)
    _fill_vat(patch)
    expense = Expense(status="pending", created_by=actor.id, **patch)
    db.session.add(expense)
    db.session.commit()
    return expense


def _pending_for_edit(actor: Actor, expense_id: int) -> Expense:
    expense = get_expense(expense_id)
    require(Action.EXPENSE_EDIT, actor, expense)
    if expense.status != "pending":
        raise InvalidStateTransitionError(f"Expense is {expense.status}; only pending expenses can be changed")
    return expense


def update_expense(actor: Actor, expense_id: int, payload: dict) -> Expense:
    expense = _pending_for_edit(actor, expense_id)
    patch = validate_payload(model=Expense, payload=payload, policy=EXPENSE_POLICY, partial=True)
    _check_expense_patch(patch)
    _fill_vat(patch, expense)
    for key, value in patch.items():
        setattr(expense, key, value)
    db.session.commit()
    return expense


def delete_expense(actor: Actor, expense_id: int) -> None:
    expense = _pending_for_edit(actor, expense_id)
    db.session.delete(expense)
    db.session.commit()


def approve_expense(actor: Actor, expense_id: int) -> Expense:
    require(Action.EXPENSE_DECIDE, actor)

    def _op() -> Expense:
        expense = lock_for_update(db.session.query(Expense).filter(Expense.id == expense_id)).first()
        if not expense:
            raise NotFoundError("Expense not found")
        if expense.status != "pending":
            raise InvalidStateTransitionError(f"Expense is already {expense.status}")

        expense.status = "approved"
        expense.approved_by = actor.id
        expense.approved_at = utcnow()
        post_transaction(
            expense.account_id,
            expense.amount_cents + (expense.vat_amount_cents or 0),
            f"Expense: {expense.title}",
            created_by=actor.id,
            reference_type="expense",
            reference_id=expense.id,
        )
        db.session.commit()
        return expense

    expense = run_with_retry(_op)
    logger.info("Expense %s approved by user %s", expense.id, actor.id)
    return expense


def reject_expense(actor: Actor, expense_id: int, reason: Any) -> Expense:
    require(Action.EXPENSE_DECIDE, actor)
    reason = str(reason or "").strip()
    if not reason:
        raise ValidationError("A rejection reason is required")

    def _op() -> Expense:
        expense = lock_for_update(db.session.query(Expense).filter(Expense.id == expense_id)).first()
        if not expense:
            raise NotFoundError("Expense not found")
        if expense.status != "pending":
            raise InvalidStateTransitionError(f"Expense is already {expense.status}")
        expense.status = "rejected"
        expense.approved_by = actor.id
        expense.approved_at = utcnow()
        expense.rejection_reason = reason
        db.session.commit()
        return expense

    return run_with_retry(_op)


def expenses_summary(actor: Actor) -> dict:
    require(Action.ACCOUNTING_VIEW, actor)
    rows = (
        db.session.query(
            Expense.status,
            func.coalesce(func.sum(Expense.amount_cents), 0),
            func.count(Expense.id),
        )
        .group_by(Expense.status)
        .all()
    )
    by_status = {status: (int(total), n) for status, total, n in rows}
    return {
        "total_expenses_cents": sum(total for total, _ in by_status.values()),
        "pending_expenses_cents": by_status.get("pending", (0, 0))[0],
        "approved_expenses_cents": by_status.get("approved", (0, 0))[0],
        "pending_count": by_status.get("pending", (0, 0))[1],
        "expenses_count": sum(n for _, n in by_status.values()),
    }
