# backend/billdesk/routes/accounting.py
"""
Accounting routes: accounts, account transactions, expenses and VAT returns.

Accounts and VAT returns are admin/finance only. Any staff member may file
an expense; approving or rejecting one is admin/finance only.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth
from ..services import accounting_service, vat_service


accounting_bp = Blueprint("accounting", __name__, url_prefix="/api")


def _payload() -> dict:
    return request.get_json(silent=True) or {}


# =============================================================================
# ACCOUNTS
# =============================================================================

@accounting_bp.get("/accounts")
@require_auth
def list_accounts_route():
    accounts = accounting_service.list_accounts(
        g.actor,
        include_inactive=request.args.get("active_only", "").lower() not in ("1", "true", "yes"),
        account_type=request.args.get("type"),
    )
    return jsonify([a.to_dict() for a in accounts]), 200


@accounting_bp.get("/accounts/summary")
@require_auth
def accounts_summary_route():
    return jsonify(accounting_service.accounts_summary(g.actor)), 200


@accounting_bp.post("/accounts")
@require_auth
def create_account_route():
    return jsonify(accounting_service.create_account(g.actor, _payload()).to_dict()), 201


@accounting_bp.patch("/accounts/<int:account_id>")
@require_auth
def update_account_route(account_id: int):
    return jsonify(accounting_service.update_account(g.actor, account_id, _payload()).to_dict()), 200


@accounting_bp.delete("/accounts/<int:account_id>")
@require_auth
def delete_account_route(account_id: int):
    accounting_service.delete_account(g.actor, account_id)
    return jsonify({"ok": True}), 200


@accounting_bp.get("/accounts/<int:account_id>/transactions")
@require_auth
def list_transactions_route(account_id: int):
    txns = accounting_service.list_transactions(g.actor, account_id)
    return jsonify([t.to_dict() for t in txns]), 200


@accounting_bp.post("/accounts/<int:account_id>/transactions")
@require_auth
def record_transaction_route(account_id: int):
    txn = accounting_service.record_transaction(g.actor, account_id, _payload())
    return jsonify(txn.to_dict()), 201


# =============================================================================
# EXPENSES
# =============================================================================

@accounting_bp.get("/expenses")
@require_auth
def list_expenses_route():
    expenses = accounting_service.list_expenses(g.actor, status=request.args.get("status"))
    return jsonify([e.to_dict() for e in expenses]), 200


@accounting_bp.get("/expenses/summary")
@require_auth
def expenses_summary_route():
    return jsonify(accounting_service.expenses_summary(g.actor)), 200


@accounting_bp.post("/expenses")
@require_auth
def create_expense_route():
    return jsonify(accounting_service.create_expense(g.actor, _payload()).to_dict()), 201


@accounting_bp.patch("/expenses/<int:expense_id>")
@require_auth
def update_expense_route(expense_id: int):
    return jsonify(accounting_service.update_expense(g.actor, expense_id, _payload()).to_dict()), 200


@accounting_bp.delete("/expenses/<int:expense_id>")
@require_auth
def delete_expense_route(expense_id: int):
    accounting_service.delete_expense(g.actor, expense_id)
    return jsonify({"ok": True}), 200


@accounting_bp.post("/expenses/<int:expense_id>/approve")
@require_auth
def approve_expense_route(expense_id: int):
    return jsonify(accounting_service.approve_expense(g.actor, expense_id).to_dict()), 200


@accounting_bp.post("/expenses/<int:expense_id>/reject")
@require_auth
def reject_expense_route(expense_id: int):
    expense = accounting_service.reject_expense(g.actor, expense_id, _payload().get("reason"))
    return jsonify(expense.to_dict()), 200


# =============================================================================
# VAT RETURNS
# =============================================================================

@accounting_bp.get("/vat-returns")
@require_auth
def list_vat_returns_route():
    returns = vat_service.list_returns(g.actor, status=request.args.get("status"))
    return jsonify([r.to_dict() for r in returns]), 200


@accounting_bp.get("/vat-returns/summary")
@require_auth
def vat_summary_route():
    return jsonify(vat_service.returns_summary(g.actor)), 200


@accounting_bp.post("/vat-returns/calculate")
@require_auth
def calculate_vat_route():
    return jsonify(vat_service.calculate(g.actor, _payload()).to_dict()), 200


@accounting_bp.post("/vat-returns")
@require_auth
def create_vat_return_route():
    return jsonify(vat_service.create_return(g.actor, _payload()).to_dict()), 201


@accounting_bp.patch("/vat-returns/<int:vat_return_id>")
@require_auth
def update_vat_return_route(vat_return_id: int):
    return jsonify(vat_service.update_return(g.actor, vat_return_id, _payload()).to_dict()), 200


@accounting_bp.delete("/vat-returns/<int:vat_return_id>")
@require_auth
def delete_vat_return_route(vat_return_id: int):
    vat_service.delete_return(g.actor, vat_return_id)
    return jsonify({"ok": True}), 200


@accounting_bp.post("/vat-returns/<int:vat_return_id>/submit")
@require_auth
def submit_vat_return_route(vat_return_id: int):
    vat_return = vat_service.submit_return(g.actor, vat_return_id, _payload().get("reference_number"))
    return jsonify(vat_return.to_dict()), 200


@accounting_bp.post("/vat-returns/<int:vat_return_id>/pay")
@require_auth
def pay_vat_return_route(vat_return_id: int):
    return jsonify(vat_service.pay_return(g.actor, vat_return_id).to_dict()), 200
