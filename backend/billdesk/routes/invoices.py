# backend/billdesk/routes/invoices.py
from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth
from ..services import invoice_service


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


def _payload() -> dict:
    return request.get_json(silent=True) or {}


@invoices_bp.get("")
@require_auth
def list_invoices_route():
    invoices = invoice_service.list_invoices(
        g.actor,
        status=request.args.get("status"),
        user_id=request.args.get("user_id", type=int),
    )
    return jsonify([i.to_dict() for i in invoices]), 200


@invoices_bp.post("")
@require_auth
def create_invoice_route():
    return jsonify(invoice_service.create_invoice(g.actor, _payload()).to_dict()), 201


@invoices_bp.get("/<int:invoice_id>")
@require_auth
def get_invoice_route(invoice_id: int):
    return jsonify(invoice_service.get_invoice(g.actor, invoice_id).to_dict()), 200


@invoices_bp.put("/<int:invoice_id>/status")
@require_auth
def update_status_route(invoice_id: int):
    data = _payload()
    invoice = invoice_service.update_status(
        g.actor,
        invoice_id,
        data.get("status"),
        payment_method=data.get("payment_method"),
        payment_reference=data.get("payment_reference"),
    )
    return jsonify(invoice.to_dict()), 200
