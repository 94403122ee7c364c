# backend/billdesk/routes/quotes.py
"""
Quote routes.

PUT /api/quotes/<id>/discount answers 200 when the discount was applied and
202 when it was queued as a discount request for admin approval.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth
from ..services import invoice_service, quote_service


quotes_bp = Blueprint("quotes", __name__, url_prefix="/api/quotes")


def _payload() -> dict:
    return request.get_json(silent=True) or {}


@quotes_bp.get("")
@require_auth
def list_quotes_route():
    quotes = quote_service.list_quotes(
        g.actor,
        status=request.args.get("status"),
        user_id=request.args.get("user_id", type=int),
    )
    return jsonify([q.to_dict() for q in quotes]), 200


@quotes_bp.post("")
@require_auth
def create_quote_route():
    return jsonify(quote_service.create_quote(g.actor, _payload()).to_dict()), 201


@quotes_bp.get("/<int:quote_id>")
@require_auth
def get_quote_route(quote_id: int):
    return jsonify(quote_service.get_quote(g.actor, quote_id).to_dict()), 200


@quotes_bp.put("/<int:quote_id>/status")
@require_auth
def update_status_route(quote_id: int):
    quote = quote_service.update_status(g.actor, quote_id, _payload().get("status"))
    return jsonify(quote.to_dict()), 200


@quotes_bp.put("/<int:quote_id>/discount")
@require_auth
def apply_discount_route(quote_id: int):
    quote, discount_request = quote_service.apply_discount(g.actor, quote_id, _payload())
    if discount_request is not None:
        return jsonify({
            "message": "Discount exceeds your limit; request submitted for approval",
            "discount_request": discount_request.to_dict(),
            "quote": quote.to_dict(),
        }), 202
    return jsonify(quote.to_dict()), 200


@quotes_bp.post("/<int:quote_id>/invoice")
@require_auth
def convert_quote_route(quote_id: int):
    invoice = invoice_service.create_from_quote(g.actor, quote_id, _payload())
    return jsonify(invoice.to_dict()), 201
