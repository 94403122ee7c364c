# backend/billdesk/routes/discounts.py
"""
Discount approval queue.

Sales and admins raise requests; only admins decide them. A request that
has already been decided answers 409.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth
from ..services import discount_service


discounts_bp = Blueprint("discounts", __name__, url_prefix="/api/discount-requests")


def _payload() -> dict:
    return request.get_json(silent=True) or {}


@discounts_bp.get("")
@require_auth
def list_requests_route():
    requests_ = discount_service.list_requests(g.actor, status=request.args.get("status"))
    return jsonify([r.to_dict() for r in requests_]), 200


@discounts_bp.post("")
@require_auth
def create_request_route():
    return jsonify(discount_service.request_from_payload(g.actor, _payload()).to_dict()), 201


@discounts_bp.put("/<int:request_id>/approve")
@require_auth
def approve_request_route(request_id: int):
    req = discount_service.approve_request(g.actor, request_id, _payload().get("notes"))
    data = req.to_dict()
    if req.quote is not None:
        data["quote"] = req.quote.to_dict()
    return jsonify(data), 200


@discounts_bp.put("/<int:request_id>/reject")
@require_auth
def reject_request_route(request_id: int):
    req = discount_service.reject_request(g.actor, request_id, _payload().get("notes"))
    return jsonify(req.to_dict()), 200
