# backend/billdesk/routes/payments.py
from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth
from ..services import payment_service


payments_bp = Blueprint("payments", __name__, url_prefix="/api")


@payments_bp.post("/create-payment-intent")
@require_auth
def create_payment_intent_route():
    payload = request.get_json(silent=True) or {}
    return jsonify(payment_service.create_payment_intent(g.actor, payload)), 201
