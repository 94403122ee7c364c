# backend/billdesk/routes/reports.py
from flask import Blueprint, g, jsonify

from ..decorators import require_auth
from ..services import reporting_service


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/metrics")
@require_auth
def metrics_route():
    return jsonify(reporting_service.metrics(g.actor)), 200
