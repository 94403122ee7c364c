# backend/billdesk/routes/users.py
"""
User management routes.

Admin-only except GET/PATCH on one's own record and change-password.
Self-administration (approving, suspending or re-roling yourself) is refused
by the policy layer.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth
from ..services import user_service


users_bp = Blueprint("users", __name__, url_prefix="/api/users")


def _payload() -> dict:
    return request.get_json(silent=True) or {}


@users_bp.get("")
@require_auth
def list_users_route():
    users = user_service.list_users(
        g.actor,
        role=request.args.get("role"),
        status=request.args.get("status"),
    )
    return jsonify([u.to_dict() for u in users]), 200


@users_bp.get("/pending")
@require_auth
def list_pending_route():
    return jsonify([u.to_dict() for u in user_service.list_pending_users(g.actor)]), 200


@users_bp.get("/<int:user_id>")
@require_auth
def get_user_route(user_id: int):
    return jsonify(user_service.view_user(g.actor, user_id).to_dict()), 200


@users_bp.post("")
@require_auth
def create_user_route():
    user = user_service.admin_create_user(g.actor, _payload())
    return jsonify(user.to_dict()), 201


@users_bp.patch("/<int:user_id>")
@require_auth
def update_user_route(user_id: int):
    user = user_service.update_profile(g.actor, user_id, _payload())
    return jsonify(user.to_dict()), 200


@users_bp.post("/<int:user_id>/approve")
@require_auth
def approve_user_route(user_id: int):
    user = user_service.approve_user(g.actor, user_id, role=_payload().get("role"))
    return jsonify(user.to_dict()), 200


@users_bp.post("/<int:user_id>/suspend")
@require_auth
def suspend_user_route(user_id: int):
    user = user_service.suspend_user(g.actor, user_id, _payload().get("reason"))
    return jsonify(user.to_dict()), 200


@users_bp.post("/<int:user_id>/reactivate")
@require_auth
def reactivate_user_route(user_id: int):
    return jsonify(user_service.reactivate_user(g.actor, user_id).to_dict()), 200


@users_bp.patch("/<int:user_id>/role")
@require_auth
def change_role_route(user_id: int):
    user = user_service.change_role(g.actor, user_id, _payload().get("role"))
    return jsonify(user.to_dict()), 200


@users_bp.patch("/<int:user_id>/discount-limit")
@require_auth
def discount_limit_route(user_id: int):
    user = user_service.set_discount_limit(g.actor, user_id, _payload().get("discount_limit"))
    return jsonify(user.to_dict()), 200


@users_bp.post("/<int:user_id>/reset-password")
@require_auth
def reset_password_route(user_id: int):
    user_service.reset_password(g.actor, user_id, _payload().get("new_password"))
    return jsonify({"message": "Password reset; all sessions revoked"}), 200


@users_bp.post("/<int:user_id>/change-password")
@require_auth
def change_password_route(user_id: int):
    data = _payload()
    user_service.change_password(g.actor, user_id, data.get("current_password"), data.get("new_password"))
    return jsonify({"message": "Password changed; please log in again"}), 200
