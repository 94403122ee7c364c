# backend/billdesk/routes/auth.py
"""
Authentication API routes.

- POST /api/register: self-registration, account starts pending
- POST /api/login: bearer token for active accounts
- POST /api/logout: revoke the presented token
- GET /api/user: the current user
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth
from ..errors import AuthenticationError
from ..services import audit_service, auth_service, session_service


auth_bp = Blueprint("auth", __name__, url_prefix="/api")


@auth_bp.post("/register")
def register_route():
    payload = request.get_json(silent=True) or {}
    user = auth_service.register_user(payload)
    return jsonify({
        "user": user.to_dict(),
        "message": "Registration received. Your account is pending administrator approval.",
    }), 201


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be included in Authorization header for protected routes.
    Failed attempts are recorded as LOGIN_FAILED security events.
    """
    data = request.get_json(silent=True) or {}
    identifier = data.get("username") or data.get("email")
    password = data.get("password")

    user_agent = request.headers.get("User-Agent")
    ip_address = request.remote_addr

    try:
        user = auth_service.authenticate(identifier, password)
    except AuthenticationError as exc:
        audit_service.log_security_event(
            user_id=None,
            event_type="LOGIN_FAILED",
            success=False,
            resource=request.path,
            action=request.method,
            reason=f"{identifier}: {exc.message}",
            ip_address=ip_address,
            user_agent=user_agent,
            commit=True,
        )
        raise

    session, token = session_service.create_session(
        user_id=user.id,
        user_agent=user_agent,
        ip_address=ip_address,
    )

    return jsonify({
        "user": user.to_dict(),
        "token": token,
        "session": session.to_dict(),
        "message": "Login successful",
    }), 200


@auth_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(g.session_token, reason="User logout")
    return jsonify({"message": "Logged out"}), 200


@auth_bp.get("/user")
@require_auth
def current_user_route():
    return jsonify(g.current_user.to_dict()), 200
