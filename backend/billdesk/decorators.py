# Overview: Request decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .policy import Actor
from .services import session_service


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def require_auth(f):
    """
    Require a valid bearer session.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.actor: policy.Actor (id, role, discount_limit) for authorization checks
    - g.session_token: The plaintext token (for logout)

    Returns 401 if the header is missing, the token is invalid or expired, or
    the account is no longer active.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if not token:
            return jsonify({"message": "Authentication required"}), 401

        user = session_service.validate_session(token)
        if not user:
            return jsonify({"message": "Invalid or expired token"}), 401

        g.current_user = user
        g.actor = Actor.from_user(user)
        g.session_token = token

        return f(*args, **kwargs)

    return decorated_function
