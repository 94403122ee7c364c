# Overview: Admin user management: approval, suspension, roles, discount limits, passwords.

"""
User approval and role workflow.

LIFECYCLE: pending -> active <-> suspended.

RULES:
- Every operation here is admin-only except profile edits and password
  change on one's own account (see policy.POLICY).
- An admin can never approve, suspend, reactivate, re-role or reset the
  password of their own account (policy.SELF_FORBIDDEN).
- Password changes, resets and suspensions revoke all of the user's sessions.
- Each administrative action is recorded as a SecurityEvent in the same
  transaction.
"""

from __future__ import annotations

import logging
from typing import Any

from ..errors import InvalidStateTransitionError, NotFoundError, ValidationError
from ..extensions import db
from ..models import User
from ..policy import Action, Actor, Role, require
from ..validation import ModelValidationPolicy, coerce_percent, validate_payload
from . import audit_service, auth_service, session_service


logger = logging.getLogger(__name__)

USER_STATUSES = ("pending", "active", "suspended")

PROFILE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "email", "company", "phone"},
)


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


def list_users(actor: Actor, *, role: str | None = None, status: str | None = None) -> list[User]:
    require(Action.USER_LIST, actor)
    query = db.session.query(User)
    if role:
        query = query.filter(User.role == role)
    if status:
        if status not in USER_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(USER_STATUSES)}")
        query = query.filter(User.status == status)
    return query.order_by(User.created_at.desc(), User.id.desc()).all()


def list_pending_users(actor: Actor) -> list[User]:
    require(Action.USER_APPROVE, actor)
    return db.session.query(User).filter(User.status == "pending").order_by(User.id.asc()).all()


def view_user(actor: Actor, user_id: int) -> User:
    user = get_user(user_id)
    require(Action.USER_VIEW, actor, user)
    return user


def admin_create_user(actor: Actor, payload: dict) -> User:
    """Admin-created users are active immediately and may have any role."""
    require(Action.USER_CREATE, actor)
    user = auth_service.create_user(
        username=payload.get("username") or payload.get("email"),
        email=payload.get("email"),
        password=payload.get("password"),
        name=payload.get("name"),
        role=payload.get("role") or Role.CUSTOMER.value,
        status="active",
        discount_limit=(
            coerce_percent("discount_limit", payload["discount_limit"])
            if payload.get("discount_limit") is not None else None
        ),
        company=payload.get("company"),
        phone=payload.get("phone"),
        commit=False,
    )
    db.session.flush()
    audit_service.log_security_event(
        user_id=actor.id, target_user_id=user.id, event_type="USER_CREATED", success=True,
        reason=f"role={user.role}",
    )
    db.session.commit()
    return user


def update_profile(actor: Actor, user_id: int, payload: dict) -> User:
    user = get_user(user_id)
    require(Action.USER_UPDATE_PROFILE, actor, user)

    patch = validate_payload(model=User, payload=payload, policy=PROFILE_POLICY, partial=True)
    if "email" in patch:
        patch["email"] = auth_service.normalize_email(patch["email"])
        auth_service.ensure_unique_identity(user.username, patch["email"], exclude_user_id=user.id)

    for key, value in patch.items():
        setattr(user, key, value)
    db.session.commit()
    return user


def _audit(actor: Actor, user: User, event_type: str, reason: str | None = None) -> None:
    audit_service.log_security_event(
        user_id=actor.id, target_user_id=user.id, event_type=event_type, success=True, reason=reason,
    )


def approve_user(actor: Actor, user_id: int, role: str | None = None) -> User:
    user = get_user(user_id)
    require(Action.USER_APPROVE, actor, user)
    if user.status != "pending":
        raise InvalidStateTransitionError(f"User is {user.status}, not pending")

    if role:
        try:
            user.role = Role.parse(role).value
        except ValueError as exc:
            raise ValidationError(str(exc))
    user.status = "active"
    user.suspension_reason = None
    _audit(actor, user, "USER_APPROVED", f"role={user.role}")
    db.session.commit()
    logger.info("User %s approved by %s", user.id, actor.id)
    return user


def suspend_user(actor: Actor, user_id: int, reason: Any) -> User:
    user = get_user(user_id)
    require(Action.USER_SUSPEND, actor, user)
    reason = str(reason or "").strip()
    if not reason:
        raise ValidationError("Suspension reason is required")
    if user.status != "active":
        raise InvalidStateTransitionError(f"User is {user.status}, not active")

    user.status = "suspended"
    user.suspension_reason = reason
    session_service.revoke_all_user_sessions(user.id, "Account suspended", commit=False)
    _audit(actor, user, "USER_SUSPENDED", reason)
    db.session.commit()
    logger.info("User %s suspended by %s", user.id, actor.id)
    return user


def reactivate_user(actor: Actor, user_id: int) -> User:
    user = get_user(user_id)
    require(Action.USER_REACTIVATE, actor, user)
    if user.status != "suspended":
        raise InvalidStateTransitionError(f"User is {user.status}, not suspended")

    user.status = "active"
    user.suspension_reason = None
    _audit(actor, user, "USER_REACTIVATED")
    db.session.commit()
    return user


def change_role(actor: Actor, user_id: int, role: Any) -> User:
    user = get_user(user_id)
    require(Action.USER_CHANGE_ROLE, actor, user)
    try:
        new_role = Role.parse(str(role or "")).value
    except ValueError as exc:
        raise ValidationError(str(exc))

    old_role = user.role
    user.role = new_role
    _audit(actor, user, "ROLE_CHANGED", f"{old_role} -> {new_role}")
    db.session.commit()
    return user


def set_discount_limit(actor: Actor, user_id: int, limit: Any) -> User:
    user = get_user(user_id)
    require(Action.USER_SET_DISCOUNT_LIMIT, actor, user)
    if limit is None:
        raise ValidationError("discount_limit is required")
    user.discount_limit = coerce_percent("discount_limit", limit)
    _audit(actor, user, "DISCOUNT_LIMIT_CHANGED", f"{user.discount_limit}%")
    db.session.commit()
    return user


def reset_password(actor: Actor, user_id: int, new_password: Any) -> User:
    """Admin reset. Skips the current-password check."""
    user = get_user(user_id)
    require(Action.USER_RESET_PASSWORD, actor, user)
    user.password_hash = auth_service.hash_password(new_password)
    session_service.revoke_all_user_sessions(user.id, "Password reset", commit=False)
    _audit(actor, user, "PASSWORD_RESET")
    db.session.commit()
    return user


def change_password(actor: Actor, user_id: int, current_password: Any, new_password: Any) -> User:
    """Self-service change. The current password is verified with bcrypt."""
    user = get_user(user_id)
    require(Action.USER_CHANGE_PASSWORD, actor, user)
    if not auth_service.verify_password(current_password or "", user.password_hash):
        raise ValidationError("Current password is incorrect")

    user.password_hash = auth_service.hash_password(new_password)
    session_service.revoke_all_user_sessions(user.id, "Password changed", commit=False)
    _audit(actor, user, "PASSWORD_CHANGED")
    db.session.commit()
    return user
