# Overview: Password hashing, registration and credential checks.

"""
Authentication Service

WHY: Every action must be attributable. Uses bcrypt for password hashing.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters required
- Only active users may authenticate; pending and suspended accounts are
  refused with a status-specific message
- Session tokens managed separately (see session_service.py)
"""

import logging
import re

import bcrypt
from flask import current_app

from ..errors import AuthenticationError, ValidationError
from ..extensions import db
from ..models import User
from ..policy import Role
from ..time_utils import utcnow


logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Roles a visitor may pick at self-registration. Both start pending.
SELF_REGISTER_ROLES = (Role.CUSTOMER.value, Role.SALES.value)


def validate_password_strength(password) -> None:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt with cost factor 12.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    WHY timing-safe: bcrypt.checkpw() compares in constant time.
    """
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash in the database
        return False


def normalize_email(email) -> str:
    value = str(email or "").strip().lower()
    if not EMAIL_RE.match(value):
        raise ValidationError("A valid email is required")
    return value


def ensure_unique_identity(username: str, email: str, *, exclude_user_id: int | None = None) -> None:
    query = db.session.query(User).filter(db.or_(User.username == username, User.email == email))
    if exclude_user_id is not None:
        query = query.filter(User.id != exclude_user_id)
    if query.first():
        raise ValidationError("Username or email already exists")


def create_user(
    *,
    username: str,
    email: str,
    password: str,
    name: str,
    role: str = Role.CUSTOMER.value,
    status: str = "pending",
    discount_limit=None,
    company: str | None = None,
    phone: str | None = None,
    commit: bool = True,
) -> User:
    """
    Create a user with a bcrypt password hash.

    Raises ValidationError for weak passwords, bad roles or duplicate
    username/email.
    """
    username = str(username or "").strip()
    name = str(name or "").strip()
    if not username:
        raise ValidationError("Username is required")
    if not name:
        raise ValidationError("Name is required")
    email = normalize_email(email)
    try:
        role = Role.parse(role).value
    except ValueError as exc:
        raise ValidationError(str(exc))

    ensure_unique_identity(username, email)

    if discount_limit is None:
        discount_limit = current_app.config.get("DEFAULT_DISCOUNT_LIMIT", 10)

    user = User(
        username=username,
        email=email,
        name=name,
        password_hash=hash_password(password),
        role=role,
        status=status,
        discount_limit=discount_limit,
        company=company,
        phone=phone,
    )
    db.session.add(user)
    if commit:
        db.session.commit()
    return user


def register_user(payload: dict) -> User:
    """
    Self-registration. The account starts pending until an admin approves it.
    """
    role = payload.get("role") or Role.CUSTOMER.value
    if role not in SELF_REGISTER_ROLES:
        raise ValidationError(f"Self-registration is only available for: {', '.join(SELF_REGISTER_ROLES)}")

    user = create_user(
        username=payload.get("username") or payload.get("email"),
        email=payload.get("email"),
        password=payload.get("password"),
        name=payload.get("name"),
        role=role,
        status="pending",
        company=payload.get("company"),
        phone=payload.get("phone"),
    )
    logger.info("User %s registered (pending approval)", user.username)
    return user


def authenticate(identifier: str, password: str) -> User:
    """
    Authenticate by username or email.

    Returns the User on success and stamps last_login_at.
    Raises AuthenticationError for bad credentials and for accounts that are
    not active yet (pending) or suspended.
    """
    if not identifier or not password:
        raise ValidationError("username/email and password required")

    ident = str(identifier).strip()
    user = db.session.query(User).filter(
        db.or_(User.username == ident, User.email == ident.lower())
    ).first()

    if not user or not verify_password(password, user.password_hash):
        raise AuthenticationError("Invalid credentials")

    if user.status == "pending":
        raise AuthenticationError("Account pending approval")
    if user.status == "suspended":
        reason = f": {user.suspension_reason}" if user.suspension_reason else ""
        raise AuthenticationError(f"Account suspended{reason}")

    user.last_login_at = utcnow()
    db.session.commit()
    return user
