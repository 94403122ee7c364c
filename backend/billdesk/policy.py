# Overview: Capability checks. Single authorization entry point for every handler and service.

"""
Authorization policy.

WHY: Handlers used to repeat role lists inline. Every check now goes through
``authorize(action, actor, resource)`` which answers allow/deny from one table.

RULES:
- Each Action lists the roles that may perform it unconditionally.
- ``owner`` rules additionally allow the user the resource belongs to
  (resource.user_id, or the User itself).
- Self-administration actions (approve, suspend, change role, reset password)
  are denied when the target user is the actor, whatever the role.
- Fail closed: an Action with no rule is denied.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from .errors import AuthorizationError


class Role(str, enum.Enum):
    ADMIN = "admin"
    SALES = "sales"
    FINANCE = "finance"
    CUSTOMER = "customer"

    @property
    def is_staff(self) -> bool:
        return self is not Role.CUSTOMER

    @classmethod
    def parse(cls, value: str) -> "Role":
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Invalid role '{value}'. Must be one of: {', '.join(r.value for r in cls)}")


class Action(str, enum.Enum):
    # Users
    USER_LIST = "user.list"
    USER_VIEW = "user.view"
    USER_UPDATE_PROFILE = "user.update_profile"
    USER_CREATE = "user.create"
    USER_APPROVE = "user.approve"
    USER_SUSPEND = "user.suspend"
    USER_REACTIVATE = "user.reactivate"
    USER_CHANGE_ROLE = "user.change_role"
    USER_SET_DISCOUNT_LIMIT = "user.set_discount_limit"
    USER_RESET_PASSWORD = "user.reset_password"
    USER_CHANGE_PASSWORD = "user.change_password"

    # Plans / subscriptions / tokens
    PLAN_MANAGE = "plan.manage"
    SUBSCRIPTION_LIST_ANY = "subscription.list_any"
    SUBSCRIPTION_VIEW = "subscription.view"
    SUBSCRIPTION_CREATE = "subscription.create"
    SUBSCRIPTION_CANCEL = "subscription.cancel"
    SUBSCRIPTION_TOP_UP = "subscription.top_up"
    TOKENS_VIEW = "tokens.view"
    TOKENS_DEDUCT = "tokens.deduct"

    # Catalog
    CATALOG_MANAGE = "catalog.manage"

    # Quotes
    QUOTE_CREATE = "quote.create"
    QUOTE_LIST_ANY = "quote.list_any"
    QUOTE_VIEW = "quote.view"
    QUOTE_RESPOND = "quote.respond"              # accept/reject as the customer
    QUOTE_TRANSITION = "quote.transition"        # staff move out of pending
    QUOTE_FORCE_TRANSITION = "quote.force_transition"
    QUOTE_DISCOUNT = "quote.discount"
    QUOTE_CONVERT = "quote.convert"

    # Discount approvals
    DISCOUNT_BYPASS_LIMIT = "discount.bypass_limit"
    DISCOUNT_REQUEST_CREATE = "discount.request_create"
    DISCOUNT_QUEUE_VIEW = "discount.queue_view"
    DISCOUNT_DECIDE = "discount.decide"

    # Invoices / payments
    INVOICE_CREATE = "invoice.create"
    INVOICE_LIST_ANY = "invoice.list_any"
    INVOICE_VIEW = "invoice.view"
    INVOICE_SET_STATUS = "invoice.set_status"
    INVOICE_PAY = "invoice.pay"

    # Accounting
    ACCOUNTING_VIEW = "accounting.view"
    ACCOUNTING_MANAGE = "accounting.manage"
    EXPENSE_CREATE = "expense.create"
    EXPENSE_EDIT = "expense.edit"
    EXPENSE_DECIDE = "expense.decide"
    VAT_MANAGE = "vat.manage"

    # Reporting
    REPORTS_VIEW = "reports.view"


ADMIN = frozenset({Role.ADMIN})
ADMIN_FINANCE = frozenset({Role.ADMIN, Role.FINANCE})
ADMIN_SALES = frozenset({Role.ADMIN, Role.SALES})
STAFF = frozenset({Role.ADMIN, Role.SALES, Role.FINANCE})
NOBODY: frozenset = frozenset()


@dataclass(frozen=True)
class Rule:
    roles: frozenset
    owner: bool = False


POLICY: dict[Action, Rule] = {
    Action.USER_LIST: Rule(ADMIN_FINANCE),
    Action.USER_VIEW: Rule(ADMIN_FINANCE, owner=True),
    Action.USER_UPDATE_PROFILE: Rule(ADMIN, owner=True),
    Action.USER_CREATE: Rule(ADMIN),
    Action.USER_APPROVE: Rule(ADMIN),
    Action.USER_SUSPEND: Rule(ADMIN),
    Action.USER_REACTIVATE: Rule(ADMIN),
    Action.USER_CHANGE_ROLE: Rule(ADMIN),
    Action.USER_SET_DISCOUNT_LIMIT: Rule(ADMIN),
    Action.USER_RESET_PASSWORD: Rule(ADMIN),
    Action.USER_CHANGE_PASSWORD: Rule(NOBODY, owner=True),

    Action.PLAN_MANAGE: Rule(ADMIN),
    Action.SUBSCRIPTION_LIST_ANY: Rule(ADMIN_FINANCE),
    Action.SUBSCRIPTION_VIEW: Rule(ADMIN_FINANCE, owner=True),
    Action.SUBSCRIPTION_CREATE: Rule(ADMIN, owner=True),
    Action.SUBSCRIPTION_CANCEL: Rule(ADMIN, owner=True),
    Action.SUBSCRIPTION_TOP_UP: Rule(ADMIN),
    Action.TOKENS_VIEW: Rule(ADMIN_FINANCE, owner=True),
    Action.TOKENS_DEDUCT: Rule(ADMIN, owner=True),

    Action.CATALOG_MANAGE: Rule(ADMIN_FINANCE),

    Action.QUOTE_CREATE: Rule(STAFF),
    Action.QUOTE_LIST_ANY: Rule(STAFF),
    Action.QUOTE_VIEW: Rule(STAFF, owner=True),
    Action.QUOTE_RESPOND: Rule(STAFF, owner=True),
    Action.QUOTE_TRANSITION: Rule(STAFF),
    Action.QUOTE_FORCE_TRANSITION: Rule(ADMIN),
    Action.QUOTE_DISCOUNT: Rule(ADMIN_SALES),
    Action.QUOTE_CONVERT: Rule(ADMIN_FINANCE),

    Action.DISCOUNT_BYPASS_LIMIT: Rule(ADMIN),
    Action.DISCOUNT_REQUEST_CREATE: Rule(ADMIN_SALES),
    Action.DISCOUNT_QUEUE_VIEW: Rule(ADMIN),
    Action.DISCOUNT_DECIDE: Rule(ADMIN),

    Action.INVOICE_CREATE: Rule(ADMIN_FINANCE),
    Action.INVOICE_LIST_ANY: Rule(STAFF),
    Action.INVOICE_VIEW: Rule(STAFF, owner=True),
    Action.INVOICE_SET_STATUS: Rule(ADMIN_FINANCE),
    Action.INVOICE_PAY: Rule(ADMIN, owner=True),

    Action.ACCOUNTING_VIEW: Rule(ADMIN_FINANCE),
    Action.ACCOUNTING_MANAGE: Rule(ADMIN_FINANCE),
    Action.EXPENSE_CREATE: Rule(STAFF),
    Action.EXPENSE_EDIT: Rule(ADMIN_FINANCE, owner=True),
    Action.EXPENSE_DECIDE: Rule(ADMIN_FINANCE),
    Action.VAT_MANAGE: Rule(ADMIN_FINANCE),

    Action.REPORTS_VIEW: Rule(ADMIN_FINANCE),
}

# The target of these actions can never be the actor's own account.
SELF_FORBIDDEN = {
    Action.USER_APPROVE: "Cannot approve your own account",
    Action.USER_SUSPEND: "Cannot suspend yourself",
    Action.USER_REACTIVATE: "Cannot reactivate your own account",
    Action.USER_CHANGE_ROLE: "Cannot change your own role",
    Action.USER_RESET_PASSWORD: "Use change-password for your own account",
}


@dataclass(frozen=True)
class Actor:
    """The authenticated caller, as seen by the policy layer."""
    id: int
    role: Role
    discount_limit: Decimal = Decimal("0")

    @classmethod
    def from_user(cls, user) -> "Actor":
        limit = user.discount_limit if user.discount_limit is not None else 0
        return cls(id=user.id, role=Role(user.role), discount_limit=Decimal(str(limit)))


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.allowed


def _owner_id(resource: Any) -> int | None:
    if resource is None:
        return None
    # Users own themselves; everything else carries user_id (or created_by for expenses)
    if getattr(resource, "__tablename__", None) == "users":
        return resource.id
    owner = getattr(resource, "user_id", None)
    if owner is None:
        owner = getattr(resource, "created_by", None)
    return owner


def authorize(action: Action, actor: Actor, resource: Any = None) -> Decision:
    rule = POLICY.get(action)
    if rule is None:
        return Decision(False, f"No policy for {action.value}")

    if action in SELF_FORBIDDEN and resource is not None and _owner_id(resource) == actor.id:
        return Decision(False, SELF_FORBIDDEN[action])

    if actor.role in rule.roles:
        return Decision(True)

    if rule.owner and resource is not None and _owner_id(resource) == actor.id:
        return Decision(True)

    return Decision(False, "Access denied")


def require(action: Action, actor: Actor, resource: Any = None) -> None:
    """Raise AuthorizationError unless the actor may perform the action."""
    decision = authorize(action, actor, resource)
    if not decision:
        raise AuthorizationError(decision.reason or "Access denied")


def can(action: Action, actor: Actor, resource: Any = None) -> bool:
    return authorize(action, actor, resource).allowed
