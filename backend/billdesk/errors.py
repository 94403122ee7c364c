# Overview: Domain error hierarchy shared by services and routes.

"""
Domain errors.

Services raise these; the app factory registers a single handler that turns
them into ``{"message": str}`` JSON responses with the carried status code.
None of them are retried.
"""


class DomainError(Exception):
    """Base class for errors that surface to the API caller."""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"message": self.message}


class ValidationError(DomainError, ValueError):
    """400-level input problem. Raised before any state change."""
    status_code = 400


class InsufficientBalanceError(DomainError):
    """Token deduction larger than the current balance."""
    status_code = 400


class AuthenticationError(DomainError):
    """No valid session."""
    status_code = 401


class AuthorizationError(DomainError):
    """Authenticated, but the role or ownership check failed."""
    status_code = 403


class NotFoundError(DomainError):
    """Referenced id does not exist."""
    status_code = 404


class InvalidStateTransitionError(DomainError):
    """
    The entity is not in a state that allows the operation.

    e.g. deciding an already-decided discount request, editing a non-pending
    expense, paying a paid invoice.
    """
    status_code = 409
