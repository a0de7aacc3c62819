"""Domain error taxonomy shared by the BudgetWise services and HTTP layer."""

from __future__ import annotations


class BudgetWiseError(RuntimeError):
    """Base class for errors that map onto a client-facing HTTP status."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(BudgetWiseError):
    """Raised when caller input is malformed or outside its domain."""

    status_code = 400


class InvalidCursorError(ValidationError):
    """Raised when a pagination token cannot be decoded or does not apply."""

    def __init__(self, message: str = "invalid cursor") -> None:
        super().__init__(message)


class ReferentialError(BudgetWiseError):
    """Raised when a delete would orphan dependent rows."""

    status_code = 400


class AuthError(BudgetWiseError):
    """Raised when a credential is missing, invalid or expired."""

    status_code = 401


class NotFoundError(BudgetWiseError):
    """Raised when an entity cannot be located for the current user."""

    status_code = 404


class ConflictError(BudgetWiseError):
    """Raised when a uniqueness rule is violated."""

    status_code = 409


class PayloadTooLargeError(BudgetWiseError):
    status_code = 413


class InternalError(BudgetWiseError):
    """Raised when the store fails in a way the caller cannot fix."""

    status_code = 500


__all__ = [
    "AuthError",
    "BudgetWiseError",
    "ConflictError",
    "InternalError",
    "InvalidCursorError",
    "NotFoundError",
    "PayloadTooLargeError",
    "ReferentialError",
    "ValidationError",
]
