from __future__ import annotations

from enum import Enum
from typing import Sequence

from budget_manager.results import FieldError


class ErrorKind(str, Enum):
    MALFORMED_INPUT = "malformed_input"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    VALIDATION_FAILED = "validation_failed"
    CONSTRAINT_VIOLATION = "constraint_violation"
    UNEXPECTED = "unexpected"


STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.MALFORMED_INPUT: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.VALIDATION_FAILED: 422,
    ErrorKind.CONSTRAINT_VIOLATION: 422,
    ErrorKind.UNEXPECTED: 500,
}


class BudgetError(Exception):
    """Base error carrying an explicit kind that maps onto an HTTP status."""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND[self.kind]


class ValidationFailed(BudgetError):
    def __init__(self, errors: Sequence[FieldError]) -> None:
        self.errors = tuple(errors)
        super().__init__(
            ErrorKind.VALIDATION_FAILED,
            ", ".join(error.message for error in self.errors) or "Invalid input data.",
        )


class StoreError(BudgetError):
    """Raised by the storage boundary."""


class AuthError(BudgetError):
    """Raised when credentials, sessions or recovery tokens are rejected."""
