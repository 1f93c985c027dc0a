"""
Typed failures raised by the billing services.

Each class maps to one kind of failure the UI has to tell apart: bad input,
a record that does not exist (or is not the caller's), a business rule that
refused the operation, and an infrastructure failure that rolled back the
transaction.
"""

from http import HTTPStatus
from typing import Any, Dict, Optional


class BillingError(Exception):
    """
    Base exception for all billing errors.

    Attributes:
        message: Human-readable error message.
        status_code: HTTP status code used by the JSON error handler.
        code: Stable application error code.
        details: Additional error details (e.g. per-field validation messages).
    """

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR
    code = "BILLING_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ValidationError(BillingError):
    """Raised for malformed input. Nothing is written and no transaction is opened."""

    status_code = HTTPStatus.BAD_REQUEST
    code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
    ):
        if field:
            details = details or {}
            details.setdefault("field", field)
        super().__init__(message, details)

    @classmethod
    def from_form(cls, form, message: str = "Please correct the highlighted fields."):
        """Builds the error from a WTForms form's collected field errors."""
        return cls(message, details={"fields": dict(form.errors)})


class NotFoundError(BillingError):
    """Raised when a plan, payment method, invoice or subscription does not exist for the user."""

    status_code = HTTPStatus.NOT_FOUND
    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found" if identifier is None else f"{resource} {identifier} not found"
        super().__init__(message, details={"resource": resource, "id": identifier})


class ConstraintViolation(BillingError):
    """Raised when a business rule refuses an otherwise well-formed request."""

    status_code = HTTPStatus.CONFLICT
    code = "CONSTRAINT_VIOLATION"


class TransactionFailure(BillingError):
    """Raised when persistence failed mid-operation; the whole transaction was rolled back."""

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR
    code = "TRANSACTION_FAILURE"

    def __init__(self, operation: str):
        super().__init__(
            f"The {operation} could not be saved. No changes were made; please try again.",
            details={"operation": operation},
        )
