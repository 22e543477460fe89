"""
Typed errors raised by the drop allocation engine.

Every business-rule violation carries:
- a machine-readable code (see app.constants.errors.ErrorCode)
- a category shared by all codes of the same kind
- a status code the HTTP layer uses when rendering the error
- optional structured details (e.g. rank and stock for NOT_ELIGIBLE)
"""

from typing import Optional


class ErrorCategory:
    """Error categories for structured error handling"""
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    FORBIDDEN = "forbidden"
    EXPIRED = "expired"
    INTERNAL = "internal"


class DropAllocationError(Exception):
    """Base engine error with structured information"""

    category = ErrorCategory.INTERNAL
    status_code = 500

    def __init__(self, message: str, code: str, details: Optional[dict] = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(DropAllocationError):
    """Drop or claim does not exist"""
    category = ErrorCategory.NOT_FOUND
    status_code = 404


class ConflictError(DropAllocationError):
    """Drop state forbids the operation (inactive, sold out, wrong phase)"""
    category = ErrorCategory.CONFLICT
    status_code = 409


class ForbiddenError(DropAllocationError):
    """The user is not allowed to perform the operation on this drop"""
    category = ErrorCategory.FORBIDDEN
    status_code = 403


class ExpiredError(DropAllocationError):
    """Claim is past its completion deadline"""
    category = ErrorCategory.EXPIRED
    status_code = 410


class InternalError(DropAllocationError):
    """Storage or transaction failure unrelated to business rules"""
    category = ErrorCategory.INTERNAL
    status_code = 500
