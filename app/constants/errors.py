# app/constants/errors.py
"""
Machine-readable error codes raised by the allocation engine.

The presentation layer maps each code to a response; the engine never
deals in HTTP status codes directly.
"""


class ErrorCode:
    """Error codes grouped by the exception category that carries them."""

    # NotFound
    DROP_NOT_FOUND = "DROP_NOT_FOUND"
    CLAIM_NOT_FOUND = "CLAIM_NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"

    # Conflict
    DROP_NOT_ACTIVE = "DROP_NOT_ACTIVE"
    DROP_NOT_STARTED = "DROP_NOT_STARTED"
    WAITLIST_PHASE_ENDED = "WAITLIST_PHASE_ENDED"
    DROP_ENDED = "DROP_ENDED"
    DROP_SOLD_OUT = "DROP_SOLD_OUT"
    CLAIM_WINDOW_NOT_STARTED = "CLAIM_WINDOW_NOT_STARTED"
    CLAIM_WINDOW_ENDED = "CLAIM_WINDOW_ENDED"
    DROP_HAS_DEPENDENTS = "DROP_HAS_DEPENDENTS"
    DUPLICATE_RESOURCE = "DUPLICATE_RESOURCE"

    # Forbidden
    NOT_IN_WAITLIST = "NOT_IN_WAITLIST"
    NOT_ELIGIBLE = "NOT_ELIGIBLE"
    WAITLIST_LOCKED = "WAITLIST_LOCKED"

    # Expired
    CLAIM_EXPIRED = "CLAIM_EXPIRED"

    # Internal
    TRANSACTION_FAILED = "TRANSACTION_FAILED"
