# app/constants/claim.py
"""
Constants for Claim status values and drop phases.

Provides type-safe constants to replace hardcoded strings throughout the codebase.
"""


class ClaimStatus:
    """Claim status values. COMPLETED and EXPIRED are terminal."""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"

    @classmethod
    def all_values(cls) -> list[str]:
        """Return all valid status values."""
        return [cls.PENDING, cls.COMPLETED, cls.EXPIRED]


class DropPhase:
    """Lifecycle phase of a drop, derived from its time windows."""
    UPCOMING = "upcoming"
    WAITLIST = "waitlist"
    CLAIMING = "claiming"
    ENDED = "ended"


class WaitlistStatus:
    """Per-user view of a waitlist membership."""
    WAITING = "waiting"
    CLAIMABLE = "claimable"
    ENDED = "ended"
    SOLD_OUT = "sold_out"
    INACTIVE = "inactive"


class UserRole:
    USER = "USER"
    ADMIN = "ADMIN"
