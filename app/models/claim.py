# app/models/claim.py
import uuid
from sqlalchemy import CheckConstraint, Column, String, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from app.constants.claim import ClaimStatus
from app.db.base_class import Base
from app.db.types import UTCDateTime, utcnow


class Claim(Base):
    """
    A reserved unit of a drop's stock.

    Status: PENDING -> COMPLETED | EXPIRED (both terminal).
    One claim per (user, drop); claim_code is globally unique.
    """
    __tablename__ = "claims"

    id = Column(String, primary_key=True, default=lambda: f"clm_{uuid.uuid4().hex[:12]}")
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    drop_id = Column(String, ForeignKey("drops.id", ondelete="CASCADE"), nullable=False, index=True)

    claim_code = Column(String(64), nullable=False, unique=True)
    status = Column(String(20), nullable=False, server_default="PENDING")

    claimed_at = Column(UTCDateTime, nullable=False, default=utcnow)
    expires_at = Column(UTCDateTime, nullable=False)

    drop = relationship("Drop", back_populates="claims")

    __table_args__ = (
        UniqueConstraint('user_id', 'drop_id', name='unique_claim_user_drop'),
        CheckConstraint(
            "status IN ({})".format(", ".join(f"'{s}'" for s in ClaimStatus.all_values())),
            name='check_claim_status',
        ),
        Index('idx_claims_status_expires', 'status', 'expires_at'),
    )
