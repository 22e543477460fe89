# app/models/waitlist_entry.py
import uuid
from sqlalchemy import Column, String, ForeignKey, Integer, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from app.db.base_class import Base
from app.db.types import UTCDateTime, utcnow


class WaitlistEntry(Base):
    """
    A user's membership in a drop's waitlist.

    Exactly one row per (user, drop). The row is deleted when the user leaves
    or when the membership is consumed by a successful claim.

    Ranking: priority_score desc (NULL counts as 0), then joined_at asc.
    """
    __tablename__ = "waitlist_entries"

    id = Column(String, primary_key=True, default=lambda: f"wle_{uuid.uuid4().hex[:12]}")
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    drop_id = Column(String, ForeignKey("drops.id", ondelete="CASCADE"), nullable=False, index=True)

    joined_at = Column(UTCDateTime, nullable=False, default=utcnow)
    priority_score = Column(Integer, nullable=True)

    drop = relationship("Drop", back_populates="waitlist_entries")

    __table_args__ = (
        UniqueConstraint('user_id', 'drop_id', name='unique_waitlist_user_drop'),
        Index('idx_waitlist_drop_rank', 'drop_id', 'priority_score', 'joined_at'),
        Index('idx_waitlist_user_joined', 'user_id', 'joined_at'),
    )
