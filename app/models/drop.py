# app/models/drop.py
import uuid
from sqlalchemy import Boolean, CheckConstraint, Column, Integer, String, Text, func, true
from sqlalchemy.orm import relationship
from app.db.base_class import Base
from app.db.types import UTCDateTime, utcnow


class Drop(Base):
    """
    A time-boxed, stock-limited release.

    Phases:
    - start_date .. claim_window_start: waitlist phase (join/leave)
    - claim_window_start .. claim_window_end: claim window
    - claim_window_end .. end_date: closed

    `claimed_stock` is only ever incremented by the allocation engine,
    under a row lock on this record.
    """
    __tablename__ = "drops"

    id = Column(String, primary_key=True, default=lambda: f"drp_{uuid.uuid4().hex[:12]}")
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, server_default="")
    image_url = Column(String, nullable=True)

    # Inventory
    total_stock = Column(Integer, nullable=False)
    claimed_stock = Column(Integer, nullable=False, default=0, server_default="0")

    # Phase windows
    start_date = Column(UTCDateTime, nullable=False)
    claim_window_start = Column(UTCDateTime, nullable=False)
    claim_window_end = Column(UTCDateTime, nullable=False)
    end_date = Column(UTCDateTime, nullable=False)

    is_active = Column(Boolean, nullable=False, default=True, server_default=true())

    created_at = Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow, server_default=func.now())

    waitlist_entries = relationship("WaitlistEntry", back_populates="drop", passive_deletes=True)
    claims = relationship("Claim", back_populates="drop", passive_deletes=True)

    __table_args__ = (
        CheckConstraint('total_stock > 0', name='check_total_stock_positive'),
        CheckConstraint('claimed_stock >= 0', name='check_claimed_stock_positive'),
        CheckConstraint('claimed_stock <= total_stock', name='check_claimed_lte_total'),
        CheckConstraint('start_date <= claim_window_start', name='check_start_before_claim_window'),
        CheckConstraint('claim_window_start < claim_window_end', name='check_claim_window_order'),
        CheckConstraint('claim_window_end <= end_date', name='check_claim_window_before_end'),
    )

    @property
    def available_stock(self) -> int:
        return self.total_stock - self.claimed_stock

    @property
    def is_sold_out(self) -> bool:
        return self.claimed_stock >= self.total_stock
