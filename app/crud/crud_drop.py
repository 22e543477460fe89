# app/crud/crud_drop.py
"""
Drop inventory: capacity counters and phase windows.

Only the allocation engine moves `claimed_stock`, and only while holding the
drop's row lock (see `get_for_update`).
"""

from datetime import datetime
from typing import Optional
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.constants.claim import DropPhase
from app.constants.errors import ErrorCode
from app.core.exceptions import ConflictError, NotFoundError
from app.crud.base import CRUDBase
from app.models.claim import Claim
from app.models.drop import Drop
from app.models.waitlist_entry import WaitlistEntry
from app.schemas.drop import DropCreate

logger = logging.getLogger(__name__)


def get_phase(drop: Drop, now: datetime) -> str:
    if now < drop.start_date:
        return DropPhase.UPCOMING
    if now < drop.claim_window_start:
        return DropPhase.WAITLIST
    if now < drop.claim_window_end:
        return DropPhase.CLAIMING
    return DropPhase.ENDED


class CRUDDrop(CRUDBase[Drop, DropCreate, DropCreate]):

    def get_for_update(self, db: Session, *, drop_id: str) -> Optional[Drop]:
        """
        Load a drop with SELECT FOR UPDATE.

        Every transaction that reads stock or rank and then writes against
        this drop goes through here first, so they run one at a time per drop.
        """
        return db.query(self.model).filter(
            self.model.id == drop_id
        ).with_for_update().first()

    def increment_claimed(self, db: Session, *, drop: Drop) -> Drop:
        """
        Consume one unit of stock. The caller must hold the row lock.
        Flushes only; the claim transaction commits.
        """
        if drop.claimed_stock >= drop.total_stock:
            raise ConflictError("Drop is sold out", ErrorCode.DROP_SOLD_OUT)

        drop.claimed_stock += 1
        db.flush()
        return drop

    def get_multi_upcoming(self, db: Session, *, now: datetime) -> list[tuple[Drop, int]]:
        """Drops that have not ended yet, soonest first, with their waitlist sizes."""
        waitlist_count = (
            db.query(WaitlistEntry.drop_id, func.count(WaitlistEntry.id).label("waitlist_count"))
            .group_by(WaitlistEntry.drop_id)
            .subquery()
        )
        rows = (
            db.query(self.model, func.coalesce(waitlist_count.c.waitlist_count, 0))
            .outerjoin(waitlist_count, waitlist_count.c.drop_id == self.model.id)
            .filter(self.model.end_date >= now)
            .order_by(self.model.start_date.asc())
            .all()
        )
        return [(drop, count) for drop, count in rows]

    def has_dependents(self, db: Session, *, drop_id: str) -> bool:
        has_entries = db.query(WaitlistEntry.id).filter(
            WaitlistEntry.drop_id == drop_id
        ).first() is not None
        if has_entries:
            return True
        return db.query(Claim.id).filter(Claim.drop_id == drop_id).first() is not None

    def remove_if_unused(self, db: Session, *, drop_id: str) -> Drop:
        """Delete a drop that has no waitlist entries and no claims."""
        drop = self.get_for_update(db, drop_id=drop_id)
        if not drop:
            raise NotFoundError("Drop not found", ErrorCode.DROP_NOT_FOUND)

        if self.has_dependents(db, drop_id=drop_id):
            db.rollback()
            raise ConflictError(
                "Cannot delete drop with existing waitlist entries or claims",
                ErrorCode.DROP_HAS_DEPENDENTS,
            )

        db.delete(drop)
        db.commit()
        logger.info(f"Deleted drop {drop_id}")
        return drop


drop = CRUDDrop(Drop)
