# app/crud/crud_waitlist_entry.py
from datetime import datetime
from typing import Optional

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session, joinedload

from app.crud.base import CRUDBase
from app.models.waitlist_entry import WaitlistEntry
from app.schemas.waitlist import WaitlistEntryCreate


class CRUDWaitlistEntry(CRUDBase[WaitlistEntry, WaitlistEntryCreate, WaitlistEntryCreate]):
    """
    Waitlist ledger queries.

    Ordering everywhere: priority score desc (NULL as 0), joined_at asc.
    """

    @property
    def effective_score(self):
        return func.coalesce(self.model.priority_score, 0)

    def get_by_user_and_drop(
        self,
        db: Session,
        *,
        user_id: str,
        drop_id: str
    ) -> Optional[WaitlistEntry]:
        """Get waitlist entry for specific drop and user"""
        return db.query(self.model).filter(
            and_(
                self.model.user_id == user_id,
                self.model.drop_id == drop_id
            )
        ).first()

    def create_entry(
        self,
        db: Session,
        *,
        user_id: str,
        drop_id: str,
        joined_at: datetime,
        priority_score: Optional[int]
    ) -> WaitlistEntry:
        """Insert a waitlist entry. Flushes only; the caller commits."""
        entry = WaitlistEntry(
            user_id=user_id,
            drop_id=drop_id,
            joined_at=joined_at,
            priority_score=priority_score
        )
        db.add(entry)
        db.flush()
        return entry

    def delete_entry(self, db: Session, *, entry: WaitlistEntry) -> None:
        db.delete(entry)
        db.flush()

    def count_for_drop(self, db: Session, *, drop_id: str) -> int:
        return db.query(func.count(self.model.id)).filter(
            self.model.drop_id == drop_id
        ).scalar() or 0

    def count_recent_joins(
        self,
        db: Session,
        *,
        user_id: str,
        since: datetime,
        until: datetime
    ) -> int:
        """Joins by this user across all drops with since <= joined_at <= until."""
        return db.query(func.count(self.model.id)).filter(
            and_(
                self.model.user_id == user_id,
                self.model.joined_at >= since,
                self.model.joined_at <= until
            )
        ).scalar() or 0

    def get_rank(self, db: Session, *, entry: WaitlistEntry) -> int:
        """
        1-based rank of `entry` within its drop:
        entries with a strictly higher score, plus entries with an equal
        score that joined earlier, plus one.
        """
        entry_score = entry.priority_score or 0
        ahead = db.query(func.count(self.model.id)).filter(
            self.model.drop_id == entry.drop_id,
            or_(
                self.effective_score > entry_score,
                and_(
                    self.effective_score == entry_score,
                    self.model.joined_at < entry.joined_at
                )
            )
        ).scalar() or 0
        return ahead + 1

    def get_page(
        self,
        db: Session,
        *,
        drop_id: str,
        skip: int = 0,
        limit: int = 50
    ) -> list[WaitlistEntry]:
        return db.query(self.model).filter(
            self.model.drop_id == drop_id
        ).order_by(
            self.effective_score.desc(),
            self.model.joined_at.asc(),
            self.model.id.asc()
        ).offset(skip).limit(limit).all()

    def get_multi_by_user(
        self,
        db: Session,
        *,
        user_id: str,
        skip: int = 0,
        limit: int = 20
    ) -> list[WaitlistEntry]:
        """User's waitlist entries with their drops, most recent first."""
        return db.query(self.model).options(
            joinedload(self.model.drop)
        ).filter(
            self.model.user_id == user_id
        ).order_by(
            self.model.joined_at.desc()
        ).offset(skip).limit(limit).all()

    def count_by_user(self, db: Session, *, user_id: str) -> int:
        return db.query(func.count(self.model.id)).filter(
            self.model.user_id == user_id
        ).scalar() or 0


waitlist_entry = CRUDWaitlistEntry(WaitlistEntry)
