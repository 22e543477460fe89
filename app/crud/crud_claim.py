# app/crud/crud_claim.py
from datetime import datetime
from typing import Optional
import logging

from sqlalchemy import and_
from sqlalchemy.orm import Session, joinedload

from app.constants.claim import ClaimStatus
from app.crud.base import CRUDBase
from app.models.claim import Claim
from app.schemas.claim import ClaimCreate

logger = logging.getLogger(__name__)


class CRUDClaim(CRUDBase[Claim, ClaimCreate, ClaimCreate]):
    """
    Claim ledger. Status only moves forward:
    PENDING -> COMPLETED, PENDING -> EXPIRED.
    """

    def get_by_user_and_drop(
        self,
        db: Session,
        *,
        user_id: str,
        drop_id: str,
        for_update: bool = False
    ) -> Optional[Claim]:
        query = db.query(self.model).filter(
            and_(
                self.model.user_id == user_id,
                self.model.drop_id == drop_id
            )
        )
        if for_update:
            query = query.with_for_update()
        return query.first()

    def create_pending(
        self,
        db: Session,
        *,
        user_id: str,
        drop_id: str,
        claim_code: str,
        claimed_at: datetime,
        expires_at: datetime
    ) -> Claim:
        """Insert a PENDING claim. Flushes only; the claim transaction commits."""
        claim = Claim(
            user_id=user_id,
            drop_id=drop_id,
            claim_code=claim_code,
            status=ClaimStatus.PENDING,
            claimed_at=claimed_at,
            expires_at=expires_at
        )
        db.add(claim)
        db.flush()
        return claim

    def mark_completed(self, db: Session, *, claim: Claim) -> Claim:
        if claim.status != ClaimStatus.PENDING:
            raise ValueError(f"Cannot complete a claim in status {claim.status}")
        claim.status = ClaimStatus.COMPLETED
        db.flush()
        return claim

    def mark_expired(self, db: Session, *, claim: Claim) -> Claim:
        if claim.status != ClaimStatus.PENDING:
            raise ValueError(f"Cannot expire a claim in status {claim.status}")
        claim.status = ClaimStatus.EXPIRED
        db.flush()
        return claim

    def get_multi_by_user(self, db: Session, *, user_id: str) -> list[Claim]:
        """All claims of a user with their drops, newest first."""
        return db.query(self.model).options(
            joinedload(self.model.drop)
        ).filter(
            self.model.user_id == user_id
        ).order_by(self.model.claimed_at.desc()).all()

    def count_for_drop(self, db: Session, *, drop_id: str) -> int:
        return db.query(self.model).filter(self.model.drop_id == drop_id).count()

    def expire_overdue(self, db: Session, *, now: datetime) -> int:
        """
        Bulk-mark PENDING claims whose expires_at has passed as EXPIRED.
        Returns the number of rows updated. Flushes only.
        """
        return db.query(self.model).filter(
            self.model.status == ClaimStatus.PENDING,
            self.model.expires_at < now
        ).update({"status": ClaimStatus.EXPIRED}, synchronize_session=False)


claim = CRUDClaim(Claim)
