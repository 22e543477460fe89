# app/services/allocation_service.py
"""
Allocation engine: turns waitlist membership into claims.

The claim transaction locks the drop row first (SELECT FOR UPDATE), so every
claim against the same drop runs one at a time through:

    drop checks -> window -> stock gate -> existing claim -> waitlist entry
    -> rank -> rank <= available stock -> insert claim, +1 claimed_stock,
    delete waitlist entry -> commit

Rank and available stock are therefore always read by the same transaction
that consumes them. Transient storage conflicts restart the whole transaction
from the drop lock, up to CLAIM_MAX_ATTEMPTS times.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from app.constants.claim import ClaimStatus, DropPhase
from app.constants.errors import ErrorCode
from app.core.config import settings
from app.core.exceptions import (
    ConflictError,
    DropAllocationError,
    ExpiredError,
    ForbiddenError,
    InternalError,
    NotFoundError,
)
from app.core.seed import SeedData
from app.crud.crud_claim import claim as crud_claim
from app.crud.crud_drop import drop as crud_drop
from app.crud.crud_waitlist_entry import waitlist_entry
from app.db.types import utcnow
from app.models.claim import Claim
from app.models.drop import Drop
from app.schemas import claim as claim_schemas
from app.schemas import drop as drop_schemas
from app.services.claim_code import generate_claim_code

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected, lock_not_available
RETRYABLE_SQLSTATES = {"40001", "40P01", "55P03"}


@dataclass
class ClaimResult:
    claim: Claim
    drop: Drop
    is_new: bool

    @property
    def phase(self) -> str:
        return DropPhase.CLAIMING


def is_retryable(error: DBAPIError) -> bool:
    """Whether re-running the claim transaction from the top may succeed."""
    if isinstance(error, IntegrityError):
        # A racing insert on a unique key; the rerun sees the winner's row
        return True
    orig = error.orig
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate in RETRYABLE_SQLSTATES:
        return True
    return "database is locked" in str(orig).lower()


def effective_status(claim: Claim, now: datetime) -> str:
    """PENDING claims past their deadline read as EXPIRED before the sweep runs."""
    if claim.status == ClaimStatus.PENDING and now > claim.expires_at:
        return ClaimStatus.EXPIRED
    return claim.status


def to_claim_view(claim: Claim, now: datetime) -> claim_schemas.ClaimView:
    return claim_schemas.ClaimView(
        id=claim.id,
        claim_code=claim.claim_code,
        status=effective_status(claim, now),
        claimed_at=claim.claimed_at,
        expires_at=claim.expires_at,
        is_expired=now > claim.expires_at,
        drop=drop_schemas.DropSummary.model_validate(claim.drop) if claim.drop else None,
    )


class AllocationService:

    def claim_drop(
        self,
        db: Session,
        *,
        user_id: str,
        drop_id: str,
        seed: Optional[SeedData],
        now: Optional[datetime] = None
    ) -> ClaimResult:
        """
        Claim one unit of a drop for a waitlisted user.

        Idempotent: when the user already holds a claim on the drop, that
        claim comes back with is_new=False and nothing is written.
        """
        max_attempts = max(1, settings.CLAIM_MAX_ATTEMPTS)

        for attempt in range(1, max_attempts + 1):
            attempt_now = now or utcnow()
            try:
                result = self._claim_once(
                    db, user_id=user_id, drop_id=drop_id, seed=seed, now=attempt_now
                )
                db.commit()

            except DropAllocationError:
                db.rollback()
                raise

            except DBAPIError as e:
                db.rollback()
                if not is_retryable(e):
                    logger.error(
                        f"Claim transaction failed for user {user_id}, drop {drop_id}: {str(e)}",
                        exc_info=True,
                        extra={"user_id": user_id, "drop_id": drop_id}
                    )
                    raise InternalError("Claim transaction failed", ErrorCode.TRANSACTION_FAILED) from e
                if attempt == max_attempts:
                    logger.error(
                        f"Claim for user {user_id}, drop {drop_id} still conflicting "
                        f"after {attempt} attempts: {str(e)}"
                    )
                    raise InternalError(
                        "Claim transaction failed",
                        ErrorCode.TRANSACTION_FAILED,
                        details={"attempts": attempt},
                    ) from e
                logger.warning(
                    f"Claim attempt {attempt}/{max_attempts} for user {user_id}, "
                    f"drop {drop_id} hit a transient conflict, retrying: {str(e)}"
                )
                continue

            except Exception as e:
                logger.error(
                    f"Unexpected error claiming drop {drop_id} for user {user_id}: {str(e)}",
                    exc_info=True,
                    extra={"user_id": user_id, "drop_id": drop_id}
                )
                db.rollback()
                raise

            if result.is_new:
                logger.info(
                    f"User {user_id} claimed drop {drop_id} "
                    f"({result.drop.claimed_stock}/{result.drop.total_stock} claimed)"
                )
            return result

        # Unreachable: the loop either returns or raises
        raise InternalError("Claim transaction failed", ErrorCode.TRANSACTION_FAILED)

    def _claim_once(
        self,
        db: Session,
        *,
        user_id: str,
        drop_id: str,
        seed: Optional[SeedData],
        now: datetime
    ) -> ClaimResult:
        # 1. Lock the drop; everything below is serialized per drop
        drop = crud_drop.get_for_update(db, drop_id=drop_id)
        if not drop:
            raise NotFoundError("Drop not found", ErrorCode.DROP_NOT_FOUND)
        if not drop.is_active:
            raise ConflictError("Drop is not active", ErrorCode.DROP_NOT_ACTIVE)

        # 2. Claim window
        if now < drop.claim_window_start:
            raise ConflictError("Claim window has not started yet", ErrorCode.CLAIM_WINDOW_NOT_STARTED)
        if now >= drop.claim_window_end:
            raise ConflictError("Claim window has ended", ErrorCode.CLAIM_WINDOW_ENDED)

        # 3. Global stock gate. A holder of one of the claimed units still
        # gets their claim back on retry.
        if drop.is_sold_out:
            existing = crud_claim.get_by_user_and_drop(db, user_id=user_id, drop_id=drop_id)
            if existing:
                return ClaimResult(claim=existing, drop=drop, is_new=False)
            raise ConflictError("Drop is sold out", ErrorCode.DROP_SOLD_OUT)

        # 4. Idempotency
        existing = crud_claim.get_by_user_and_drop(db, user_id=user_id, drop_id=drop_id)
        if existing:
            return ClaimResult(claim=existing, drop=drop, is_new=False)

        # 5. Waitlist membership
        entry = waitlist_entry.get_by_user_and_drop(db, user_id=user_id, drop_id=drop_id)
        if not entry:
            raise ForbiddenError(
                "You must be in the waitlist to claim this drop",
                ErrorCode.NOT_IN_WAITLIST,
            )

        # 6-7. Rank against the stock that is left right now
        position = waitlist_entry.get_rank(db, entry=entry)
        available_stock = drop.total_stock - drop.claimed_stock
        if position > available_stock:
            raise ForbiddenError(
                f"You are not eligible to claim. Position: {position}, "
                f"Available stock: {available_stock}",
                ErrorCode.NOT_ELIGIBLE,
                details={"position": position, "available_stock": available_stock},
            )

        # 8-9. Issue the claim and consume stock and membership together
        new_claim = crud_claim.create_pending(
            db,
            user_id=user_id,
            drop_id=drop_id,
            claim_code=generate_claim_code(seed, drop_id, user_id, now),
            claimed_at=now,
            expires_at=now + timedelta(hours=settings.CLAIM_TTL_HOURS),
        )
        crud_drop.increment_claimed(db, drop=drop)
        waitlist_entry.delete_entry(db, entry=entry)

        return ClaimResult(claim=new_claim, drop=drop, is_new=True)

    def complete_claim(
        self,
        db: Session,
        *,
        user_id: str,
        drop_id: str,
        now: Optional[datetime] = None
    ) -> Claim:
        """
        Mark a PENDING claim as COMPLETED. Completing an already completed
        claim is a no-op. A claim past its deadline is stored as EXPIRED
        and the call fails.
        """
        now = now or utcnow()

        try:
            claim = crud_claim.get_by_user_and_drop(
                db, user_id=user_id, drop_id=drop_id, for_update=True
            )
            if not claim:
                raise NotFoundError("Claim not found", ErrorCode.CLAIM_NOT_FOUND)

            if claim.status == ClaimStatus.COMPLETED:
                db.commit()
                return claim

            if claim.status == ClaimStatus.EXPIRED:
                raise ExpiredError("Claim has expired", ErrorCode.CLAIM_EXPIRED)

            if now > claim.expires_at:
                crud_claim.mark_expired(db, claim=claim)
                db.commit()
                logger.info(f"Claim {claim.id} expired before completion (user {user_id}, drop {drop_id})")
                raise ExpiredError(
                    "Claim has expired",
                    ErrorCode.CLAIM_EXPIRED,
                    details={"expires_at": claim.expires_at.isoformat()},
                )

            crud_claim.mark_completed(db, claim=claim)
            db.commit()

        except DropAllocationError:
            db.rollback()
            raise

        except Exception as e:
            logger.error(
                f"Failed to complete claim for user {user_id}, drop {drop_id}: {str(e)}",
                exc_info=True,
                extra={"user_id": user_id, "drop_id": drop_id}
            )
            db.rollback()
            raise

        db.refresh(claim)
        logger.info(f"Claim {claim.id} completed by user {user_id}")
        return claim

    def get_claim_status(
        self,
        db: Session,
        *,
        user_id: str,
        drop_id: str,
        now: Optional[datetime] = None
    ) -> claim_schemas.ClaimStatusResponse:
        now = now or utcnow()
        claim = crud_claim.get_by_user_and_drop(db, user_id=user_id, drop_id=drop_id)
        if not claim:
            return claim_schemas.ClaimStatusResponse(
                has_claim=False,
                message="No claim found for this drop",
            )
        return claim_schemas.ClaimStatusResponse(has_claim=True, claim=to_claim_view(claim, now))

    def list_user_claims(
        self,
        db: Session,
        *,
        user_id: str,
        now: Optional[datetime] = None
    ) -> list[claim_schemas.ClaimView]:
        now = now or utcnow()
        return [to_claim_view(claim, now) for claim in crud_claim.get_multi_by_user(db, user_id=user_id)]

    def cleanup_expired_claims(self, db: Session, *, now: Optional[datetime] = None) -> int:
        """
        Mark every PENDING claim past its deadline as EXPIRED.

        Expired claims keep their unit: claimed_stock is not decremented.
        """
        now = now or utcnow()
        try:
            updated = crud_claim.expire_overdue(db, now=now)
            db.commit()
        except DBAPIError as e:
            db.rollback()
            logger.error(f"Expired claim cleanup failed: {str(e)}", exc_info=True)
            raise InternalError("Expired claim cleanup failed", ErrorCode.TRANSACTION_FAILED) from e

        if updated:
            logger.info(f"Marked {updated} expired claims as EXPIRED")
        return updated


allocation_service = AllocationService()
