# app/services/waitlist_service.py
"""
Waitlist phase of a drop: join, leave, position and listings.

Join and leave are idempotent. Both run in a single transaction that starts
by locking the drop row, so eligibility checks and the write they guard are
atomic relative to concurrent claims on the same drop.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.constants.claim import WaitlistStatus
from app.constants.errors import ErrorCode
from app.core.exceptions import ConflictError, DropAllocationError, ForbiddenError, NotFoundError
from app.core.seed import SeedData
from app.crud.crud_drop import drop as crud_drop
from app.crud.crud_user import user as crud_user
from app.crud.crud_waitlist_entry import waitlist_entry
from app.db.types import utcnow
from app.models.drop import Drop
from app.models.waitlist_entry import WaitlistEntry
from app.schemas import drop as drop_schemas
from app.schemas import waitlist as waitlist_schemas
from app.services.priority_scorer import calculate_priority_score

logger = logging.getLogger(__name__)


@dataclass
class JoinResult:
    entry: WaitlistEntry
    is_new: bool


@dataclass
class LeaveResult:
    success: bool
    removed: bool


def build_pagination(page: int, limit: int, total: int) -> waitlist_schemas.PaginationInfo:
    skip = (page - 1) * limit
    return waitlist_schemas.PaginationInfo(
        page=page,
        limit=limit,
        total=total,
        total_pages=math.ceil(total / limit) if limit else 0,
        has_next=skip + limit < total,
        has_prev=page > 1,
    )


def check_join_eligibility(drop: Drop, now: datetime) -> None:
    """Raise the matching ConflictError when the drop is not open for joins."""
    if not drop.is_active:
        raise ConflictError("Drop is not active", ErrorCode.DROP_NOT_ACTIVE)
    if now < drop.start_date:
        raise ConflictError("Drop has not started yet", ErrorCode.DROP_NOT_STARTED)
    if now >= drop.claim_window_start:
        raise ConflictError(
            "Waitlist phase has ended, claim window is active",
            ErrorCode.WAITLIST_PHASE_ENDED,
        )
    if now >= drop.end_date:
        raise ConflictError("Drop has ended", ErrorCode.DROP_ENDED)
    if drop.is_sold_out:
        raise ConflictError("Drop is sold out", ErrorCode.DROP_SOLD_OUT)


class WaitlistService:

    def join_waitlist(
        self,
        db: Session,
        *,
        user_id: str,
        drop_id: str,
        seed: Optional[SeedData],
        now: Optional[datetime] = None
    ) -> JoinResult:
        """
        Join a drop's waitlist.

        Returns the existing entry with is_new=False when the user is already
        on the waitlist. A new entry gets its priority score at join time.
        """
        now = now or utcnow()

        try:
            drop = crud_drop.get_for_update(db, drop_id=drop_id)
            if not drop:
                raise NotFoundError("Drop not found", ErrorCode.DROP_NOT_FOUND)

            existing = waitlist_entry.get_by_user_and_drop(db, user_id=user_id, drop_id=drop_id)
            if existing:
                db.commit()
                return JoinResult(entry=existing, is_new=False)

            check_join_eligibility(drop, now)

            priority_score = calculate_priority_score(
                db, user_id=user_id, drop=drop, joined_at=now, seed=seed
            )
            entry = waitlist_entry.create_entry(
                db,
                user_id=user_id,
                drop_id=drop_id,
                joined_at=now,
                priority_score=priority_score
            )
            db.commit()

        except DropAllocationError:
            db.rollback()
            raise

        except IntegrityError as e:
            # Either a concurrent join for the same (user, drop) won the insert,
            # or the user row does not exist
            db.rollback()
            existing = waitlist_entry.get_by_user_and_drop(db, user_id=user_id, drop_id=drop_id)
            if existing:
                return JoinResult(entry=existing, is_new=False)
            if crud_user.get(db, id=user_id) is None:
                logger.warning(f"Waitlist join rejected for unknown user {user_id}, drop {drop_id}")
                raise NotFoundError("User not found", ErrorCode.USER_NOT_FOUND) from e
            logger.warning(f"Waitlist insert rejected for user {user_id}, drop {drop_id}: {e}")
            raise ConflictError(
                "Waitlist entry could not be created",
                ErrorCode.DUPLICATE_RESOURCE,
            ) from e

        except Exception as e:
            logger.error(
                f"Failed to join waitlist for user {user_id}, drop {drop_id}: {str(e)}",
                exc_info=True,
                extra={"user_id": user_id, "drop_id": drop_id}
            )
            db.rollback()
            raise

        db.refresh(entry)
        logger.info(f"User {user_id} joined waitlist for drop {drop_id} with score {priority_score}")
        return JoinResult(entry=entry, is_new=True)

    def leave_waitlist(
        self,
        db: Session,
        *,
        user_id: str,
        drop_id: str,
        now: Optional[datetime] = None
    ) -> LeaveResult:
        """
        Leave a drop's waitlist. Succeeds whether or not the user was on it,
        but only before the claim window opens.
        """
        now = now or utcnow()

        try:
            drop = crud_drop.get_for_update(db, drop_id=drop_id)
            if not drop:
                raise NotFoundError("Drop not found", ErrorCode.DROP_NOT_FOUND)

            if now >= drop.claim_window_start:
                raise ForbiddenError(
                    "Cannot leave waitlist after claim window has started",
                    ErrorCode.WAITLIST_LOCKED,
                )

            entry = waitlist_entry.get_by_user_and_drop(db, user_id=user_id, drop_id=drop_id)
            if not entry:
                db.commit()
                return LeaveResult(success=True, removed=False)

            waitlist_entry.delete_entry(db, entry=entry)
            db.commit()

        except DropAllocationError:
            db.rollback()
            raise

        except Exception as e:
            logger.error(
                f"Failed to leave waitlist for user {user_id}, drop {drop_id}: {str(e)}",
                exc_info=True,
                extra={"user_id": user_id, "drop_id": drop_id}
            )
            db.rollback()
            raise

        logger.info(f"User {user_id} left waitlist for drop {drop_id}")
        return LeaveResult(success=True, removed=True)

    def get_waitlist_position(self, db: Session, *, user_id: str, drop_id: str) -> Optional[int]:
        """1-based rank of the user, or None when not on the waitlist."""
        entry = waitlist_entry.get_by_user_and_drop(db, user_id=user_id, drop_id=drop_id)
        if not entry:
            return None
        return waitlist_entry.get_rank(db, entry=entry)

    def get_waitlist_status(
        self,
        db: Session,
        *,
        user_id: str,
        drop_id: str
    ) -> tuple[Optional[WaitlistEntry], Optional[int]]:
        entry = waitlist_entry.get_by_user_and_drop(db, user_id=user_id, drop_id=drop_id)
        if not entry:
            return None, None
        return entry, waitlist_entry.get_rank(db, entry=entry)

    def list_waitlist(
        self,
        db: Session,
        *,
        drop_id: str,
        page: int = 1,
        limit: int = 50
    ) -> waitlist_schemas.WaitlistPage:
        """One page of a drop's waitlist in rank order."""
        if not crud_drop.get(db, id=drop_id):
            raise NotFoundError("Drop not found", ErrorCode.DROP_NOT_FOUND)

        skip = (page - 1) * limit
        entries = waitlist_entry.get_page(db, drop_id=drop_id, skip=skip, limit=limit)
        total = waitlist_entry.count_for_drop(db, drop_id=drop_id)

        return waitlist_schemas.WaitlistPage(
            entries=[
                waitlist_schemas.RankedWaitlistEntry(
                    **waitlist_schemas.WaitlistEntry.model_validate(entry).model_dump(),
                    position=skip + index + 1,
                )
                for index, entry in enumerate(entries)
            ],
            pagination=build_pagination(page, limit, total),
        )

    def list_user_waitlists(
        self,
        db: Session,
        *,
        user_id: str,
        page: int = 1,
        limit: int = 20,
        now: Optional[datetime] = None
    ) -> waitlist_schemas.UserWaitlistsPage:
        """A user's waitlists with positions and whether each can be claimed now."""
        now = now or utcnow()
        skip = (page - 1) * limit

        entries = waitlist_entry.get_multi_by_user(db, user_id=user_id, skip=skip, limit=limit)
        total = waitlist_entry.count_by_user(db, user_id=user_id)

        items = []
        for entry in entries:
            drop = entry.drop
            position = waitlist_entry.get_rank(db, entry=entry)

            if not drop.is_active:
                status = WaitlistStatus.INACTIVE
            elif drop.claim_window_start <= now < drop.claim_window_end:
                status = WaitlistStatus.CLAIMABLE
            elif now >= drop.claim_window_end:
                status = WaitlistStatus.ENDED
            elif drop.is_sold_out:
                status = WaitlistStatus.SOLD_OUT
            else:
                status = WaitlistStatus.WAITING

            items.append(waitlist_schemas.UserWaitlistItem(
                **waitlist_schemas.WaitlistEntry.model_validate(entry).model_dump(),
                drop=drop_schemas.Drop.model_validate(drop),
                position=position,
                status=status,
                can_claim=status == WaitlistStatus.CLAIMABLE and position <= drop.available_stock,
                estimated_claim_time=drop.claim_window_start,
            ))

        summary = waitlist_schemas.UserWaitlistSummary(
            total_active=sum(1 for item in items if item.status == WaitlistStatus.WAITING),
            total_claimable=sum(1 for item in items if item.can_claim),
            total_completed=sum(
                1 for item in items
                if item.status in (WaitlistStatus.ENDED, WaitlistStatus.SOLD_OUT, WaitlistStatus.INACTIVE)
            ),
        )

        return waitlist_schemas.UserWaitlistsPage(
            entries=items,
            pagination=build_pagination(page, limit, total),
            summary=summary,
        )


waitlist_service = WaitlistService()
