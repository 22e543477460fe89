# app/api/v1/endpoints/waitlist.py
from typing import Optional
import logging

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from app.api import deps
from app.core.limiter import limiter
from app.core.seed import SeedData
from app.schemas.token import TokenPayload
from app.schemas.waitlist import (
    UserWaitlistsPage,
    WaitlistEntry,
    WaitlistJoinResponse,
    WaitlistLeaveResponse,
    WaitlistPage,
    WaitlistStatusResponse,
)
from app.services.waitlist_service import waitlist_service
from app.utils.validators import validate_drop_id

router = APIRouter(tags=["Waitlist"])
logger = logging.getLogger(__name__)


# ==================== Waitlist Endpoints ====================

@router.post(
    "/drops/{drop_id}/join",
    response_model=WaitlistJoinResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("10/minute")  # Rate limiting to slow down join bursts
def join_waitlist(
    drop_id: str,
    request: Request,  # Required for rate limiting
    response: Response,
    db: Session = Depends(deps.get_db),
    seed: Optional[SeedData] = Depends(deps.get_seed),
    current_user: TokenPayload = Depends(deps.get_current_user)
):
    """
    Join the waitlist for a drop.

    The entry gets its priority score at join time. Joining again returns the
    existing entry with 200 instead of 201.

    **Errors**:
    - 404: Drop not found
    - 409: Drop inactive, not started, waitlist phase over, ended or sold out
    """
    drop_id = validate_drop_id(drop_id)

    result = waitlist_service.join_waitlist(
        db, user_id=current_user.sub, drop_id=drop_id, seed=seed
    )

    if not result.is_new:
        response.status_code = status.HTTP_200_OK
        return WaitlistJoinResponse(
            message="Already in waitlist",
            is_new=False,
            entry=WaitlistEntry.model_validate(result.entry),
        )

    return WaitlistJoinResponse(
        message="Successfully joined waitlist",
        is_new=True,
        entry=WaitlistEntry.model_validate(result.entry),
    )


@router.post("/drops/{drop_id}/leave", response_model=WaitlistLeaveResponse)
@limiter.limit("10/minute")
def leave_waitlist(
    drop_id: str,
    request: Request,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user)
):
    """
    Leave the waitlist for a drop. Succeeds even if the user was not on it.

    **Errors**:
    - 404: Drop not found
    - 403: Claim window already started (waitlist is locked)
    """
    drop_id = validate_drop_id(drop_id)

    result = waitlist_service.leave_waitlist(db, user_id=current_user.sub, drop_id=drop_id)

    return WaitlistLeaveResponse(
        success=result.success,
        message="Successfully left waitlist" if result.removed else "Not in waitlist",
    )


@router.get("/drops/{drop_id}/my-waitlist-status", response_model=WaitlistStatusResponse)
def get_my_waitlist_status(
    drop_id: str,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user)
):
    """Current user's waitlist entry and 1-based position for a drop."""
    drop_id = validate_drop_id(drop_id)

    entry, position = waitlist_service.get_waitlist_status(
        db, user_id=current_user.sub, drop_id=drop_id
    )
    if not entry:
        return WaitlistStatusResponse(in_waitlist=False, message="Not in waitlist")

    return WaitlistStatusResponse(
        in_waitlist=True,
        entry=WaitlistEntry.model_validate(entry),
        position=position,
        message=f"You are #{position} in the waitlist",
    )


@router.get("/drops/{drop_id}/waitlist", response_model=WaitlistPage)
def list_drop_waitlist(
    drop_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    db: Session = Depends(deps.get_db),
    admin: TokenPayload = Depends(deps.require_admin)
):
    """
    List a drop's waitlist in rank order (admin only).

    **Errors**:
    - 403: Caller is not an admin
    - 404: Drop not found
    """
    drop_id = validate_drop_id(drop_id)
    return waitlist_service.list_waitlist(db, drop_id=drop_id, page=page, limit=limit)


@router.get("/my-waitlists", response_model=UserWaitlistsPage)
def list_my_waitlists(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user)
):
    """Every waitlist the current user is on, with positions and claimability."""
    return waitlist_service.list_user_waitlists(
        db, user_id=current_user.sub, page=page, limit=limit
    )
