# app/api/v1/endpoints/claims.py
from typing import Optional
import logging

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session

from app.api import deps
from app.core.limiter import limiter
from app.core.seed import SeedData
from app.schemas.claim import (
    Claim,
    ClaimDropInfo,
    ClaimResponse,
    ClaimStatusResponse,
    CleanupResponse,
    CompleteClaimResponse,
    UserClaimsResponse,
)
from app.schemas.token import TokenPayload
from app.services.allocation_service import allocation_service
from app.utils.validators import validate_drop_id

router = APIRouter(tags=["Claims"])
logger = logging.getLogger(__name__)


@router.post(
    "/drops/{drop_id}/claim",
    response_model=ClaimResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("5/minute")
def claim_drop(
    drop_id: str,
    request: Request,  # Required for rate limiting
    response: Response,
    db: Session = Depends(deps.get_db),
    seed: Optional[SeedData] = Depends(deps.get_seed),
    current_user: TokenPayload = Depends(deps.get_current_user)
):
    """
    Claim one unit of a drop.

    Only users on the waitlist whose position is within the remaining stock
    can claim, and only while the claim window is open. Retrying after a
    successful claim returns the same claim with 200.

    **Errors**:
    - 404: Drop not found
    - 409: Drop inactive, claim window not open, or sold out
    - 403: Not in waitlist, or position beyond available stock
    - 500: Claim transaction kept conflicting
    """
    drop_id = validate_drop_id(drop_id)

    result = allocation_service.claim_drop(
        db, user_id=current_user.sub, drop_id=drop_id, seed=seed
    )

    if not result.is_new:
        response.status_code = status.HTTP_200_OK

    return ClaimResponse(
        message="Claim successful" if result.is_new else "You have already claimed this drop",
        claim=Claim.model_validate(result.claim),
        drop=ClaimDropInfo(id=result.drop.id, title=result.drop.title, phase=result.phase),
    )


@router.get("/drops/{drop_id}/claim/status", response_model=ClaimStatusResponse)
def get_claim_status(
    drop_id: str,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user)
):
    """Current user's claim for a drop, if any."""
    drop_id = validate_drop_id(drop_id)
    return allocation_service.get_claim_status(db, user_id=current_user.sub, drop_id=drop_id)


@router.put("/drops/{drop_id}/claim/complete", response_model=CompleteClaimResponse)
@limiter.limit("10/minute")
def complete_claim(
    drop_id: str,
    request: Request,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user)
):
    """
    Mark the current user's claim as completed.

    **Errors**:
    - 404: No claim for this drop
    - 410: Claim expired
    """
    drop_id = validate_drop_id(drop_id)

    claim = allocation_service.complete_claim(db, user_id=current_user.sub, drop_id=drop_id)
    return CompleteClaimResponse(claim=Claim.model_validate(claim))


@router.get("/my-claims", response_model=UserClaimsResponse)
def list_my_claims(
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user)
):
    """All claims of the current user, newest first."""
    claims = allocation_service.list_user_claims(db, user_id=current_user.sub)
    return UserClaimsResponse(claims=claims, total=len(claims))


@router.post("/admin/claims/cleanup", response_model=CleanupResponse)
def cleanup_expired_claims(
    db: Session = Depends(deps.get_db),
    admin: TokenPayload = Depends(deps.require_admin)
):
    """
    Mark overdue PENDING claims as EXPIRED (admin only).

    The same sweep runs on a schedule; this triggers it on demand.
    """
    updated = allocation_service.cleanup_expired_claims(db)
    logger.info(f"Admin {admin.sub} ran expired claim cleanup: {updated} updated")
    return CleanupResponse(updated_count=updated, message=f"Updated {updated} expired claims")
