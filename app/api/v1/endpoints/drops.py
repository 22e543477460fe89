# app/api/v1/endpoints/drops.py
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.api import deps
from app.core.limiter import limiter
from app.schemas.drop import DropListResponse
from app.services.drop_service import list_upcoming_drops

router = APIRouter(tags=["Drops"])


@router.get("/drops", response_model=DropListResponse)
@limiter.limit("60/minute")
def list_drops(
    request: Request,  # Required for rate limiting
    db: Session = Depends(deps.get_db),
):
    """
    List drops that have not ended yet, soonest first.

    Public endpoint. Each drop carries its available stock, the size of its
    waitlist and its current phase (upcoming, waitlist, claiming, ended).
    """
    return list_upcoming_drops(db)
