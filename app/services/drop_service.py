# app/services/drop_service.py
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app.crud.crud_drop import drop as crud_drop, get_phase
from app.db.types import utcnow
from app.schemas import drop as drop_schemas


def list_upcoming_drops(db: Session, *, now: Optional[datetime] = None) -> drop_schemas.DropListResponse:
    """Drops that have not ended, with waitlist sizes and their current phase."""
    now = now or utcnow()
    listings = [
        drop_schemas.DropListing(
            **drop_schemas.Drop.model_validate(drop).model_dump(),
            waitlist_count=waitlist_count,
            phase=get_phase(drop, now),
        )
        for drop, waitlist_count in crud_drop.get_multi_upcoming(db, now=now)
    ]
    return drop_schemas.DropListResponse(drops=listings, count=len(listings))
