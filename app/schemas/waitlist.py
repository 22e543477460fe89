# app/schemas/waitlist.py
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from app.schemas.drop import Drop


class WaitlistEntryCreate(BaseModel):
    user_id: str
    drop_id: str
    priority_score: Optional[int] = None


class WaitlistEntry(BaseModel):
    id: str
    user_id: str
    drop_id: str
    joined_at: datetime
    priority_score: Optional[int] = None

    model_config = {"from_attributes": True}


class RankedWaitlistEntry(WaitlistEntry):
    position: int


class WaitlistJoinResponse(BaseModel):
    success: bool = True
    message: str
    is_new: bool
    entry: WaitlistEntry


class WaitlistLeaveResponse(BaseModel):
    success: bool
    message: str


class WaitlistStatusResponse(BaseModel):
    in_waitlist: bool
    entry: Optional[WaitlistEntry] = None
    position: Optional[int] = None
    message: str


class PaginationInfo(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class WaitlistPage(BaseModel):
    entries: list[RankedWaitlistEntry]
    pagination: PaginationInfo


class UserWaitlistItem(WaitlistEntry):
    drop: Drop
    position: int
    status: str
    can_claim: bool
    estimated_claim_time: datetime


class UserWaitlistSummary(BaseModel):
    total_active: int
    total_claimable: int
    total_completed: int


class UserWaitlistsPage(BaseModel):
    entries: list[UserWaitlistItem]
    pagination: PaginationInfo
    summary: UserWaitlistSummary
