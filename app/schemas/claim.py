# app/schemas/claim.py
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from app.schemas.drop import DropSummary


class ClaimCreate(BaseModel):
    user_id: str
    drop_id: str
    claim_code: str
    expires_at: datetime


class Claim(BaseModel):
    id: str
    claim_code: str
    status: str
    claimed_at: datetime
    expires_at: datetime

    model_config = {"from_attributes": True}


class ClaimView(Claim):
    """Claim as seen by its owner; status reflects expiry even before the sweep."""
    is_expired: bool
    drop: Optional[DropSummary] = None


class ClaimDropInfo(BaseModel):
    id: str
    title: str
    phase: str


class ClaimResponse(BaseModel):
    success: bool = True
    message: str
    claim: Claim
    drop: ClaimDropInfo


class ClaimStatusResponse(BaseModel):
    has_claim: bool
    claim: Optional[ClaimView] = None
    message: Optional[str] = None


class CompleteClaimResponse(BaseModel):
    success: bool = True
    message: str = "Claim completed successfully"
    claim: Claim


class UserClaimsResponse(BaseModel):
    claims: list[ClaimView]
    total: int


class CleanupResponse(BaseModel):
    updated_count: int
    message: str
