# app/schemas/drop.py
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class DropCreate(BaseModel):
    title: str
    description: str = ""
    image_url: Optional[str] = None
    total_stock: int = Field(gt=0)
    start_date: datetime
    claim_window_start: datetime
    claim_window_end: datetime
    end_date: datetime
    is_active: bool = True

    @model_validator(mode="after")
    def check_window_order(self):
        if not (self.start_date <= self.claim_window_start < self.claim_window_end <= self.end_date):
            raise ValueError(
                "Drop windows must satisfy start_date <= claim_window_start "
                "< claim_window_end <= end_date"
            )
        return self


class DropSummary(BaseModel):
    id: str
    title: str
    claim_window_start: datetime
    claim_window_end: datetime

    model_config = {"from_attributes": True}


class Drop(BaseModel):
    id: str
    title: str
    description: str
    image_url: Optional[str] = None
    total_stock: int
    claimed_stock: int
    available_stock: int
    start_date: datetime
    claim_window_start: datetime
    claim_window_end: datetime
    end_date: datetime
    is_active: bool

    model_config = {"from_attributes": True}


class DropListing(Drop):
    waitlist_count: int
    phase: str


class DropListResponse(BaseModel):
    drops: list[DropListing]
    count: int
