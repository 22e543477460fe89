# app/schemas/user.py
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class UserCreate(BaseModel):
    email: str
    role: str = "USER"
    created_at: Optional[datetime] = None
