# app/models/user.py
import uuid
from sqlalchemy import Column, String, func
from app.db.base_class import Base
from app.db.types import UTCDateTime, utcnow


class User(Base):
    """
    Account record owned by the auth service.

    The allocation engine only reads it: `created_at` feeds the account-age
    term of the priority score.
    """
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: f"usr_{uuid.uuid4().hex[:12]}")
    email = Column(String, nullable=False, unique=True)
    role = Column(String(20), nullable=False, server_default="USER")
    created_at = Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now())
