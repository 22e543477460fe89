# app/models/__init__.py
# Import all models to ensure SQLAlchemy can resolve relationships
# Order matters for dependencies - import base models first

from app.db.base_class import Base
from app.models.user import User
from app.models.drop import Drop
from app.models.waitlist_entry import WaitlistEntry
from app.models.claim import Claim
