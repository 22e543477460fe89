# app/crud/__init__.py

from .crud_claim import claim
from .crud_drop import drop
from .crud_user import user
from .crud_waitlist_entry import waitlist_entry
