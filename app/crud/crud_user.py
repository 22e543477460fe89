# app/crud/crud_user.py
from app.crud.base import CRUDBase
from app.models.user import User
from app.schemas.user import UserCreate


class CRUDUser(CRUDBase[User, UserCreate, UserCreate]):
    """Read access to accounts managed by the auth service."""


user = CRUDUser(User)
