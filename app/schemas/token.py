from pydantic import BaseModel

from app.constants.claim import UserRole


class TokenPayload(BaseModel):
    sub: str  # "sub" is the standard claim for subject (user ID)
    role: str = UserRole.USER
    exp: int  # Standard claim for expiration time

    model_config = {
        "from_attributes": True,
    }

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
