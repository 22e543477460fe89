# app/api/deps.py
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from app.core.config import settings
from app.core.seed import SeedData, seed_authority
from app.db.session import get_db  # noqa: F401  (re-exported for endpoints)
from app.schemas.token import TokenPayload


# Tokens are issued by the auth service; tokenUrl only feeds the OpenAPI docs.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")


def get_current_user(token: str = Depends(oauth2_scheme)) -> TokenPayload:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=["HS256"])
        token_data = TokenPayload(**payload)
    except (JWTError, ValueError):
        # jose rejected the token or the payload has no sub
        raise credentials_exception

    return token_data


def require_admin(current_user: TokenPayload = Depends(get_current_user)) -> TokenPayload:
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user


def get_seed(request: Request) -> Optional[SeedData]:
    """
    The fairness seed generated at startup. Falls back to generating it on
    first use when the app was started without its lifespan.
    """
    authority = getattr(request.app.state, "seed_authority", None) or seed_authority
    return authority.generate()
