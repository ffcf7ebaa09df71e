from typing import Optional

from fastapi import HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from .client import HabitBackend
from .config import Settings

ALGORITHM = "HS256"
AUDIENCE = "authenticated"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/login")


class CurrentUser(BaseModel):
    id: str
    email: Optional[str] = None
    access_token: str


def credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_access_token(token: str, secret: str) -> CurrentUser:
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM], audience=AUDIENCE)
    except JWTError:
        raise credentials_exception()
    user_id = payload.get("sub")
    if not user_id:
        raise credentials_exception()
    return CurrentUser(id=user_id, email=payload.get("email"), access_token=token)


def resolve_user(token: str, settings: Settings, backend: HabitBackend) -> CurrentUser:
    """Verify locally when the project's JWT secret is known, otherwise ask the auth service."""
    if settings.supabase_jwt_secret:
        return decode_access_token(token, settings.supabase_jwt_secret)
    user = backend.get_user(token)
    if user is None:
        raise credentials_exception()
    return CurrentUser(id=user.id, email=user.email, access_token=token)
