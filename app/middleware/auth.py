from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from app.config import get_settings

settings = get_settings()
bearer_scheme = HTTPBearer(auto_error=False)

RIDER_ROLE = "rider"
DRIVER_ROLE = "driver"
ADMIN_ROLE = "admin"


def create_access_token(data: dict, expires_minutes: Optional[int] = None) -> str:
    """Sign a JWT with the configured secret (HS256)."""
    minutes = expires_minutes or settings.access_token_expire_minutes
    claims = {**data, "exp": datetime.now(timezone.utc) + timedelta(minutes=minutes)}
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> dict:
    """Decode and validate the JWT Bearer token."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = jwt.decode(
            credentials.credentials,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return payload


def _subject_with_role(token_data: dict, role: str) -> str:
    subject = token_data.get("sub")
    if not subject:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    if token_data.get("role") != role:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"{role.capitalize()} token required")
    return subject


async def get_current_rider(token_data: dict = Depends(get_current_user)) -> str:
    """Extract rider_id from token payload."""
    return _subject_with_role(token_data, RIDER_ROLE)


async def get_current_driver(token_data: dict = Depends(get_current_user)) -> str:
    """Extract driver_id from token payload."""
    return _subject_with_role(token_data, DRIVER_ROLE)


async def require_admin(token_data: dict = Depends(get_current_user)) -> str:
    return _subject_with_role(token_data, ADMIN_ROLE)
