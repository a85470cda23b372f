"""
Authentication - bearer token to (user_id, role) identity
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError

from sqlbroker.config import settings
from sqlbroker.core.roles import Role

security = HTTPBearer(auto_error=False)


class UnauthorizedError(HTTPException):
    """Unauthorized exception."""
    def __init__(self, detail: str = "Not authenticated"):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


@dataclass(frozen=True)
class Identity:
    """Authenticated caller as seen by the broker."""
    user_id: str
    role: str


def create_access_token(user_id: str, role: str, expires_minutes: Optional[int] = None) -> str:
    """Create JWT access token."""
    expire = datetime.utcnow() + timedelta(
        minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES
    )
    payload = {
        "sub": str(user_id),
        "role": role.value if isinstance(role, Role) else role,
        "exp": expire,
        "type": "access"
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def verify_token(token: str) -> Optional[Identity]:
    """Verify JWT token and return the identity it carries."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None

    if payload.get("type") != "access" or not payload.get("sub"):
        return None
    return Identity(user_id=payload["sub"], role=payload.get("role") or Role.VIEWER.value)


async def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Identity:
    """Get current identity from the bearer token."""
    if credentials is None:
        raise UnauthorizedError()

    identity = verify_token(credentials.credentials)
    if identity is None:
        raise UnauthorizedError("Invalid or expired token")
    return identity
