from datetime import datetime, timedelta
from typing import Optional, Any, Dict
from jose import jwt, JWTError
from .config import settings


def create_access_token(subject: str, expires_delta: Optional[timedelta] = None, auth_provider: Optional[str] = None) -> str:
    """
    Create a JWT access token.

    Args:
        subject: User id - used as JWT sub claim
        expires_delta: Optional expiration time delta
        auth_provider: Optional auth provider (password, phone) for debugging
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    expire = datetime.utcnow() + expires_delta
    payload: Dict[str, Any] = {
        "sub": subject,
        "exp": expire,
        "iat": datetime.utcnow()
    }
    if auth_provider:
        payload["auth_provider"] = auth_provider
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Decode and validate an access token. Raises JWTError when invalid or expired."""
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.ALGORITHM])


__all__ = ["create_access_token", "decode_access_token", "JWTError"]
