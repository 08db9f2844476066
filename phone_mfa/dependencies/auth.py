"""
Authentication dependencies
"""
from fastapi import HTTPException, Request, status
from jose import jwt, JWTError

from ..core.security import decode_access_token


def get_current_user_id(request: Request) -> str:
    """
    Extract the user id (JWT sub claim) from the Authorization header.

    Raises:
        HTTPException: 401 if the token is missing, invalid or expired
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization header"
        )

    token = auth_header[7:]  # Remove "Bearer " prefix

    try:
        payload = decode_access_token(token)
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired"
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token"
        )

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has no subject"
        )
    return str(user_id)
