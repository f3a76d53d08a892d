"""Access tokens identifying the user behind REST calls and WebSocket connections.

Accounts are issued elsewhere; this service signs tokens only for scripts and
tests, and otherwise just verifies them. ``sub`` carries the user id.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional
import uuid

from jose import JWTError, jwt

from .config import settings


ACCESS_TOKEN_TYPE = "access"


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
        "type": ACCESS_TOKEN_TYPE,
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def user_id_from_token(token: str) -> str:
    """
    Verify an access token and return its user id.

    Raises:
        JWTError: bad signature, expired, wrong token type or no ``sub``
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise JWTError("Invalid or expired token") from exc

    if payload.get("type") != ACCESS_TOKEN_TYPE:
        raise JWTError("Invalid token type")
    user_id = payload.get("sub")
    if not user_id:
        raise JWTError("Token has no subject")
    return str(user_id)
