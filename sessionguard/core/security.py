import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from fastapi import Request
from jose import JWTError, jwt

from sessionguard.core.config import settings
from sessionguard.core.exceptions import InvalidTokenError

ACCESS_TOKEN_COOKIE_NAME = "access_token"


def create_access_token(
    subject: str,
    expires_delta: Optional[timedelta] = None,
    issued_at: Optional[datetime] = None,
    jti: Optional[str] = None,
    extra_claims: Optional[Dict[str, Any]] = None,
) -> str:
    """Create JWT access token"""
    issued = issued_at or datetime.utcnow()

    if expires_delta:
        expire = issued + expires_delta
    else:
        expire = issued + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode = dict(extra_claims or {})
    to_encode.update(
        {
            "sub": str(subject),
            "iat": issued,
            "exp": expire,
            "jti": jti or uuid.uuid4().hex,
            "type": "access",
        }
    )
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict:
    """Verify signature and expiry, return the decoded claims."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise InvalidTokenError()


def extract_token(request: Request) -> Optional[str]:
    """Read the access token from its cookie, falling back to a bearer header."""
    token = request.cookies.get(ACCESS_TOKEN_COOKIE_NAME)
    if token:
        return token

    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1].strip() or None

    return None
