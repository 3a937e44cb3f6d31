"""
Security Module: Caller Identity
================================

Every analysis call is made on behalf of an authenticated user. Identity
arrives as a bearer JWT signed with the application secret; the ``sub``
claim is the user ID that admission, caching and audit are keyed on.

Provides:
- JWT access token creation and validation (python-jose)
- FastAPI dependency resolving the current user ID
- Security response headers

Architectural Pattern: Security Utilities + Cross-Cutting Concerns
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from loguru import logger
from pydantic import BaseModel

from config.settings import get_settings
from core.exceptions import AuthenticationError

ACCESS_TOKEN_EXPIRE_MINUTES = 60

bearer_scheme = HTTPBearer(auto_error=False)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
}


class TokenData(BaseModel):
    """Validated claims of an access token."""

    user_id: str
    expires_at: Optional[datetime] = None
    issued_at: Optional[datetime] = None
    jti: Optional[str] = None


def create_access_token(
    subject: str,
    expires_delta: Optional[timedelta] = None,
    extra_claims: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Create a signed access token for a user.

    Args:
        subject: User ID stored in the ``sub`` claim
        expires_delta: Lifetime; defaults to ACCESS_TOKEN_EXPIRE_MINUTES
        extra_claims: Additional claims merged into the payload

    Returns:
        str: The encoded JWT
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))

    to_encode: Dict[str, Any] = dict(extra_claims or {})
    to_encode.update(
        {
            "sub": subject,
            "exp": expire,
            "iat": now,
            "jti": str(uuid4()),
            "iss": settings.jwt_issuer,
            "aud": settings.jwt_audience,
        }
    )

    return jwt.encode(
        to_encode, settings.secret_key.get_secret_value(), algorithm=settings.jwt_algorithm
    )


def decode_access_token(token: str) -> TokenData:
    """
    Decode and validate an access token.

    Raises:
        AuthenticationError: If the token is malformed, expired, or was
            issued for another audience or issuer
    """
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.secret_key.get_secret_value(),
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
        )
    except JWTError as e:
        logger.warning(f"Rejected access token: {e}")
        raise AuthenticationError() from e

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        logger.warning("Access token missing subject claim")
        raise AuthenticationError()

    exp = payload.get("exp")
    iat = payload.get("iat")
    return TokenData(
        user_id=subject,
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc) if exp else None,
        issued_at=datetime.fromtimestamp(iat, tz=timezone.utc) if iat else None,
        jti=payload.get("jti"),
    )


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """FastAPI dependency: the authenticated caller's user ID."""
    if credentials is None or not credentials.credentials:
        raise AuthenticationError()
    return decode_access_token(credentials.credentials).user_id


__all__ = [
    "TokenData",
    "create_access_token",
    "decode_access_token",
    "get_current_user_id",
    "SECURITY_HEADERS",
]
