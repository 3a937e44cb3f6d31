"""
Unit Tests for Caller Identity
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.security import HTTPAuthorizationCredentials
from jose import jwt

from config.settings import get_settings
from core.exceptions import AuthenticationError
from security import create_access_token, decode_access_token, get_current_user_id


def _sign(claims) -> str:
    settings = get_settings()
    return jwt.encode(claims, settings.secret_key.get_secret_value(), algorithm=settings.jwt_algorithm)


def test_token_round_trip():
    token = create_access_token("user-42", extra_claims={"plan": "pro"})

    data = decode_access_token(token)

    assert data.user_id == "user-42"
    assert data.jti
    assert data.expires_at > datetime.now(timezone.utc)
    assert jwt.get_unverified_claims(token)["plan"] == "pro"


def test_expired_token_is_rejected():
    token = create_access_token("user-42", expires_delta=timedelta(seconds=-10))

    with pytest.raises(AuthenticationError):
        decode_access_token(token)


def test_foreign_audience_is_rejected():
    settings = get_settings()
    token = _sign(
        {
            "sub": "user-42",
            "iss": settings.jwt_issuer,
            "aud": "some-other-service",
            "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
        }
    )

    with pytest.raises(AuthenticationError):
        decode_access_token(token)


def test_token_without_subject_is_rejected():
    settings = get_settings()
    token = _sign(
        {
            "iss": settings.jwt_issuer,
            "aud": settings.jwt_audience,
            "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
        }
    )

    with pytest.raises(AuthenticationError):
        decode_access_token(token)


def test_tampered_token_is_rejected():
    token = create_access_token("user-42")

    with pytest.raises(AuthenticationError):
        decode_access_token(token[:-4] + "abcd")


@pytest.mark.asyncio
async def test_dependency_resolves_user_id():
    credentials = HTTPAuthorizationCredentials(
        scheme="Bearer", credentials=create_access_token("user-7")
    )

    assert await get_current_user_id(credentials) == "user-7"


@pytest.mark.asyncio
async def test_dependency_requires_credentials():
    with pytest.raises(AuthenticationError) as exc_info:
        await get_current_user_id(None)

    assert exc_info.value.error_code == "UNAUTHENTICATED"
