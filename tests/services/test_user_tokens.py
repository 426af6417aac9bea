from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from study_access.services.user_tokens import UserTokenError, decode_user_token

SECRET = "unit-test-secret-with-enough-bytes"


def _token(**claims: object) -> str:
    payload: dict[str, object] = {
        "sub": "user-1",
        "aud": "authenticated",
        "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
    }
    payload.update(claims)
    return jwt.encode({k: v for k, v in payload.items() if v is not None}, SECRET, algorithm="HS256")


def test_decode_user_token_returns_identity() -> None:
    identity = decode_user_token(_token(email=" Kid@Example.COM "), secret=SECRET, audience="authenticated")
    assert identity.user_id == "user-1"
    assert identity.email == "kid@example.com"


def test_decode_user_token_rejects_wrong_audience() -> None:
    with pytest.raises(UserTokenError):
        decode_user_token(_token(aud="other"), secret=SECRET, audience="authenticated")


def test_decode_user_token_rejects_expired_token() -> None:
    expired = _token(exp=datetime.now(timezone.utc) - timedelta(minutes=1))
    with pytest.raises(UserTokenError):
        decode_user_token(expired, secret=SECRET, audience="authenticated")


def test_decode_user_token_requires_subject() -> None:
    with pytest.raises(UserTokenError):
        decode_user_token(_token(sub=None), secret=SECRET, audience="authenticated")


def test_decode_user_token_rejects_oversized_subject() -> None:
    with pytest.raises(UserTokenError):
        decode_user_token(_token(sub="u" * 65), secret=SECRET, audience="authenticated")


def test_decode_user_token_requires_configured_secret() -> None:
    with pytest.raises(UserTokenError):
        decode_user_token(_token(), secret="", audience="authenticated")
