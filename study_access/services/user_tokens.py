from __future__ import annotations

from dataclasses import dataclass

import jwt

USER_TOKEN_ALGORITHM = "HS256"


class UserTokenError(Exception):
    pass


@dataclass(frozen=True, slots=True)
class UserIdentity:
    user_id: str
    email: str | None


def decode_user_token(token: str, *, secret: str, audience: str) -> UserIdentity:
    if not secret:
        raise UserTokenError("user token secret is not configured")
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=[USER_TOKEN_ALGORITHM],
            audience=audience,
            options={"require": ["sub", "exp"]},
        )
    except jwt.PyJWTError as exc:
        raise UserTokenError(str(exc)) from exc

    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject.strip() or len(subject) > 64:
        raise UserTokenError("invalid subject")
    email = claims.get("email")
    return UserIdentity(
        user_id=subject.strip(),
        email=email.strip().lower() if isinstance(email, str) and email.strip() else None,
    )
