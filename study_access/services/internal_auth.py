from __future__ import annotations

import secrets

from fastapi import Request


def is_valid_secret(*, expected_secret: str, received_secret: str | None) -> bool:
    if not expected_secret or not received_secret:
        return False
    return secrets.compare_digest(expected_secret, received_secret)


def extract_bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


def is_admin_request_authenticated(request: Request, *, expected_secret: str) -> bool:
    if is_valid_secret(
        expected_secret=expected_secret,
        received_secret=request.headers.get("X-Admin-Secret"),
    ):
        return True
    return is_valid_secret(expected_secret=expected_secret, received_secret=extract_bearer_token(request))


def is_scheduler_request_authenticated(
    request: Request,
    *,
    scheduler_secret: str,
    service_token: str,
) -> bool:
    if is_valid_secret(
        expected_secret=scheduler_secret,
        received_secret=request.headers.get("X-Scheduler-Secret"),
    ):
        return True
    return is_valid_secret(expected_secret=service_token, received_secret=extract_bearer_token(request))
