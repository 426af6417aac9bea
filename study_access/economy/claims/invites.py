from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import structlog

from study_access.core.config import get_settings
from study_access.db.repo.side_effect_claims_repo import SideEffectClaimsRepo
from study_access.db.session import SessionLocal
from study_access.economy.claims.checkout import InvalidBeneficiaryEmailError, normalize_beneficiary_email
from study_access.economy.side_effects.emails import (
    PARENT_INVITE_EMAIL_KIND,
    build_parent_invite_email,
    delivery_tags,
)
from study_access.economy.side_effects.service import run_side_effect_once
from study_access.services.email_delivery import send_email

logger = structlog.get_logger(__name__)
INVITE_LIMIT_WINDOW = timedelta(hours=24)


class InvalidParentEmailError(Exception):
    pass


class InviteLimitReachedError(Exception):
    pass


async def send_parent_invite(
    *,
    user_id: str,
    child_email: str,
    parent_email: str,
    now_utc: datetime | None = None,
) -> str:
    """Email a parent/guardian a link to the checkout page for this student.

    Every invite is its own side-effect row, so the rolling daily limit is a
    count of the user's rows of this kind.
    """
    settings = get_settings()
    now_utc = now_utc or datetime.now(timezone.utc)
    try:
        parent_email = normalize_beneficiary_email(parent_email)
    except InvalidBeneficiaryEmailError as exc:
        raise InvalidParentEmailError from exc

    async with SessionLocal.begin() as session:
        recent = await SideEffectClaimsRepo.count_created_since(
            session,
            kind=PARENT_INVITE_EMAIL_KIND,
            user_id=user_id,
            since_utc=now_utc - INVITE_LIMIT_WINDOW,
        )
    if recent >= settings.parent_invite_daily_limit:
        logger.info("parent_invite_limited", recent=recent, limit=settings.parent_invite_daily_limit)
        raise InviteLimitReachedError

    invite_key = uuid4().hex
    message = replace(
        build_parent_invite_email(
            to_email=parent_email,
            child_email=child_email,
            marketing_base_url=settings.marketing_base_url,
        ),
        custom_args=delivery_tags(kind=PARENT_INVITE_EMAIL_KIND, subject_key=invite_key),
    )

    async def _send() -> None:
        await send_email(message)

    status = await run_side_effect_once(
        kind=PARENT_INVITE_EMAIL_KIND,
        subject_key=invite_key,
        user_id=user_id,
        action=_send,
    )
    logger.info("parent_invite_processed", invite_key=invite_key, status=status)
    return status
