from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

import structlog

from study_access.db.repo.side_effect_claims_repo import SideEffectClaimsRepo
from study_access.db.session import SessionLocal

logger = structlog.get_logger(__name__)

SIDE_EFFECT_SENT = "sent"
SIDE_EFFECT_SKIPPED = "skipped"
SIDE_EFFECT_FAILED = "failed"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def run_side_effect_once(
    *,
    kind: str,
    subject_key: str,
    action: Callable[[], Awaitable[None]],
    user_id: str | None = None,
) -> str:
    """Run ``action`` at most once per ``(kind, subject_key)``.

    The claim (pending/failed -> sending) commits before the action runs, so a
    concurrent or duplicate invocation sees ``sending`` or ``sent`` and skips.
    A failed action leaves the row ``failed`` and eligible for a later retry.
    """
    async with SessionLocal.begin() as session:
        await SideEffectClaimsRepo.ensure(
            session,
            kind=kind,
            subject_key=subject_key,
            user_id=user_id,
            now_utc=_utc_now(),
        )
        claimed = await SideEffectClaimsRepo.try_claim(
            session,
            kind=kind,
            subject_key=subject_key,
            now_utc=_utc_now(),
        )

    if not claimed:
        logger.info("side_effect_skipped", kind=kind, subject_key=subject_key)
        return SIDE_EFFECT_SKIPPED

    try:
        await action()
    except Exception as exc:
        logger.warning(
            "side_effect_failed",
            kind=kind,
            subject_key=subject_key,
            error_type=type(exc).__name__,
        )
        async with SessionLocal.begin() as session:
            await SideEffectClaimsRepo.mark_failed(
                session,
                kind=kind,
                subject_key=subject_key,
                error=str(exc) or type(exc).__name__,
                now_utc=_utc_now(),
            )
        return SIDE_EFFECT_FAILED

    async with SessionLocal.begin() as session:
        await SideEffectClaimsRepo.mark_sent(
            session,
            kind=kind,
            subject_key=subject_key,
            now_utc=_utc_now(),
        )
    logger.info("side_effect_sent", kind=kind, subject_key=subject_key)
    return SIDE_EFFECT_SENT
