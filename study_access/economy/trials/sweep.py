from __future__ import annotations

from datetime import datetime, timedelta, timezone

import structlog

from study_access.core.config import get_settings
from study_access.db.repo.entitlement_mirrors_repo import EntitlementMirrorsRepo, TrialWarningCandidate
from study_access.db.session import SessionLocal
from study_access.economy.trials.messages import (
    ONE_DAY,
    build_trial_warning_message,
    days_remaining,
)
from study_access.services.push_notifications import PushMessage, send_push_messages

logger = structlog.get_logger(__name__)


def _build_push_message(
    candidate: TrialWarningCandidate,
    *,
    days: int,
    upgrade_url: str,
) -> PushMessage:
    message = build_trial_warning_message(days)
    return PushMessage(
        to=candidate.push_token,
        title=message.title,
        body=message.body,
        data={
            "type": "trial_expiry",
            "daysRemaining": days,
            "expiresAt": candidate.expires_at.isoformat(),
            "upgradeUrl": upgrade_url,
            "action": "open_paywall",
        },
    )


async def run_trial_expiry_sweep(
    *,
    now_utc: datetime | None = None,
    batch_size: int | None = None,
) -> dict[str, int]:
    """Send day-count warnings for trials close to expiry.

    Each user's warning for a given day count is claimed in the mirror before
    the push goes out, so overlapping or repeated sweeps never resend it. The
    sweep only notifies; tier and expiry are left untouched.
    """
    settings = get_settings()
    now_utc = now_utc or datetime.now(timezone.utc)
    page_size = max(1, batch_size or settings.trial_sweep_batch_size)
    window_start = now_utc - ONE_DAY
    window_end = now_utc + timedelta(days=settings.trial_warning_days)

    scanned = 0
    skipped = 0
    messages: list[PushMessage] = []
    after_user_id: str | None = None
    while True:
        async with SessionLocal.begin() as session:
            candidates = await EntitlementMirrorsRepo.list_trial_warning_candidates(
                session,
                window_start=window_start,
                window_end=window_end,
                after_user_id=after_user_id,
                limit=page_size,
            )
            for candidate in candidates:
                scanned += 1
                days = days_remaining(expires_at=candidate.expires_at, now_utc=now_utc)
                if candidate.last_warning_days_remaining == days:
                    skipped += 1
                    continue
                claimed = await EntitlementMirrorsRepo.claim_trial_warning(
                    session,
                    user_id=candidate.user_id,
                    days_remaining=days,
                    now_utc=now_utc,
                )
                if not claimed:
                    skipped += 1
                    continue
                messages.append(
                    _build_push_message(candidate, days=days, upgrade_url=settings.push_upgrade_url)
                )

        if len(candidates) < page_size:
            break
        after_user_id = candidates[-1].user_id

    delivery = await send_push_messages(messages)
    result = {
        "warned": delivery.sent,
        "scanned": scanned,
        "skipped": skipped,
        "failed": delivery.failed,
    }
    logger.info("trial_expiry_sweep_finished", **result)
    return result
