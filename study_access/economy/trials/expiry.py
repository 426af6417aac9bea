from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from study_access.db.repo.entitlement_mirrors_repo import EntitlementMirrorsRepo
from study_access.economy.errors import TrialNotActiveError, TrialNotExpiredError

logger = structlog.get_logger(__name__)


async def expire_trial(
    session: AsyncSession,
    *,
    user_id: str,
    now_utc: datetime | None = None,
) -> dict[str, object]:
    now_utc = now_utc or datetime.now(timezone.utc)
    mirror = await EntitlementMirrorsRepo.get_by_user_id_for_update(session, user_id)
    if mirror is None or mirror.source != "trial":
        raise TrialNotActiveError
    if mirror.expired_processed_at is not None:
        return {"status": "already_processed", "tier": mirror.tier}
    if mirror.expires_at is None or mirror.expires_at > now_utc:
        raise TrialNotExpiredError

    processed = await EntitlementMirrorsRepo.mark_trial_expired(session, user_id=user_id, now_utc=now_utc)
    if not processed:
        return {"status": "already_processed", "tier": mirror.tier}

    logger.info("trial_expired_processed", user_id=user_id, expired_at=mirror.expires_at)
    return {"status": "processed", "tier": "free"}
