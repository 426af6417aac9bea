from __future__ import annotations

from datetime import datetime

import structlog
from sqlalchemy.exc import SQLAlchemyError

from study_access.db.repo.entitlement_mirrors_repo import EntitlementMirrorsRepo
from study_access.db.repo.users_repo import UsersRepo
from study_access.db.session import SessionLocal
from study_access.economy.types import TIER_RANK

logger = structlog.get_logger(__name__)


def _is_active(*, tier: str, expires_at: datetime | None, now_utc: datetime) -> bool:
    if tier == "free":
        return False
    return expires_at is None or expires_at > now_utc


def should_replace_mirror(
    *,
    current_tier: str | None,
    current_expires_at: datetime | None,
    new_tier: str,
    new_expires_at: datetime | None,
    now_utc: datetime,
) -> bool:
    if current_tier is None:
        return True
    if not _is_active(tier=current_tier, expires_at=current_expires_at, now_utc=now_utc):
        return True

    current_rank = TIER_RANK.get(current_tier, 0)
    new_rank = TIER_RANK.get(new_tier, 0)
    if new_rank != current_rank:
        return new_rank > current_rank
    if new_expires_at is None:
        return True
    return current_expires_at is not None and new_expires_at >= current_expires_at


async def record_entitlement_mirror(
    *,
    user_id: str,
    tier: str,
    expires_at: datetime | None,
    source: str,
    now_utc: datetime,
) -> bool:
    """Write the local mirror after an external grant.

    Runs in its own transaction; a failure is logged and never undoes the
    grant that preceded it.
    """
    try:
        async with SessionLocal.begin() as session:
            await UsersRepo.ensure_exists(session, user_id=user_id)
            current = await EntitlementMirrorsRepo.get_by_user_id_for_update(session, user_id)
            if not should_replace_mirror(
                current_tier=current.tier if current is not None else None,
                current_expires_at=current.expires_at if current is not None else None,
                new_tier=tier,
                new_expires_at=expires_at,
                now_utc=now_utc,
            ):
                return False

            await EntitlementMirrorsRepo.upsert(
                session,
                user_id=user_id,
                tier=tier,
                expires_at=expires_at,
                source=source,
                now_utc=now_utc,
            )
    except (SQLAlchemyError, OSError):
        logger.exception(
            "entitlement_mirror_write_failed",
            user_id=user_id,
            tier=tier,
            expires_at=expires_at,
            source=source,
        )
        return False
    return True
