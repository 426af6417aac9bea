from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import structlog

from study_access.db.repo.entitlement_overrides_repo import EntitlementOverridesRepo
from study_access.db.repo.users_repo import UsersRepo
from study_access.db.session import SessionLocal
from study_access.economy.entitlements.mirror import record_entitlement_mirror
from study_access.economy.entitlements.reconciler import EntitlementReconciler, build_reconciler
from study_access.economy.errors import ProviderError
from study_access.economy.types import as_utc

logger = structlog.get_logger(__name__)
DEFAULT_OVERRIDE_DURATION = timedelta(days=3650)


@dataclass(slots=True)
class OverrideGrantResult:
    user_id: str
    ok: bool
    tier: str
    expires_at: datetime | None = None
    error: str | None = None


async def grant_overrides(
    *,
    user_ids: list[str],
    tier: str,
    expires_at: datetime | None,
    note: str | None,
    granted_by: str,
    reconciler: EntitlementReconciler | None = None,
    now_utc: datetime | None = None,
) -> list[OverrideGrantResult]:
    """Force a tier for each user regardless of what the authority reports.

    The authority grant needs a concrete expiry, so an open-ended override is
    granted there for ten years.
    """
    now_utc = now_utc or datetime.now(timezone.utc)
    expires_at = as_utc(expires_at) if expires_at else None
    reconciler = reconciler or build_reconciler()
    authority_expiry = expires_at or now_utc + DEFAULT_OVERRIDE_DURATION

    results: list[OverrideGrantResult] = []
    for user_id in dict.fromkeys(user_ids):
        try:
            outcome = await reconciler.grant(
                user_id=user_id,
                tier=tier,
                target_expires_at=authority_expiry,
            )
        except ProviderError as exc:
            logger.warning("entitlement_override_grant_failed", user_id=user_id, tier=tier)
            results.append(OverrideGrantResult(user_id=user_id, ok=False, tier=tier, error=str(exc)))
            continue

        await record_entitlement_mirror(
            user_id=user_id,
            tier=tier,
            expires_at=outcome.expires_at,
            source="server",
            now_utc=now_utc,
        )
        async with SessionLocal.begin() as session:
            await UsersRepo.ensure_exists(session, user_id=user_id)
            await EntitlementOverridesRepo.upsert(
                session,
                user_id=user_id,
                tier=tier,
                expires_at=expires_at,
                note=note,
                granted_by=granted_by,
                now_utc=now_utc,
            )
        results.append(OverrideGrantResult(user_id=user_id, ok=True, tier=tier, expires_at=expires_at))

    logger.info(
        "entitlement_overrides_granted",
        tier=tier,
        requested=len(results),
        granted=sum(1 for item in results if item.ok),
    )
    return results
