from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from study_access.core.config import get_settings
from study_access.db.models.entitlement_mirrors import EntitlementMirror
from study_access.db.models.entitlement_overrides import EntitlementOverride
from study_access.db.repo.entitlement_mirrors_repo import EntitlementMirrorsRepo
from study_access.db.repo.entitlement_overrides_repo import EntitlementOverridesRepo
from study_access.economy.entitlements.mirror import record_entitlement_mirror
from study_access.economy.errors import ProviderError
from study_access.economy.types import EntitlementState
from study_access.services.billing_authority import BillingAuthorityClient

logger = structlog.get_logger(__name__)
FREE_ENTITLEMENT = EntitlementState(tier="free", expires_at=None, source="server")
REFRESH_TIER_ORDER = ("premium", "pro")


def resolve_effective_entitlement(
    *,
    override: EntitlementOverride | None,
    mirror: EntitlementMirror | None,
    now_utc: datetime,
) -> EntitlementState:
    if override is not None and (override.expires_at is None or override.expires_at > now_utc):
        return EntitlementState(tier=override.tier, expires_at=override.expires_at, source="override")

    if (
        mirror is not None
        and mirror.tier != "free"
        and (mirror.expires_at is None or mirror.expires_at > now_utc)
    ):
        return EntitlementState(tier=mirror.tier, expires_at=mirror.expires_at, source=mirror.source)

    return FREE_ENTITLEMENT


async def _refresh_from_authority(
    *,
    user_id: str,
    client: BillingAuthorityClient,
    now_utc: datetime,
) -> EntitlementState | None:
    settings = get_settings()
    for tier in REFRESH_TIER_ORDER:
        grant = await client.get_active_grant(
            user_id=user_id,
            entitlement_id=settings.entitlement_id_for_tier(tier),
        )
        if grant is None or (grant.expires_at is not None and grant.expires_at <= now_utc):
            continue
        await record_entitlement_mirror(
            user_id=user_id,
            tier=tier,
            expires_at=grant.expires_at,
            source="server",
            now_utc=now_utc,
        )
        return EntitlementState(tier=tier, expires_at=grant.expires_at, source="server")
    return None


async def get_current_entitlement(
    session: AsyncSession,
    *,
    user_id: str,
    refresh: bool = False,
    client: BillingAuthorityClient | None = None,
    now_utc: datetime | None = None,
) -> EntitlementState:
    now_utc = now_utc or datetime.now(timezone.utc)
    override = await EntitlementOverridesRepo.get_by_user_id(session, user_id)
    if override is not None and (override.expires_at is None or override.expires_at > now_utc):
        return resolve_effective_entitlement(override=override, mirror=None, now_utc=now_utc)

    if refresh:
        try:
            refreshed = await _refresh_from_authority(
                user_id=user_id,
                client=client or BillingAuthorityClient.from_settings(),
                now_utc=now_utc,
            )
        except ProviderError:
            logger.warning("entitlement_refresh_degraded_to_mirror", user_id=user_id)
        else:
            if refreshed is not None:
                return refreshed

    mirror = await EntitlementMirrorsRepo.get_by_user_id(session, user_id)
    return resolve_effective_entitlement(override=None, mirror=mirror, now_utc=now_utc)
