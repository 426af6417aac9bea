from __future__ import annotations

from datetime import datetime, timedelta, timezone

from study_access.core.config import get_settings
from study_access.economy.entitlements.mirror import record_entitlement_mirror
from study_access.economy.entitlements.reconciler import EntitlementReconciler, build_reconciler
from study_access.economy.side_effects.service import run_side_effect_once

TRIAL_START_KIND = "trial_start"
TRIAL_TIER = "pro"


async def start_trial_once(
    *,
    user_id: str,
    reconciler: EntitlementReconciler | None = None,
    now_utc: datetime | None = None,
) -> str:
    settings = get_settings()
    now_utc = now_utc or datetime.now(timezone.utc)
    expires_at = now_utc + timedelta(days=settings.trial_days)

    async def _grant_trial() -> None:
        outcome = await (reconciler or build_reconciler()).grant(
            user_id=user_id,
            tier=TRIAL_TIER,
            target_expires_at=expires_at,
        )
        if outcome.action == "unchanged":
            # an existing longer grant is not a trial
            return
        await record_entitlement_mirror(
            user_id=user_id,
            tier=TRIAL_TIER,
            expires_at=outcome.expires_at,
            source="trial",
            now_utc=now_utc,
        )

    return await run_side_effect_once(
        kind=TRIAL_START_KIND,
        subject_key=user_id,
        user_id=user_id,
        action=_grant_trial,
    )
