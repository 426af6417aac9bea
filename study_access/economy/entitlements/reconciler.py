from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

import structlog

from study_access.core.config import Settings, get_settings
from study_access.economy.errors import ProviderError
from study_access.services.billing_authority import BillingAuthorityClient

logger = structlog.get_logger(__name__)

RECONCILE_UNCHANGED = "unchanged"
RECONCILE_GRANTED = "granted"
RECONCILE_EXTENDED = "extended"


@dataclass(frozen=True, slots=True)
class ReconcileOutcome:
    action: str
    # None means the active grant never expires
    expires_at: datetime | None


class EntitlementReconciler:
    """Monotonic grant policy against the external entitlement authority.

    An existing grant is never shortened. A shorter grant is lengthened by
    revoking it and granting again; the pair is not atomic, and a failure
    between the two calls leaves the user under-entitled until the next
    attempt re-grants.
    """

    def __init__(self, client: BillingAuthorityClient, *, settings: Settings | None = None) -> None:
        self._client = client
        self._settings = settings or get_settings()

    async def grant(
        self,
        *,
        user_id: str,
        tier: str,
        target_expires_at: datetime,
    ) -> ReconcileOutcome:
        entitlement_id = self._settings.entitlement_id_for_tier(tier)
        current = await self._client.get_active_grant(user_id=user_id, entitlement_id=entitlement_id)

        if current is not None and (
            current.expires_at is None or current.expires_at >= target_expires_at
        ):
            logger.info(
                "entitlement_grant_unchanged",
                user_id=user_id,
                tier=tier,
                current_expires_at=current.expires_at,
                target_expires_at=target_expires_at,
            )
            return ReconcileOutcome(action=RECONCILE_UNCHANGED, expires_at=current.expires_at)

        if current is None:
            await self._client.grant(
                user_id=user_id,
                entitlement_id=entitlement_id,
                expires_at=target_expires_at,
            )
            logger.info(
                "entitlement_granted",
                user_id=user_id,
                tier=tier,
                expires_at=target_expires_at,
            )
            return ReconcileOutcome(action=RECONCILE_GRANTED, expires_at=target_expires_at)

        await self._client.revoke(user_id=user_id, entitlement_id=entitlement_id)
        try:
            await self._client.grant(
                user_id=user_id,
                entitlement_id=entitlement_id,
                expires_at=target_expires_at,
            )
        except ProviderError:
            logger.error(
                "entitlement_extension_grant_failed",
                user_id=user_id,
                tier=tier,
                revoked_expires_at=current.expires_at,
                target_expires_at=target_expires_at,
            )
            raise

        logger.info(
            "entitlement_extended",
            user_id=user_id,
            tier=tier,
            previous_expires_at=current.expires_at,
            expires_at=target_expires_at,
        )
        return ReconcileOutcome(action=RECONCILE_EXTENDED, expires_at=target_expires_at)


def build_reconciler() -> EntitlementReconciler:
    settings = get_settings()
    return EntitlementReconciler(BillingAuthorityClient.from_settings(settings), settings=settings)
