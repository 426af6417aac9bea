from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from study_access.db.models.parent_claims import ParentClaim
from study_access.db.repo.parent_claims_repo import ParentClaimsRepo
from study_access.db.repo.users_repo import UsersRepo
from study_access.economy.entitlements.mirror import record_entitlement_mirror
from study_access.economy.entitlements.reconciler import EntitlementReconciler, build_reconciler
from study_access.economy.errors import (
    ClaimAlreadyUsedError,
    ClaimMissingBillingError,
    ClaimNotReadyError,
    CodeNotFoundError,
    ProviderError,
)
from study_access.economy.types import RedeemResult
from study_access.services.payment_processor import PaymentProcessor

logger = structlog.get_logger(__name__)
PARENT_CLAIM_TIER = "pro"


def paid_expiry_from_ms(paid_expires_at_ms: int | None) -> datetime | None:
    if paid_expires_at_ms is None or paid_expires_at_ms <= 0:
        return None
    return datetime.fromtimestamp(paid_expires_at_ms / 1000, tz=timezone.utc)


class ParentClaimService:
    @staticmethod
    async def _is_replay_or_reclaim(
        session: AsyncSession,
        *,
        claim: ParentClaim,
        user_id: str,
    ) -> bool:
        """Return True for a re-redemption by the claimant, False for a reclaim.

        Raises when the claim belongs to another user who still exists.
        """
        claimed_by = claim.claimed_by
        if claimed_by == user_id:
            return True
        if claimed_by is None:
            logger.warning(
                "parent_claim_reclaimed_after_claimant_deleted",
                claim_id=str(claim.id),
                user_id=user_id,
            )
            return False
        if await UsersRepo.exists(session, claimed_by):
            raise ClaimAlreadyUsedError
        logger.warning(
            "parent_claim_reclaimed_after_claimant_deleted",
            claim_id=str(claim.id),
            user_id=user_id,
            previous_claimant=claimed_by,
        )
        return False

    @staticmethod
    async def redeem_claim(
        session: AsyncSession,
        *,
        user_id: str,
        normalized_code: str,
        now_utc: datetime | None = None,
        reconciler: EntitlementReconciler | None = None,
        processor: PaymentProcessor | None = None,
    ) -> RedeemResult:
        now_utc = now_utc or datetime.now(timezone.utc)
        claim = await ParentClaimsRepo.get_by_code_for_update(session, normalized_code)
        if claim is None:
            raise CodeNotFoundError

        is_replay = False
        if claim.status == "claimed":
            is_replay = await ParentClaimService._is_replay_or_reclaim(
                session,
                claim=claim,
                user_id=user_id,
            )
        elif claim.status != "paid":
            raise ClaimNotReadyError

        target_expires_at = paid_expiry_from_ms(claim.paid_expires_at_ms)
        if target_expires_at is None:
            logger.error(
                "parent_claim_missing_billing",
                claim_id=str(claim.id),
                status=claim.status,
                paid_expires_at_ms=claim.paid_expires_at_ms,
            )
            raise ClaimMissingBillingError(str(claim.id))

        if is_replay and target_expires_at <= now_utc:
            logger.info(
                "parent_claim_replayed_lapsed",
                claim_id=str(claim.id),
                user_id=user_id,
                expires_at=target_expires_at,
            )
            return RedeemResult(
                tier=PARENT_CLAIM_TIER,
                expires_at=target_expires_at,
                source="claim",
                idempotent_replay=True,
            )

        reconciler = reconciler or build_reconciler()
        outcome = await reconciler.grant(
            user_id=user_id,
            tier=PARENT_CLAIM_TIER,
            target_expires_at=target_expires_at,
        )
        await record_entitlement_mirror(
            user_id=user_id,
            tier=PARENT_CLAIM_TIER,
            expires_at=outcome.expires_at,
            source="claim",
            now_utc=now_utc,
        )

        if not is_replay:
            claimed = await ParentClaimsRepo.mark_claimed(
                session,
                claim_id=claim.id,
                user_id=user_id,
                expected_status=claim.status,
                expected_claimed_by=claim.claimed_by,
                now_utc=now_utc,
            )
            if not claimed:
                raise ClaimAlreadyUsedError
            if claim.payment_subscription_id:
                await ParentClaimService._bind_subscription(
                    processor=processor or PaymentProcessor.from_settings(),
                    subscription_id=claim.payment_subscription_id,
                    claim_id=str(claim.id),
                    user_id=user_id,
                )

        logger.info(
            "parent_claim_redeemed",
            claim_id=str(claim.id),
            user_id=user_id,
            idempotent_replay=is_replay,
            reconcile_action=outcome.action,
            expires_at=outcome.expires_at,
        )
        return RedeemResult(
            tier=PARENT_CLAIM_TIER,
            expires_at=outcome.expires_at,
            source="claim",
            idempotent_replay=is_replay,
        )

    @staticmethod
    async def _bind_subscription(
        *,
        processor: PaymentProcessor,
        subscription_id: str,
        claim_id: str,
        user_id: str,
    ) -> None:
        try:
            await processor.bind_subscription_beneficiary(
                subscription_id=subscription_id,
                user_id=user_id,
            )
        except ProviderError:
            logger.warning(
                "parent_claim_subscription_bind_failed",
                claim_id=claim_id,
                user_id=user_id,
                subscription_id=subscription_id,
            )
