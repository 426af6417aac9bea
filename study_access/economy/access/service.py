from __future__ import annotations

from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from study_access.db.models.access_code_redemptions import AccessCodeRedemption
from study_access.db.models.access_codes import AccessCode
from study_access.db.repo.access_codes_repo import AccessCodesRepo
from study_access.economy.claims.service import ParentClaimService
from study_access.economy.entitlements.mirror import record_entitlement_mirror
from study_access.economy.entitlements.reconciler import EntitlementReconciler, build_reconciler
from study_access.economy.errors import CodeExhaustedError, CodeExpiredError, CodeNotFoundError
from study_access.economy.types import RedeemResult
from study_access.services.access_codes import is_redeemable_code_shape, normalize_access_code
from study_access.services.payment_processor import PaymentProcessor

logger = structlog.get_logger(__name__)


def compute_code_grant_expiry(code: AccessCode, *, now_utc: datetime) -> datetime:
    if code.grant_days is None:
        return code.expires_at
    return min(now_utc + timedelta(days=code.grant_days), code.expires_at)


class AccessCodeService:
    @staticmethod
    async def _replay(
        *,
        redemption: AccessCodeRedemption,
        user_id: str,
        reconciler: EntitlementReconciler,
        now_utc: datetime,
    ) -> RedeemResult:
        if redemption.expires_at <= now_utc:
            # lapsed grants are reported as stored
            logger.info(
                "access_code_redeem_replayed_lapsed",
                code_id=redemption.code_id,
                user_id=user_id,
                expires_at=redemption.expires_at,
            )
            return RedeemResult(
                tier=redemption.tier,
                expires_at=redemption.expires_at,
                source="code",
                idempotent_replay=True,
            )

        outcome = await reconciler.grant(
            user_id=user_id,
            tier=redemption.tier,
            target_expires_at=redemption.expires_at,
        )
        await record_entitlement_mirror(
            user_id=user_id,
            tier=redemption.tier,
            expires_at=outcome.expires_at,
            source="code",
            now_utc=now_utc,
        )
        logger.info(
            "access_code_redeem_replayed",
            code_id=redemption.code_id,
            user_id=user_id,
            reconcile_action=outcome.action,
        )
        return RedeemResult(
            tier=redemption.tier,
            expires_at=outcome.expires_at,
            source="code",
            idempotent_replay=True,
        )

    @staticmethod
    async def redeem(
        session: AsyncSession,
        *,
        user_id: str,
        raw_code: str,
        now_utc: datetime | None = None,
        reconciler: EntitlementReconciler | None = None,
        processor: PaymentProcessor | None = None,
    ) -> RedeemResult:
        now_utc = now_utc or datetime.now(timezone.utc)
        normalized_code = normalize_access_code(raw_code)
        if not is_redeemable_code_shape(normalized_code):
            raise CodeNotFoundError

        code = await AccessCodesRepo.get_by_code_for_update(session, normalized_code)
        if code is None:
            return await ParentClaimService.redeem_claim(
                session,
                user_id=user_id,
                normalized_code=normalized_code,
                now_utc=now_utc,
                reconciler=reconciler,
                processor=processor,
            )

        reconciler = reconciler or build_reconciler()
        existing = await AccessCodesRepo.get_redemption(session, code_id=code.id, user_id=user_id)
        if existing is not None:
            return await AccessCodeService._replay(
                redemption=existing,
                user_id=user_id,
                reconciler=reconciler,
                now_utc=now_utc,
            )

        if code.uses_count >= code.max_uses:
            raise CodeExhaustedError
        if now_utc > code.expires_at:
            raise CodeExpiredError

        target_expires_at = compute_code_grant_expiry(code, now_utc=now_utc)
        created = await AccessCodesRepo.try_create_redemption(
            session,
            code_id=code.id,
            user_id=user_id,
            tier=code.tier,
            expires_at=target_expires_at,
            created_at=now_utc,
        )
        if not created:
            existing = await AccessCodesRepo.get_redemption(session, code_id=code.id, user_id=user_id)
            if existing is None:
                raise CodeNotFoundError
            return await AccessCodeService._replay(
                redemption=existing,
                user_id=user_id,
                reconciler=reconciler,
                now_utc=now_utc,
            )

        outcome = await reconciler.grant(
            user_id=user_id,
            tier=code.tier,
            target_expires_at=target_expires_at,
        )
        await record_entitlement_mirror(
            user_id=user_id,
            tier=code.tier,
            expires_at=outcome.expires_at,
            source="code",
            now_utc=now_utc,
        )

        uses_count = await AccessCodesRepo.increment_uses_if_available(session, code_id=code.id)
        if uses_count is None:
            logger.error("access_code_usage_limit_raced", code_id=code.id, user_id=user_id)
            raise CodeExhaustedError

        logger.info(
            "access_code_redeemed",
            code_id=code.id,
            user_id=user_id,
            tier=code.tier,
            uses_count=uses_count,
            max_uses=code.max_uses,
            reconcile_action=outcome.action,
            expires_at=outcome.expires_at,
        )
        return RedeemResult(tier=code.tier, expires_at=outcome.expires_at, source="code")
