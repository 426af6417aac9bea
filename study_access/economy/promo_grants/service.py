from __future__ import annotations

from datetime import datetime, timedelta, timezone

import structlog

from study_access.core.config import get_settings
from study_access.db.repo.promo_grants_repo import PromoGrantsRepo
from study_access.db.session import SessionLocal
from study_access.economy.entitlements.mirror import record_entitlement_mirror
from study_access.economy.entitlements.reconciler import EntitlementReconciler, build_reconciler
from study_access.economy.promo_grants.events import (
    BillingEventInvalidError,
    PurchaseEvent,
    parse_billing_event,
    promo_ineligibility_reason,
)

logger = structlog.get_logger(__name__)
PROMO_GRANT_TIER = "pro"


class BillingWebhookService:
    @staticmethod
    async def ingest(
        payload: object,
        *,
        reconciler: EntitlementReconciler | None = None,
        now_utc: datetime | None = None,
    ) -> dict[str, object]:
        settings = get_settings()
        now_utc = now_utc or datetime.now(timezone.utc)
        event = parse_billing_event(payload, now_utc=now_utc)

        reason = promo_ineligibility_reason(
            event,
            target_product_id=settings.promo_target_product_id,
            start_at=settings.promo_start_at,
            end_at=settings.promo_end_at,
        )
        if reason is not None or not isinstance(event, PurchaseEvent):
            logger.info("billing_event_ignored", event_id=event.event_id, reason=reason)
            return {"status": "ignored", "reason": reason}

        if event.app_user_id is None:
            raise BillingEventInvalidError("app_user_id is missing")

        expires_at = event.occurred_at + timedelta(days=settings.promo_grant_days)
        reconciler = reconciler or build_reconciler()
        async with SessionLocal.begin() as session:
            created = await PromoGrantsRepo.try_create(
                session,
                user_id=event.app_user_id,
                promo_key=settings.promo_key,
                event_id=event.event_id,
                environment=event.environment,
                expires_at=expires_at,
                raw_event=event.raw,
                created_at=now_utc,
            )
            if not created:
                logger.info(
                    "promo_grant_duplicate",
                    event_id=event.event_id,
                    user_id=event.app_user_id,
                    promo_key=settings.promo_key,
                )
                return {"status": "duplicate"}

            # a failed grant rolls the ledger row back so the redelivery can retry
            outcome = await reconciler.grant(
                user_id=event.app_user_id,
                tier=PROMO_GRANT_TIER,
                target_expires_at=expires_at,
            )

        await record_entitlement_mirror(
            user_id=event.app_user_id,
            tier=PROMO_GRANT_TIER,
            expires_at=outcome.expires_at,
            source="server",
            now_utc=now_utc,
        )
        logger.info(
            "promo_grant_applied",
            event_id=event.event_id,
            user_id=event.app_user_id,
            promo_key=settings.promo_key,
            reconcile_action=outcome.action,
            expires_at=outcome.expires_at,
        )
        return {
            "status": "granted",
            "action": outcome.action,
            "expires_at": outcome.expires_at.isoformat() if outcome.expires_at else None,
        }
