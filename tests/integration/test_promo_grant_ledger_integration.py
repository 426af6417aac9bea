from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from study_access.db.models.promo_grants import PromoGrant
from study_access.db.session import SessionLocal
from study_access.economy.entitlements.reconciler import RECONCILE_GRANTED, ReconcileOutcome
from study_access.economy.promo_grants.service import BillingWebhookService

UTC = timezone.utc


class RecordingReconciler:
    def __init__(self) -> None:
        self.calls: list[str] = []

    async def grant(self, *, user_id: str, tier: str, target_expires_at: datetime) -> ReconcileOutcome:
        self.calls.append(user_id)
        return ReconcileOutcome(action=RECONCILE_GRANTED, expires_at=target_expires_at)


def _purchase(event_id: str, *, user_id: str, purchased_at: datetime) -> dict[str, object]:
    return {
        "event": {
            "id": event_id,
            "type": "INITIAL_PURCHASE",
            "app_user_id": user_id,
            "product_id": "flash_premium_annual",
            "purchased_at_ms": int(purchased_at.timestamp() * 1000),
        }
    }


async def _grant_rows(user_id: str) -> int:
    async with SessionLocal() as session:
        return int(
            await session.scalar(
                select(func.count()).select_from(PromoGrant).where(PromoGrant.user_id == user_id)
            )
        )


@pytest.mark.asyncio
async def test_parallel_redelivery_grants_once() -> None:
    purchased_at = datetime.now(UTC) - timedelta(minutes=1)
    reconciler = RecordingReconciler()
    payload = _purchase("evt_parallel", user_id="promo-user", purchased_at=purchased_at)

    results = await asyncio.gather(
        BillingWebhookService.ingest(payload, reconciler=reconciler),
        BillingWebhookService.ingest(payload, reconciler=reconciler),
    )

    assert sorted(str(result["status"]) for result in results) == ["duplicate", "granted"]
    assert reconciler.calls == ["promo-user"]
    assert await _grant_rows("promo-user") == 1


@pytest.mark.asyncio
async def test_second_purchase_event_for_same_user_is_duplicate() -> None:
    purchased_at = datetime.now(UTC) - timedelta(minutes=1)
    reconciler = RecordingReconciler()

    first = await BillingWebhookService.ingest(
        _purchase("evt_first", user_id="promo-user", purchased_at=purchased_at),
        reconciler=reconciler,
    )
    second = await BillingWebhookService.ingest(
        _purchase("evt_second", user_id="promo-user", purchased_at=purchased_at),
        reconciler=reconciler,
    )

    assert first["status"] == "granted"
    assert second == {"status": "duplicate"}
    assert await _grant_rows("promo-user") == 1
