from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from study_access.economy.entitlements.reconciler import RECONCILE_GRANTED, ReconcileOutcome
from study_access.economy.promo_grants import service as promo_service
from study_access.economy.promo_grants.events import BillingEventInvalidError
from study_access.economy.promo_grants.service import BillingWebhookService
from study_access.services.billing_authority import BillingAuthorityError

NOW = datetime(2026, 4, 1, tzinfo=timezone.utc)
PURCHASED_AT = datetime(2026, 3, 31, 8, 0, tzinfo=timezone.utc)


class FakeReconciler:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[tuple[str, str, datetime]] = []

    async def grant(self, *, user_id: str, tier: str, target_expires_at: datetime) -> ReconcileOutcome:
        self.calls.append((user_id, tier, target_expires_at))
        if self.fail:
            raise BillingAuthorityError("authority down")
        return ReconcileOutcome(action=RECONCILE_GRANTED, expires_at=target_expires_at)


def _settings() -> SimpleNamespace:
    return SimpleNamespace(
        promo_key="premium_annual_grants_pro_v1",
        promo_target_product_id="flash_premium_annual",
        promo_start_at=None,
        promo_end_at=None,
        promo_grant_days=365,
    )


def _payload(**event: object) -> dict[str, object]:
    base: dict[str, object] = {
        "id": "evt_1",
        "type": "INITIAL_PURCHASE",
        "app_user_id": "u1",
        "product_id": "flash_premium_annual",
        "purchased_at_ms": int(PURCHASED_AT.timestamp() * 1000),
    }
    base.update(event)
    return {"event": base}


@pytest.fixture
def ledger(monkeypatch, fake_session_local) -> dict[str, object]:
    state: dict[str, object] = {"rows": set(), "mirror_writes": []}

    async def try_create(session, *, user_id: str, promo_key: str, **kwargs) -> bool:
        rows = state["rows"]
        if (user_id, promo_key) in rows:
            return False
        rows.add((user_id, promo_key))
        return True

    async def record_entitlement_mirror(**kwargs) -> bool:
        state["mirror_writes"].append(kwargs)
        return True

    monkeypatch.setattr(promo_service, "get_settings", _settings)
    monkeypatch.setattr(promo_service, "SessionLocal", fake_session_local)
    monkeypatch.setattr(promo_service.PromoGrantsRepo, "try_create", try_create)
    monkeypatch.setattr(promo_service, "record_entitlement_mirror", record_entitlement_mirror)
    return state


@pytest.mark.asyncio
async def test_eligible_purchase_grants_pro_for_a_year(ledger) -> None:
    reconciler = FakeReconciler()

    result = await BillingWebhookService.ingest(_payload(), reconciler=reconciler, now_utc=NOW)

    expires_at = PURCHASED_AT + timedelta(days=365)
    assert result == {"status": "granted", "action": "granted", "expires_at": expires_at.isoformat()}
    assert reconciler.calls == [("u1", "pro", expires_at)]
    assert ledger["mirror_writes"][0]["source"] == "server"


@pytest.mark.asyncio
async def test_duplicate_event_is_acknowledged_without_second_grant(ledger) -> None:
    reconciler = FakeReconciler()

    await BillingWebhookService.ingest(_payload(), reconciler=reconciler, now_utc=NOW)
    second = await BillingWebhookService.ingest(_payload(id="evt_2"), reconciler=reconciler, now_utc=NOW)

    assert second == {"status": "duplicate"}
    assert len(reconciler.calls) == 1


@pytest.mark.asyncio
async def test_ineligible_product_is_ignored(ledger) -> None:
    reconciler = FakeReconciler()

    result = await BillingWebhookService.ingest(
        _payload(product_id="flash_premium_monthly"),
        reconciler=reconciler,
        now_utc=NOW,
    )

    assert result == {"status": "ignored", "reason": "product"}
    assert reconciler.calls == []
    assert ledger["rows"] == set()


@pytest.mark.asyncio
async def test_purchase_without_user_is_invalid(ledger) -> None:
    with pytest.raises(BillingEventInvalidError):
        await BillingWebhookService.ingest(_payload(app_user_id=""), reconciler=FakeReconciler(), now_utc=NOW)


@pytest.mark.asyncio
async def test_authority_failure_propagates_for_redelivery(ledger) -> None:
    with pytest.raises(BillingAuthorityError):
        await BillingWebhookService.ingest(_payload(), reconciler=FakeReconciler(fail=True), now_utc=NOW)
    assert ledger["mirror_writes"] == []
