from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from study_access.economy.entitlements import overrides
from study_access.economy.entitlements.overrides import DEFAULT_OVERRIDE_DURATION, grant_overrides
from study_access.economy.entitlements.reconciler import RECONCILE_GRANTED, ReconcileOutcome
from study_access.services.billing_authority import BillingAuthorityError

NOW = datetime(2026, 4, 1, tzinfo=timezone.utc)


class _Reconciler:
    def __init__(self, failing: set[str]) -> None:
        self.failing = failing
        self.targets: dict[str, datetime] = {}

    async def grant(self, *, user_id: str, tier: str, target_expires_at: datetime) -> ReconcileOutcome:
        if user_id in self.failing:
            raise BillingAuthorityError("down")
        self.targets[user_id] = target_expires_at
        return ReconcileOutcome(action=RECONCILE_GRANTED, expires_at=target_expires_at)


@pytest.fixture
def stored(monkeypatch, fake_session_local) -> dict[str, dict[str, object]]:
    rows: dict[str, dict[str, object]] = {}

    async def ensure_exists(session, *, user_id: str) -> None:
        return None

    async def upsert(session, *, user_id: str, **kwargs) -> None:
        rows[user_id] = kwargs

    async def record_entitlement_mirror(**kwargs) -> bool:
        return True

    monkeypatch.setattr(overrides, "SessionLocal", fake_session_local)
    monkeypatch.setattr(overrides.UsersRepo, "ensure_exists", ensure_exists)
    monkeypatch.setattr(overrides.EntitlementOverridesRepo, "upsert", upsert)
    monkeypatch.setattr(overrides, "record_entitlement_mirror", record_entitlement_mirror)
    return rows


@pytest.mark.asyncio
async def test_grant_overrides_reports_per_user_outcome(stored) -> None:
    reconciler = _Reconciler(failing={"u2"})

    results = await grant_overrides(
        user_ids=["u1", "u2", "u1"],
        tier="premium",
        expires_at=None,
        note="beta tester",
        granted_by="ops",
        reconciler=reconciler,
        now_utc=NOW,
    )

    assert [(item.user_id, item.ok) for item in results] == [("u1", True), ("u2", False)]
    assert reconciler.targets["u1"] == NOW + DEFAULT_OVERRIDE_DURATION
    assert stored["u1"]["tier"] == "premium"
    assert stored["u1"]["expires_at"] is None
    assert "u2" not in stored


@pytest.mark.asyncio
async def test_grant_overrides_uses_explicit_expiry(stored) -> None:
    reconciler = _Reconciler(failing=set())
    expires_at = NOW + timedelta(days=14)

    results = await grant_overrides(
        user_ids=["u1"],
        tier="pro",
        expires_at=expires_at,
        note=None,
        granted_by="ops",
        reconciler=reconciler,
        now_utc=NOW,
    )

    assert results[0].expires_at == expires_at
    assert reconciler.targets["u1"] == expires_at


@pytest.mark.asyncio
async def test_grant_overrides_treats_naive_expiry_as_utc(stored) -> None:
    reconciler = _Reconciler(failing=set())

    results = await grant_overrides(
        user_ids=["u1"],
        tier="pro",
        expires_at=datetime(2026, 5, 1, 12, 0),
        note=None,
        granted_by="ops",
        reconciler=reconciler,
        now_utc=NOW,
    )

    expected = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)
    assert results[0].ok is True
    assert results[0].expires_at == expected
    assert reconciler.targets["u1"] == expected
    assert stored["u1"]["expires_at"] == expected
