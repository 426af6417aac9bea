from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from study_access.economy.promo_grants.events import (
    BillingEventInvalidError,
    CancellationEvent,
    PurchaseEvent,
    RenewalEvent,
    UnrecognizedBillingEvent,
    parse_billing_event,
    promo_ineligibility_reason,
)

NOW = datetime(2026, 4, 1, tzinfo=timezone.utc)
PURCHASED_AT = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


def _payload(**event: object) -> dict[str, object]:
    base: dict[str, object] = {
        "id": "evt_1",
        "type": "INITIAL_PURCHASE",
        "app_user_id": "u1",
        "product_id": "flash_premium_annual",
        "purchased_at_ms": int(PURCHASED_AT.timestamp() * 1000),
        "environment": "PRODUCTION",
    }
    base.update(event)
    return {"api_version": "1.0", "event": base}


def test_initial_purchase_is_parsed() -> None:
    event = parse_billing_event(_payload(), now_utc=NOW)

    assert isinstance(event, PurchaseEvent)
    assert event.event_id == "evt_1"
    assert event.app_user_id == "u1"
    assert event.occurred_at == PURCHASED_AT
    assert event.environment == "PRODUCTION"


def test_event_timestamp_is_used_when_purchase_time_missing() -> None:
    event = parse_billing_event(
        _payload(purchased_at_ms=None, event_timestamp_ms=int(PURCHASED_AT.timestamp() * 1000)),
        now_utc=NOW,
    )
    assert event.occurred_at == PURCHASED_AT


def test_receipt_time_is_used_when_event_carries_no_time() -> None:
    event = parse_billing_event(_payload(purchased_at_ms=None), now_utc=NOW)
    assert event.occurred_at == NOW


@pytest.mark.parametrize(
    ("event_type", "expected"),
    [
        ("RENEWAL", RenewalEvent),
        ("CANCELLATION", CancellationEvent),
        ("EXPIRATION", CancellationEvent),
        ("BILLING_ISSUE", UnrecognizedBillingEvent),
    ],
)
def test_other_event_types_are_tagged(event_type: str, expected: type) -> None:
    assert isinstance(parse_billing_event(_payload(type=event_type), now_utc=NOW), expected)


@pytest.mark.parametrize("payload", [[], {"event": "x"}, {"event": {"type": "INITIAL_PURCHASE"}}])
def test_malformed_payloads_are_rejected(payload: object) -> None:
    with pytest.raises(BillingEventInvalidError):
        parse_billing_event(payload, now_utc=NOW)


def test_eligibility_filters_type_product_and_window() -> None:
    window = {
        "target_product_id": "flash_premium_annual",
        "start_at": PURCHASED_AT - timedelta(days=1),
        "end_at": PURCHASED_AT + timedelta(days=1),
    }
    purchase = parse_billing_event(_payload(), now_utc=NOW)
    assert promo_ineligibility_reason(purchase, **window) is None

    renewal = parse_billing_event(_payload(type="RENEWAL"), now_utc=NOW)
    assert promo_ineligibility_reason(renewal, **window) == "event_type"

    monthly = parse_billing_event(_payload(product_id="flash_premium_monthly"), now_utc=NOW)
    assert promo_ineligibility_reason(monthly, **window) == "product"

    late = parse_billing_event(
        _payload(purchased_at_ms=int((PURCHASED_AT + timedelta(days=2)).timestamp() * 1000)),
        now_utc=NOW,
    )
    assert promo_ineligibility_reason(late, **window) == "outside_window"


def test_open_window_accepts_any_time() -> None:
    purchase = parse_billing_event(_payload(), now_utc=NOW)
    assert (
        promo_ineligibility_reason(
            purchase,
            target_product_id="flash_premium_annual",
            start_at=None,
            end_at=None,
        )
        is None
    )
