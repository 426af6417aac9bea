from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


class BillingEventInvalidError(Exception):
    pass


@dataclass(frozen=True, slots=True)
class PurchaseEvent:
    event_id: str
    app_user_id: str | None
    product_id: str | None
    occurred_at: datetime
    environment: str | None
    raw: dict[str, Any] = field(repr=False)


@dataclass(frozen=True, slots=True)
class RenewalEvent:
    event_id: str
    app_user_id: str | None
    product_id: str | None
    occurred_at: datetime


@dataclass(frozen=True, slots=True)
class CancellationEvent:
    event_id: str
    app_user_id: str | None
    product_id: str | None
    occurred_at: datetime


@dataclass(frozen=True, slots=True)
class UnrecognizedBillingEvent:
    event_id: str
    event_type: str


BillingEvent = PurchaseEvent | RenewalEvent | CancellationEvent | UnrecognizedBillingEvent


def _ms_to_datetime(value: object) -> datetime | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def _optional_str(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def parse_billing_event(payload: object, *, now_utc: datetime | None = None) -> BillingEvent:
    if not isinstance(payload, dict):
        raise BillingEventInvalidError("payload must be an object")
    event = payload.get("event")
    if not isinstance(event, dict):
        raise BillingEventInvalidError("payload.event must be an object")

    event_id = _optional_str(event.get("id"))
    if event_id is None:
        raise BillingEventInvalidError("event id is missing")

    event_type = _optional_str(event.get("type")) or ""
    app_user_id = _optional_str(event.get("app_user_id"))
    product_id = _optional_str(event.get("product_id"))
    occurred_at = (
        _ms_to_datetime(event.get("purchased_at_ms"))
        or _ms_to_datetime(event.get("event_timestamp_ms"))
        or now_utc
        or datetime.now(timezone.utc)
    )

    if event_type == "INITIAL_PURCHASE":
        return PurchaseEvent(
            event_id=event_id,
            app_user_id=app_user_id,
            product_id=product_id,
            occurred_at=occurred_at,
            environment=_optional_str(event.get("environment")),
            raw=payload,
        )
    if event_type == "RENEWAL":
        return RenewalEvent(
            event_id=event_id,
            app_user_id=app_user_id,
            product_id=product_id,
            occurred_at=occurred_at,
        )
    if event_type in {"CANCELLATION", "EXPIRATION"}:
        return CancellationEvent(
            event_id=event_id,
            app_user_id=app_user_id,
            product_id=product_id,
            occurred_at=occurred_at,
        )
    return UnrecognizedBillingEvent(event_id=event_id, event_type=event_type)


def promo_ineligibility_reason(
    event: BillingEvent,
    *,
    target_product_id: str,
    start_at: datetime | None,
    end_at: datetime | None,
) -> str | None:
    if not isinstance(event, PurchaseEvent):
        return "event_type"
    if event.product_id != target_product_id:
        return "product"
    if start_at is not None and event.occurred_at < start_at:
        return "outside_window"
    if end_at is not None and event.occurred_at > end_at:
        return "outside_window"
    return None
