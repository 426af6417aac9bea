from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import structlog

from study_access.db.repo.side_effect_claims_repo import SideEffectClaimsRepo
from study_access.db.session import SessionLocal

logger = structlog.get_logger(__name__)

# provider event name -> stored delivery status; engagement events are ignored
DELIVERY_STATUSES = {
    "processed": "processed",
    "delivered": "delivered",
    "deferred": "deferred",
    "bounce": "bounce",
    "dropped": "dropped",
    "blocked": "blocked",
    "spamreport": "spamreport",
}


@dataclass(frozen=True, slots=True)
class DeliveryUpdate:
    kind: str
    subject_key: str
    delivery_status: str
    event_at: datetime
    error: str | None
    provider_message_id: str | None


def _tag(event: dict[str, Any], key: str) -> str:
    # custom args arrive either flattened or nested depending on payload version
    nested = event.get("custom_args")
    value = event.get(key)
    if value is None and isinstance(nested, dict):
        value = nested.get(key)
    return str(value or "").strip()


def _event_time(raw: Any, *, fallback: datetime) -> datetime:
    try:
        seconds = float(raw)
    except (TypeError, ValueError):
        return fallback
    if seconds <= 0:
        return fallback
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def _event_error(event: dict[str, Any]) -> str | None:
    status = str(event.get("status") or "").strip()
    parts = [
        f"status={status}" if status else "",
        str(event.get("reason") or "").strip(),
        str(event.get("response") or "").strip(),
    ]
    joined = " | ".join(part for part in parts if part)
    return joined[:1000] or None


def parse_delivery_event(event: Any, *, now_utc: datetime) -> DeliveryUpdate | None:
    if not isinstance(event, dict):
        return None
    delivery_status = DELIVERY_STATUSES.get(str(event.get("event") or "").strip().lower())
    kind = _tag(event, "kind")
    subject_key = _tag(event, "subject_key")
    if delivery_status is None or not kind or not subject_key:
        return None
    return DeliveryUpdate(
        kind=kind,
        subject_key=subject_key,
        delivery_status=delivery_status,
        event_at=_event_time(event.get("timestamp"), fallback=now_utc),
        error=_event_error(event),
        provider_message_id=str(event.get("sg_message_id") or "").strip() or None,
    )


async def record_delivery_events(events: list[Any], *, now_utc: datetime | None = None) -> dict[str, int]:
    """Attach provider delivery outcomes to the matching side-effect rows.

    Events without our tags, of an untracked type, or older than the stored
    outcome are counted as ignored.
    """
    now_utc = now_utc or datetime.now(timezone.utc)
    processed = 0
    ignored = 0
    async with SessionLocal.begin() as session:
        for event in events:
            update = parse_delivery_event(event, now_utc=now_utc)
            if update is None:
                ignored += 1
                continue
            applied = await SideEffectClaimsRepo.record_delivery(
                session,
                kind=update.kind,
                subject_key=update.subject_key,
                delivery_status=update.delivery_status,
                event_at=update.event_at,
                error=update.error,
                provider_message_id=update.provider_message_id,
                now_utc=now_utc,
            )
            if applied:
                processed += 1
            else:
                ignored += 1

    logger.info("email_delivery_events_recorded", processed=processed, ignored=ignored, total=len(events))
    return {"processed": processed, "ignored": ignored}
