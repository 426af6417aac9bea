from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog

from study_access.core.config import get_settings

logger = structlog.get_logger(__name__)
SEVERITY_COLOR = {
    "critical": "#B42318",
    "error": "#F04438",
    "warning": "#F79009",
    "info": "#1570EF",
}


@dataclass(frozen=True)
class AlertRoute:
    channels: tuple[str, ...]
    severity: str


DEFAULT_ALERT_ROUTE = AlertRoute(channels=("generic",), severity="warning")
EVENT_ALERT_ROUTES = {
    "parent_claim_missing_billing": AlertRoute(channels=("slack", "generic"), severity="critical"),
    "billing_authority_unavailable": AlertRoute(channels=("slack", "generic"), severity="error"),
    "billing_webhook_processing_failed": AlertRoute(channels=("slack", "generic"), severity="error"),
    "payment_webhook_processing_failed": AlertRoute(channels=("slack", "generic"), severity="error"),
    "trial_expiry_push_failed": AlertRoute(channels=("generic",), severity="warning"),
}


def _payload_text(payload: dict[str, object]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def _build_channel_payload(
    *,
    channel: str,
    event: str,
    payload: dict[str, object],
    sent_at: datetime,
    route: AlertRoute,
    app_env: str,
) -> dict[str, Any]:
    if channel == "generic":
        return {
            "event": event,
            "payload": payload,
            "sent_at": sent_at.isoformat(),
            "severity": route.severity,
        }
    if channel == "slack":
        return {
            "text": f"[{route.severity.upper()}] {event}",
            "attachments": [
                {
                    "color": SEVERITY_COLOR.get(route.severity, SEVERITY_COLOR["warning"]),
                    "fields": [
                        {"title": "Environment", "value": app_env, "short": True},
                        {"title": "Sent At", "value": sent_at.isoformat(), "short": True},
                        {"title": "Payload", "value": _payload_text(payload), "short": False},
                    ],
                }
            ],
        }
    raise ValueError(f"Unsupported alert channel: {channel}")


async def send_ops_alert(*, event: str, payload: dict[str, object]) -> bool:
    settings = get_settings()
    route = EVENT_ALERT_ROUTES.get(event, DEFAULT_ALERT_ROUTE)
    channel_to_url = {
        "generic": settings.ops_alert_webhook_url.strip(),
        "slack": settings.ops_alert_slack_webhook_url.strip(),
    }
    targets = [
        (channel, channel_to_url[channel])
        for channel in route.channels
        if channel_to_url.get(channel)
    ]
    if not targets:
        return False

    sent_at = datetime.now(timezone.utc)
    delivered_to: list[str] = []
    async with httpx.AsyncClient(timeout=5.0) as client:
        for channel, url in targets:
            body = _build_channel_payload(
                channel=channel,
                event=event,
                payload=payload,
                sent_at=sent_at,
                route=route,
                app_env=settings.app_env,
            )
            try:
                response = await client.post(url, json=body)
                response.raise_for_status()
            except httpx.HTTPError:
                logger.exception("ops_alert_delivery_failed", alert_event=event, provider=channel)
                continue
            delivered_to.append(channel)

    if not delivered_to:
        logger.error("ops_alert_delivery_exhausted", alert_event=event, severity=route.severity)
        return False

    logger.info(
        "ops_alert_delivered",
        alert_event=event,
        severity=route.severity,
        delivered_to=delivered_to,
    )
    return True
