from __future__ import annotations

from dataclasses import dataclass

import httpx
import structlog

from study_access.core.config import get_settings

logger = structlog.get_logger(__name__)


class EmailDeliveryError(Exception):
    pass


@dataclass(frozen=True, slots=True)
class EmailMessage:
    to_email: str
    subject: str
    text: str
    html: str | None = None
    # echoed back by the provider on delivery events
    custom_args: dict[str, str] | None = None


def _build_sendgrid_body(message: EmailMessage, *, from_email: str, from_name: str) -> dict[str, object]:
    content: list[dict[str, str]] = [{"type": "text/plain", "value": message.text}]
    if message.html:
        content.append({"type": "text/html", "value": message.html})
    personalization: dict[str, object] = {"to": [{"email": message.to_email}]}
    if message.custom_args:
        personalization["custom_args"] = dict(message.custom_args)
    return {
        "personalizations": [personalization],
        "from": {"email": from_email, "name": from_name},
        "subject": message.subject,
        "content": content,
    }


async def send_email(message: EmailMessage) -> None:
    settings = get_settings()
    if not settings.sendgrid_api_key:
        raise EmailDeliveryError("email delivery is not configured")

    body = _build_sendgrid_body(
        message,
        from_email=settings.email_from_address,
        from_name=settings.email_from_name,
    )
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.post(
                settings.sendgrid_api_url,
                json=body,
                headers={"Authorization": f"Bearer {settings.sendgrid_api_key}"},
            )
    except httpx.HTTPError as exc:
        raise EmailDeliveryError(f"email transport failed: {type(exc).__name__}") from exc

    if response.status_code >= 300:
        raise EmailDeliveryError(
            f"email provider returned {response.status_code}: {response.text[:500]}"
        )
    logger.info("email_sent", subject=message.subject)
