from __future__ import annotations

import json

import structlog
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from study_access.core.config import get_settings
from study_access.economy.side_effects.delivery import record_delivery_events
from study_access.services.webhook_signatures import is_valid_email_event_signature

router = APIRouter(tags=["webhooks"])
logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "X-Twilio-Email-Event-Webhook-Signature"
TIMESTAMP_HEADER = "X-Twilio-Email-Event-Webhook-Timestamp"


@router.post("/webhooks/email-events")
async def email_events_webhook(request: Request) -> JSONResponse:
    settings = get_settings()
    raw_body = await request.body()
    if not is_valid_email_event_signature(
        public_key=settings.sendgrid_event_public_key,
        payload=raw_body,
        timestamp_header=request.headers.get(TIMESTAMP_HEADER),
        signature_header=request.headers.get(SIGNATURE_HEADER),
        tolerance_seconds=settings.sendgrid_event_tolerance_seconds,
    ):
        logger.warning(
            "email_events_invalid_signature",
            key_configured=bool(settings.sendgrid_event_public_key),
        )
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": {"code": "E_UNAUTHORIZED"}},
        )

    try:
        payload = json.loads(raw_body)
    except ValueError:
        logger.warning("email_events_invalid_json")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": {"code": "E_EVENT_INVALID"}},
        )
    if not isinstance(payload, list) or not payload:
        return JSONResponse(status_code=status.HTTP_200_OK, content={"processed": 0, "ignored": 0})

    try:
        result = await record_delivery_events(payload)
    except SQLAlchemyError as exc:
        logger.exception("email_events_processing_failed", error_type=type(exc).__name__)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "retry"},
        )
    return JSONResponse(status_code=status.HTTP_200_OK, content=result)
