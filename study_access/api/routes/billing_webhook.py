from __future__ import annotations

import json

import structlog
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from study_access.core.config import get_settings
from study_access.economy.errors import ProviderError
from study_access.economy.promo_grants.events import BillingEventInvalidError
from study_access.economy.promo_grants.service import BillingWebhookService
from study_access.services.alerts import send_ops_alert
from study_access.services.webhook_signatures import is_valid_billing_signature

router = APIRouter(tags=["webhooks"])
logger = structlog.get_logger(__name__)


@router.post("/webhooks/billing")
async def billing_webhook(request: Request) -> JSONResponse:
    settings = get_settings()
    raw_body = await request.body()
    if not is_valid_billing_signature(
        secret=settings.billing_webhook_secret,
        payload=raw_body,
        timestamp_header=request.headers.get("X-Billing-Timestamp"),
        signature_header=request.headers.get("X-Billing-Signature"),
        tolerance_seconds=settings.billing_webhook_tolerance_seconds,
    ):
        logger.warning("billing_webhook_invalid_signature")
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": {"code": "E_UNAUTHORIZED"}},
        )

    try:
        payload = json.loads(raw_body)
    except ValueError:
        logger.warning("billing_webhook_invalid_json")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": {"code": "E_EVENT_INVALID"}},
        )

    try:
        result = await BillingWebhookService.ingest(payload)
    except BillingEventInvalidError as exc:
        logger.warning("billing_webhook_invalid_event", reason=str(exc))
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": {"code": "E_EVENT_INVALID"}},
        )
    except (ProviderError, SQLAlchemyError) as exc:
        logger.exception("billing_webhook_processing_failed", error_type=type(exc).__name__)
        await send_ops_alert(
            event="billing_webhook_processing_failed",
            payload={"error_type": type(exc).__name__},
        )
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "retry"},
        )

    return JSONResponse(status_code=status.HTTP_200_OK, content=result)
