from __future__ import annotations

import structlog
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from study_access.economy.claims.payments import handle_payment_event, parse_payment_event
from study_access.economy.errors import ProviderError
from study_access.services.alerts import send_ops_alert
from study_access.services.payment_processor import PaymentProcessor, PaymentSignatureError

router = APIRouter(tags=["webhooks"])
logger = structlog.get_logger(__name__)


@router.post("/webhooks/payments")
async def payment_webhook(request: Request) -> JSONResponse:
    raw_body = await request.body()
    processor = PaymentProcessor.from_settings()
    try:
        event_payload = processor.verify_webhook(
            payload=raw_body,
            signature_header=request.headers.get("Stripe-Signature"),
        )
    except PaymentSignatureError:
        logger.warning("payment_webhook_invalid_signature")
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": {"code": "E_UNAUTHORIZED"}},
        )

    event = parse_payment_event(event_payload)
    structlog.contextvars.bind_contextvars(payment_event_id=event.event_id)
    try:
        result = await handle_payment_event(event)
    except (ProviderError, SQLAlchemyError) as exc:
        logger.exception("payment_webhook_processing_failed", error_type=type(exc).__name__)
        await send_ops_alert(
            event="payment_webhook_processing_failed",
            payload={"event_id": event.event_id, "error_type": type(exc).__name__},
        )
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "retry"},
        )

    return JSONResponse(status_code=status.HTTP_200_OK, content=result)
