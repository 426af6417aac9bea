from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any

import stripe
import structlog

from study_access.core.config import Settings, get_settings
from study_access.economy.errors import ProviderError

logger = structlog.get_logger(__name__)


class PaymentProcessorError(ProviderError):
    pass


class PaymentSignatureError(Exception):
    pass


@dataclass(frozen=True, slots=True)
class HostedCheckout:
    session_id: str
    url: str
    livemode: bool


class PaymentProcessor:
    """Async wrapper around the Stripe SDK for parent checkout subscriptions."""

    def __init__(
        self,
        *,
        secret_key: str,
        webhook_secret: str,
        webhook_tolerance_seconds: int = 300,
    ) -> None:
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret
        self._webhook_tolerance_seconds = webhook_tolerance_seconds

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "PaymentProcessor":
        resolved = settings or get_settings()
        return cls(
            secret_key=resolved.stripe_secret_key,
            webhook_secret=resolved.stripe_webhook_secret,
            webhook_tolerance_seconds=resolved.billing_webhook_tolerance_seconds,
        )

    async def _run(self, func: Any, *args: Any, **kwargs: Any) -> Any:
        if not self._secret_key:
            raise PaymentProcessorError("payment processor is not configured")
        try:
            return await asyncio.to_thread(func, *args, api_key=self._secret_key, **kwargs)
        except stripe.StripeError as exc:
            logger.warning("payment_processor_call_failed", error_type=type(exc).__name__)
            raise PaymentProcessorError(f"payment processor call failed: {type(exc).__name__}") from exc

    async def create_subscription_checkout(
        self,
        *,
        price_id: str,
        claim_id: str,
        beneficiary_email: str,
        success_url: str,
        cancel_url: str,
    ) -> HostedCheckout:
        metadata = {
            "parent_claim_id": claim_id,
            "beneficiary_email": beneficiary_email,
        }
        session = await self._run(
            stripe.checkout.Session.create,
            mode="subscription",
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=success_url,
            cancel_url=cancel_url,
            client_reference_id=claim_id,
            metadata=metadata,
            subscription_data={"metadata": metadata},
        )
        return HostedCheckout(
            session_id=str(session["id"]),
            url=str(session["url"]),
            livemode=bool(session.get("livemode", False)),
        )

    async def bind_subscription_beneficiary(self, *, subscription_id: str, user_id: str) -> None:
        await self._run(
            stripe.Subscription.modify,
            subscription_id,
            metadata={"beneficiary_user_id": user_id},
        )

    def verify_webhook(self, *, payload: bytes, signature_header: str | None) -> dict[str, Any]:
        if not self._webhook_secret or not signature_header:
            raise PaymentSignatureError("missing webhook secret or signature")
        try:
            text_payload = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                text_payload,
                signature_header,
                self._webhook_secret,
                tolerance=self._webhook_tolerance_seconds,
            )
        except UnicodeDecodeError as exc:
            raise PaymentSignatureError("webhook payload is not UTF-8") from exc
        except stripe.SignatureVerificationError as exc:
            raise PaymentSignatureError("invalid webhook signature") from exc

        try:
            event = json.loads(text_payload)
        except ValueError as exc:
            raise PaymentSignatureError("webhook payload is not JSON") from exc
        if not isinstance(event, dict):
            raise PaymentSignatureError("webhook payload is not an object")
        return event
