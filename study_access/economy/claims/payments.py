from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

import structlog

from study_access.db.repo.parent_claims_repo import ParentClaimsRepo
from study_access.db.session import SessionLocal
from study_access.economy.claims.service import PARENT_CLAIM_TIER, paid_expiry_from_ms
from study_access.economy.entitlements.mirror import record_entitlement_mirror
from study_access.economy.entitlements.reconciler import EntitlementReconciler, build_reconciler
from study_access.economy.side_effects.emails import send_claim_code_email_once

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ClaimPaymentConfirmed:
    event_id: str
    claim_id: UUID
    subscription_id: str | None
    period_end_ms: int
    livemode: bool


@dataclass(frozen=True, slots=True)
class SubscriptionRenewed:
    event_id: str
    subscription_id: str | None
    beneficiary_user_id: str
    period_end_ms: int


@dataclass(frozen=True, slots=True)
class UnrecognizedPaymentEvent:
    event_id: str
    event_type: str
    reason: str


PaymentEvent = ClaimPaymentConfirmed | SubscriptionRenewed | UnrecognizedPaymentEvent


def _as_dict(value: object) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _subscription_details(invoice: dict[str, Any]) -> tuple[str | None, dict[str, Any]]:
    details = _as_dict(invoice.get("subscription_details"))
    parent_details = _as_dict(_as_dict(invoice.get("parent")).get("subscription_details"))
    metadata = (
        _as_dict(details.get("metadata"))
        or _as_dict(parent_details.get("metadata"))
        or _as_dict(invoice.get("metadata"))
    )
    subscription = invoice.get("subscription") or parent_details.get("subscription")
    if isinstance(subscription, dict):
        subscription = subscription.get("id")
    return (str(subscription) if subscription else None), metadata


def _latest_period_end_ms(invoice: dict[str, Any]) -> int | None:
    period_ends: list[int] = []
    for line in _as_dict(invoice.get("lines")).get("data") or []:
        end = _as_dict(_as_dict(line).get("period")).get("end")
        if isinstance(end, int) and end > 0:
            period_ends.append(end)
    if not period_ends:
        return None
    return max(period_ends) * 1000


def parse_payment_event(event: dict[str, Any]) -> PaymentEvent:
    event_id = str(event.get("id") or "")
    event_type = str(event.get("type") or "")
    if event_type != "invoice.paid":
        return UnrecognizedPaymentEvent(event_id=event_id, event_type=event_type, reason="event_type")

    invoice = _as_dict(_as_dict(event.get("data")).get("object"))
    subscription_id, metadata = _subscription_details(invoice)
    period_end_ms = _latest_period_end_ms(invoice)
    if period_end_ms is None:
        return UnrecognizedPaymentEvent(event_id=event_id, event_type=event_type, reason="no_period")

    beneficiary_user_id = metadata.get("beneficiary_user_id")
    if isinstance(beneficiary_user_id, str) and beneficiary_user_id:
        return SubscriptionRenewed(
            event_id=event_id,
            subscription_id=subscription_id,
            beneficiary_user_id=beneficiary_user_id,
            period_end_ms=period_end_ms,
        )

    raw_claim_id = metadata.get("parent_claim_id")
    try:
        claim_id = UUID(str(raw_claim_id))
    except ValueError:
        return UnrecognizedPaymentEvent(event_id=event_id, event_type=event_type, reason="no_claim")
    return ClaimPaymentConfirmed(
        event_id=event_id,
        claim_id=claim_id,
        subscription_id=subscription_id,
        period_end_ms=period_end_ms,
        livemode=bool(event.get("livemode", False)),
    )


async def confirm_claim_payment(
    event: ClaimPaymentConfirmed,
    *,
    now_utc: datetime | None = None,
) -> dict[str, object]:
    now_utc = now_utc or datetime.now(timezone.utc)
    async with SessionLocal.begin() as session:
        transitioned = await ParentClaimsRepo.mark_paid_if_created(
            session,
            claim_id=event.claim_id,
            paid_expires_at_ms=event.period_end_ms,
            payment_subscription_id=event.subscription_id,
            livemode=event.livemode,
            now_utc=now_utc,
        )
        extended = False
        if not transitioned:
            extended = await ParentClaimsRepo.extend_paid_expiry(
                session,
                claim_id=event.claim_id,
                paid_expires_at_ms=event.period_end_ms,
                now_utc=now_utc,
            )
        claim = await ParentClaimsRepo.get_by_id(session, event.claim_id)

    if claim is None:
        logger.warning(
            "parent_claim_payment_for_unknown_claim",
            claim_id=str(event.claim_id),
            event_id=event.event_id,
        )
        return {"status": "ignored", "reason": "unknown_claim"}

    logger.info(
        "parent_claim_payment_confirmed",
        claim_id=str(claim.id),
        event_id=event.event_id,
        transitioned=transitioned,
        extended=extended,
        status=claim.status,
        paid_expires_at_ms=claim.paid_expires_at_ms,
    )

    email_status = None
    if claim.status == "paid":
        email_status = await send_claim_code_email_once(
            claim_id=str(claim.id),
            email=claim.beneficiary_email,
            claim_code=claim.claim_code,
        )
    return {
        "status": "ok",
        "claim_status": claim.status,
        "transitioned": transitioned,
        "email": email_status,
    }


async def apply_subscription_renewal(
    event: SubscriptionRenewed,
    *,
    reconciler: EntitlementReconciler | None = None,
    now_utc: datetime | None = None,
) -> dict[str, object]:
    now_utc = now_utc or datetime.now(timezone.utc)
    target_expires_at = paid_expiry_from_ms(event.period_end_ms)
    if target_expires_at is None:
        return {"status": "ignored", "reason": "no_period"}

    reconciler = reconciler or build_reconciler()
    outcome = await reconciler.grant(
        user_id=event.beneficiary_user_id,
        tier=PARENT_CLAIM_TIER,
        target_expires_at=target_expires_at,
    )
    await record_entitlement_mirror(
        user_id=event.beneficiary_user_id,
        tier=PARENT_CLAIM_TIER,
        expires_at=outcome.expires_at,
        source="claim",
        now_utc=now_utc,
    )
    logger.info(
        "parent_subscription_renewal_applied",
        event_id=event.event_id,
        user_id=event.beneficiary_user_id,
        subscription_id=event.subscription_id,
        reconcile_action=outcome.action,
    )
    return {"status": "ok", "action": outcome.action}


async def handle_payment_event(
    event: PaymentEvent,
    *,
    reconciler: EntitlementReconciler | None = None,
) -> dict[str, object]:
    if isinstance(event, ClaimPaymentConfirmed):
        return await confirm_claim_payment(event)
    if isinstance(event, SubscriptionRenewed):
        return await apply_subscription_renewal(event, reconciler=reconciler)
    logger.info(
        "payment_event_ignored",
        event_id=event.event_id,
        event_type=event.event_type,
        reason=event.reason,
    )
    return {"status": "ignored", "reason": event.reason}
