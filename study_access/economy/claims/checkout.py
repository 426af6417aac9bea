from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID, uuid4

import structlog

from study_access.core.config import get_settings
from study_access.db.repo.parent_claims_repo import ParentClaimsRepo
from study_access.db.session import SessionLocal
from study_access.economy.access.batch import generate_claim_code
from study_access.services.payment_processor import PaymentProcessor

logger = structlog.get_logger(__name__)
_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MAX_EMAIL_LENGTH = 254


class InvalidBeneficiaryEmailError(Exception):
    pass


@dataclass(frozen=True, slots=True)
class ParentCheckout:
    claim_id: UUID
    url: str


def normalize_beneficiary_email(raw_email: str) -> str:
    email = raw_email.strip().lower()
    if not email or len(email) > MAX_EMAIL_LENGTH or _EMAIL_PATTERN.match(email) is None:
        raise InvalidBeneficiaryEmailError
    return email


async def start_parent_checkout(
    *,
    beneficiary_email: str,
    processor: PaymentProcessor | None = None,
    now_utc: datetime | None = None,
) -> ParentCheckout:
    settings = get_settings()
    now_utc = now_utc or datetime.now(timezone.utc)
    email = normalize_beneficiary_email(beneficiary_email)
    claim_id = uuid4()

    async with SessionLocal.begin() as session:
        await ParentClaimsRepo.create(
            session,
            claim_id=claim_id,
            claim_code=generate_claim_code(),
            beneficiary_email=email,
            now_utc=now_utc,
        )

    processor = processor or PaymentProcessor.from_settings(settings)
    checkout = await processor.create_subscription_checkout(
        price_id=settings.stripe_parent_price_id,
        claim_id=str(claim_id),
        beneficiary_email=email,
        success_url=settings.parent_checkout_success_url,
        cancel_url=settings.parent_checkout_cancel_url,
    )

    async with SessionLocal.begin() as session:
        await ParentClaimsRepo.set_checkout_session(
            session,
            claim_id=claim_id,
            checkout_session_id=checkout.session_id,
            livemode=checkout.livemode,
        )

    logger.info(
        "parent_checkout_started",
        claim_id=str(claim_id),
        checkout_session_id=checkout.session_id,
        livemode=checkout.livemode,
    )
    return ParentCheckout(claim_id=claim_id, url=checkout.url)
