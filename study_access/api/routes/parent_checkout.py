from __future__ import annotations

from uuid import UUID

import structlog
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from study_access.economy.claims.checkout import InvalidBeneficiaryEmailError, start_parent_checkout
from study_access.economy.errors import ProviderError

router = APIRouter(prefix="/v1", tags=["parents"])
logger = structlog.get_logger(__name__)


class ParentCheckoutRequest(BaseModel):
    beneficiary_email: str = Field(min_length=3, max_length=254)


class ParentCheckoutResponse(BaseModel):
    claim_id: UUID
    url: str


@router.post("/parents/checkout", response_model=ParentCheckoutResponse)
async def create_parent_checkout(payload: ParentCheckoutRequest) -> ParentCheckoutResponse:
    try:
        checkout = await start_parent_checkout(beneficiary_email=payload.beneficiary_email)
    except InvalidBeneficiaryEmailError as exc:
        raise HTTPException(status_code=422, detail={"code": "E_EMAIL_INVALID"}) from exc
    except ProviderError as exc:
        logger.error("parent_checkout_failed", error=str(exc))
        raise HTTPException(status_code=502, detail={"code": "E_UPSTREAM_UNAVAILABLE"}) from exc
    return ParentCheckoutResponse(claim_id=checkout.claim_id, url=checkout.url)
