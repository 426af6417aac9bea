from __future__ import annotations

from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from study_access.core.config import get_settings
from study_access.db.repo.users_repo import UsersRepo
from study_access.db.session import SessionLocal
from study_access.economy.access.service import AccessCodeService
from study_access.economy.claims.invites import (
    InvalidParentEmailError,
    InviteLimitReachedError,
    send_parent_invite,
)
from study_access.economy.claims.service import ParentClaimService
from study_access.economy.entitlements.query import get_current_entitlement
from study_access.economy.errors import (
    AccessError,
    ClaimAlreadyUsedError,
    ClaimMissingBillingError,
    ClaimNotReadyError,
    CodeExhaustedError,
    CodeExpiredError,
    CodeNotFoundError,
    ProviderError,
    TrialNotActiveError,
    TrialNotExpiredError,
)
from study_access.economy.side_effects.emails import send_welcome_email_once
from study_access.economy.trials.expiry import expire_trial
from study_access.economy.trials.start import start_trial_once
from study_access.economy.types import RedeemResult
from study_access.services.access_codes import is_redeemable_code_shape, normalize_access_code
from study_access.services.alerts import send_ops_alert
from study_access.services.internal_auth import extract_bearer_token
from study_access.services.user_tokens import UserIdentity, UserTokenError, decode_user_token

router = APIRouter(prefix="/v1", tags=["access"])
logger = structlog.get_logger(__name__)


class RedeemRequest(BaseModel):
    code: str = Field(min_length=1, max_length=128)


class RedeemResponse(BaseModel):
    tier: str
    expires_at: datetime | None = None
    source: str
    idempotent_replay: bool


class EntitlementResponse(BaseModel):
    tier: str
    expires_at: datetime | None = None
    source: str


class ParentInviteRequest(BaseModel):
    parent_email: str = Field(min_length=3, max_length=254)


class PushTokenRequest(BaseModel):
    push_token: str | None = Field(default=None, max_length=512)


class StatusResponse(BaseModel):
    status: str
    tier: str | None = None


def _as_redeem_response(result: RedeemResult) -> RedeemResponse:
    return RedeemResponse(
        tier=result.tier,
        expires_at=result.expires_at,
        source=result.source,
        idempotent_replay=result.idempotent_replay,
    )


async def _require_user(request: Request) -> UserIdentity:
    settings = get_settings()
    token = extract_bearer_token(request)
    if token is None:
        raise HTTPException(status_code=401, detail={"code": "E_UNAUTHORIZED"})
    try:
        identity = decode_user_token(
            token,
            secret=settings.user_jwt_secret,
            audience=settings.user_jwt_audience,
        )
    except UserTokenError as exc:
        logger.warning("user_token_rejected", reason=str(exc))
        raise HTTPException(status_code=401, detail={"code": "E_UNAUTHORIZED"}) from exc

    structlog.contextvars.bind_contextvars(user_id=identity.user_id)
    async with SessionLocal.begin() as session:
        await UsersRepo.upsert_seen(session, user_id=identity.user_id, email=identity.email)
    return identity


async def _raise_for_access_error(exc: AccessError) -> None:
    if isinstance(exc, CodeNotFoundError):
        raise HTTPException(status_code=404, detail={"code": "E_CODE_NOT_FOUND"}) from exc
    if isinstance(exc, CodeExpiredError):
        raise HTTPException(status_code=410, detail={"code": "E_CODE_EXPIRED"}) from exc
    if isinstance(exc, CodeExhaustedError):
        raise HTTPException(status_code=409, detail={"code": "E_CODE_EXHAUSTED"}) from exc
    if isinstance(exc, ClaimAlreadyUsedError):
        raise HTTPException(status_code=409, detail={"code": "E_CLAIM_ALREADY_USED"}) from exc
    if isinstance(exc, ClaimNotReadyError):
        raise HTTPException(status_code=409, detail={"code": "E_CLAIM_NOT_READY"}) from exc
    if isinstance(exc, ClaimMissingBillingError):
        logger.error("redeem_failed_missing_billing", claim_id=str(exc))
        await send_ops_alert(event="parent_claim_missing_billing", payload={"claim_id": str(exc)})
        raise HTTPException(status_code=500, detail={"code": "E_INTERNAL"}) from exc
    if isinstance(exc, ProviderError):
        logger.error("redeem_failed_provider_error", error=str(exc))
        await send_ops_alert(event="billing_authority_unavailable", payload={"error": str(exc)})
        raise HTTPException(status_code=502, detail={"code": "E_UPSTREAM_UNAVAILABLE"}) from exc
    raise exc


@router.post("/redeem", response_model=RedeemResponse)
async def redeem_code(payload: RedeemRequest, request: Request) -> RedeemResponse:
    user = await _require_user(request)
    try:
        async with SessionLocal.begin() as session:
            result = await AccessCodeService.redeem(
                session,
                user_id=user.user_id,
                raw_code=payload.code,
                now_utc=datetime.now(timezone.utc),
            )
    except AccessError as exc:
        await _raise_for_access_error(exc)
        raise
    return _as_redeem_response(result)


@router.post("/claims/redeem", response_model=RedeemResponse)
async def redeem_claim(payload: RedeemRequest, request: Request) -> RedeemResponse:
    user = await _require_user(request)
    normalized_code = normalize_access_code(payload.code)
    try:
        if not is_redeemable_code_shape(normalized_code):
            raise CodeNotFoundError
        async with SessionLocal.begin() as session:
            result = await ParentClaimService.redeem_claim(
                session,
                user_id=user.user_id,
                normalized_code=normalized_code,
                now_utc=datetime.now(timezone.utc),
            )
    except AccessError as exc:
        await _raise_for_access_error(exc)
        raise
    return _as_redeem_response(result)


@router.get("/entitlements/me", response_model=EntitlementResponse)
async def get_my_entitlement(
    request: Request,
    refresh: bool = Query(default=False),
) -> EntitlementResponse:
    user = await _require_user(request)
    async with SessionLocal.begin() as session:
        state = await get_current_entitlement(session, user_id=user.user_id, refresh=refresh)
    return EntitlementResponse(tier=state.tier, expires_at=state.expires_at, source=state.source)


@router.post("/trial/start", response_model=StatusResponse)
async def start_trial(request: Request) -> StatusResponse:
    user = await _require_user(request)
    status = await start_trial_once(user_id=user.user_id)
    return StatusResponse(status=status)


@router.post("/trial/expire", response_model=StatusResponse)
async def expire_my_trial(request: Request) -> StatusResponse:
    user = await _require_user(request)
    try:
        async with SessionLocal.begin() as session:
            result = await expire_trial(session, user_id=user.user_id)
    except TrialNotActiveError as exc:
        raise HTTPException(status_code=409, detail={"code": "E_NOT_TRIAL"}) from exc
    except TrialNotExpiredError as exc:
        raise HTTPException(status_code=409, detail={"code": "E_TRIAL_NOT_EXPIRED"}) from exc
    return StatusResponse(status=str(result["status"]), tier=str(result["tier"]))


@router.put("/me/push-token", response_model=StatusResponse)
async def set_push_token(payload: PushTokenRequest, request: Request) -> StatusResponse:
    user = await _require_user(request)
    push_token = (payload.push_token or "").strip() or None
    async with SessionLocal.begin() as session:
        await UsersRepo.set_push_token(session, user_id=user.user_id, push_token=push_token)
    return StatusResponse(status="ok")


@router.delete("/me", response_model=StatusResponse)
async def delete_me(request: Request) -> StatusResponse:
    user = await _require_user(request)
    async with SessionLocal.begin() as session:
        deleted = await UsersRepo.delete(session, user_id=user.user_id)
    logger.info("user_deleted", deleted=deleted)
    return StatusResponse(status="deleted" if deleted else "not_found")


@router.post("/emails/welcome", response_model=StatusResponse)
async def send_welcome_email(request: Request) -> StatusResponse:
    user = await _require_user(request)
    if user.email is None:
        raise HTTPException(status_code=422, detail={"code": "E_EMAIL_MISSING"})
    status = await send_welcome_email_once(user_id=user.user_id, email=user.email)
    return StatusResponse(status=status)


@router.post("/parent-invites", response_model=StatusResponse)
async def invite_parent(payload: ParentInviteRequest, request: Request) -> StatusResponse:
    user = await _require_user(request)
    if user.email is None:
        raise HTTPException(status_code=422, detail={"code": "E_EMAIL_MISSING"})
    try:
        status = await send_parent_invite(
            user_id=user.user_id,
            child_email=user.email,
            parent_email=payload.parent_email,
        )
    except InvalidParentEmailError as exc:
        raise HTTPException(status_code=400, detail={"code": "E_EMAIL_INVALID"}) from exc
    except InviteLimitReachedError as exc:
        raise HTTPException(status_code=429, detail={"code": "E_INVITE_LIMIT"}) from exc
    return StatusResponse(status=status)
