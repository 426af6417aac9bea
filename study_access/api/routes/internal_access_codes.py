from __future__ import annotations

from datetime import datetime

import structlog
from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field, field_validator

from study_access.core.config import get_settings
from study_access.db.repo.access_codes_repo import AccessCodesRepo
from study_access.db.session import SessionLocal
from study_access.economy.access.batch import MAX_BATCH_SIZE
from study_access.economy.access.issuance import AccessCodeIssuanceError, issue_access_codes
from study_access.economy.entitlements.overrides import grant_overrides
from study_access.economy.types import as_utc
from study_access.services.access_codes import format_access_code
from study_access.services.internal_auth import is_admin_request_authenticated

router = APIRouter(prefix="/internal", tags=["internal", "access"])
logger = structlog.get_logger(__name__)
OVERRIDE_BATCH_LIMIT = 200


class AccessCodeIssueRequest(BaseModel):
    count: int = Field(ge=1, le=MAX_BATCH_SIZE)
    tier: str = Field(pattern="^(pro|premium)$")
    max_uses: int = Field(default=1, ge=1)
    expires_at: datetime | None = None
    grant_days: int | None = Field(default=None, gt=0)
    note: str | None = Field(default=None, max_length=255)
    created_by: str = Field(min_length=1, max_length=64)

    @field_validator("expires_at")
    @classmethod
    def _expires_at_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None


class AccessCodeResponse(BaseModel):
    id: int
    code: str
    tier: str
    expires_at: datetime
    max_uses: int
    uses_count: int = 0
    grant_days: int | None = None
    note: str | None = None


class AccessCodeIssueResponse(BaseModel):
    codes: list[AccessCodeResponse]


class AccessCodeListResponse(BaseModel):
    items: list[AccessCodeResponse]


class OverrideGrantRequest(BaseModel):
    user_ids: list[str] = Field(min_length=1, max_length=OVERRIDE_BATCH_LIMIT)
    tier: str = Field(pattern="^(pro|premium)$")
    expires_at: datetime | None = None
    note: str | None = Field(default=None, max_length=255)
    granted_by: str = Field(min_length=1, max_length=64)

    @field_validator("expires_at")
    @classmethod
    def _expires_at_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None


class OverrideGrantItem(BaseModel):
    user_id: str
    ok: bool
    tier: str
    expires_at: datetime | None = None
    error: str | None = None


class OverrideGrantResponse(BaseModel):
    results: list[OverrideGrantItem]


def _assert_admin_access(request: Request) -> None:
    if not is_admin_request_authenticated(request, expected_secret=get_settings().admin_api_secret):
        logger.warning("internal_access_denied", path=request.url.path)
        raise HTTPException(status_code=401, detail={"code": "E_UNAUTHORIZED"})


@router.post("/access-codes", response_model=AccessCodeIssueResponse)
async def issue_codes(
    payload: AccessCodeIssueRequest,
    request: Request,
) -> AccessCodeIssueResponse:
    _assert_admin_access(request)
    try:
        async with SessionLocal.begin() as session:
            issued = await issue_access_codes(
                session,
                count=payload.count,
                tier=payload.tier,
                max_uses=payload.max_uses,
                created_by=payload.created_by,
                expires_at=payload.expires_at,
                grant_days=payload.grant_days,
                note=payload.note,
            )
    except AccessCodeIssuanceError as exc:
        raise HTTPException(
            status_code=422,
            detail={"code": "E_ISSUANCE_INVALID", "message": str(exc)},
        ) from exc

    return AccessCodeIssueResponse(
        codes=[
            AccessCodeResponse(
                id=item.code_id,
                code=item.code,
                tier=item.tier,
                expires_at=item.expires_at,
                max_uses=item.max_uses,
                grant_days=payload.grant_days,
                note=payload.note,
            )
            for item in issued
        ]
    )


@router.get("/access-codes", response_model=AccessCodeListResponse)
async def list_codes(
    request: Request,
    note: str | None = Query(default=None, max_length=255),
    limit: int = Query(default=50, ge=1, le=500),
) -> AccessCodeListResponse:
    _assert_admin_access(request)
    async with SessionLocal() as session:
        codes = await AccessCodesRepo.list_codes(session, note=note, limit=limit)

    return AccessCodeListResponse(
        items=[
            AccessCodeResponse(
                id=code.id,
                code=format_access_code(code.code),
                tier=code.tier,
                expires_at=code.expires_at,
                max_uses=code.max_uses,
                uses_count=code.uses_count,
                grant_days=code.grant_days,
                note=code.note,
            )
            for code in codes
        ]
    )


@router.post("/entitlements/overrides", response_model=OverrideGrantResponse)
async def create_overrides(
    payload: OverrideGrantRequest,
    request: Request,
) -> OverrideGrantResponse:
    _assert_admin_access(request)
    results = await grant_overrides(
        user_ids=payload.user_ids,
        tier=payload.tier,
        expires_at=payload.expires_at,
        note=payload.note,
        granted_by=payload.granted_by,
    )
    return OverrideGrantResponse(
        results=[
            OverrideGrantItem(
                user_id=item.user_id,
                ok=item.ok,
                tier=item.tier,
                expires_at=item.expires_at,
                error=item.error,
            )
            for item in results
        ]
    )
