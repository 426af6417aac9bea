from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from study_access.db.repo.access_codes_repo import AccessCodesRepo
from study_access.economy.access.batch import MAX_BATCH_SIZE, generate_raw_code
from study_access.economy.types import TIERS, as_utc
from study_access.services.access_codes import format_access_code

logger = structlog.get_logger(__name__)
DEFAULT_CODE_VALIDITY = timedelta(days=30)
MAX_COLLISION_RETRIES = 10


class AccessCodeIssuanceError(Exception):
    pass


@dataclass(frozen=True, slots=True)
class IssuedAccessCode:
    code_id: int
    code: str
    tier: str
    expires_at: datetime
    max_uses: int


async def issue_access_codes(
    session: AsyncSession,
    *,
    count: int,
    tier: str,
    max_uses: int,
    created_by: str,
    expires_at: datetime | None = None,
    grant_days: int | None = None,
    note: str | None = None,
    now_utc: datetime | None = None,
) -> list[IssuedAccessCode]:
    now_utc = now_utc or datetime.now(timezone.utc)
    if not 1 <= count <= MAX_BATCH_SIZE:
        raise AccessCodeIssuanceError(f"count must be in range 1..{MAX_BATCH_SIZE}")
    if tier not in TIERS:
        raise AccessCodeIssuanceError(f"tier must be one of {', '.join(TIERS)}")
    if grant_days is not None and grant_days <= 0:
        raise AccessCodeIssuanceError("grant_days must be positive")

    resolved_expires_at = as_utc(expires_at) if expires_at else now_utc + DEFAULT_CODE_VALIDITY
    if resolved_expires_at <= now_utc:
        raise AccessCodeIssuanceError("expires_at must be in the future")
    resolved_max_uses = max(1, int(max_uses))

    issued: list[IssuedAccessCode] = []
    for _ in range(count):
        for _attempt in range(MAX_COLLISION_RETRIES):
            raw_code = generate_raw_code()
            code_id = await AccessCodesRepo.try_create(
                session,
                code=raw_code,
                tier=tier,
                expires_at=resolved_expires_at,
                max_uses=resolved_max_uses,
                grant_days=grant_days,
                note=note,
                created_by=created_by,
                created_at=now_utc,
            )
            if code_id is not None:
                issued.append(
                    IssuedAccessCode(
                        code_id=code_id,
                        code=format_access_code(raw_code),
                        tier=tier,
                        expires_at=resolved_expires_at,
                        max_uses=resolved_max_uses,
                    )
                )
                break
        else:
            raise AccessCodeIssuanceError("unable to generate a unique access code")

    logger.info(
        "access_codes_issued",
        count=len(issued),
        tier=tier,
        max_uses=resolved_max_uses,
        grant_days=grant_days,
        expires_at=resolved_expires_at,
        created_by=created_by,
    )
    return issued
