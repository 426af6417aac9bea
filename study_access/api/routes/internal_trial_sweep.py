from __future__ import annotations

import structlog
from fastapi import APIRouter, HTTPException, Request

from study_access.core.config import get_settings
from study_access.services.internal_auth import is_scheduler_request_authenticated
from study_access.workers.tasks.trial_expiry import run_trial_expiry_sweep_async

router = APIRouter(prefix="/internal", tags=["internal", "trials"])
logger = structlog.get_logger(__name__)


@router.post("/trial-expiry/sweep")
async def trial_expiry_sweep(request: Request) -> dict[str, int]:
    settings = get_settings()
    if not is_scheduler_request_authenticated(
        request,
        scheduler_secret=settings.scheduler_secret,
        service_token=settings.internal_api_token,
    ):
        logger.warning("trial_expiry_sweep_access_denied")
        raise HTTPException(status_code=401, detail={"code": "E_UNAUTHORIZED"})
    return await run_trial_expiry_sweep_async()
