from __future__ import annotations

import structlog

from study_access.economy.trials.sweep import run_trial_expiry_sweep as run_sweep
from study_access.services.alerts import send_ops_alert
from study_access.workers.asyncio_runner import run_async_job
from study_access.workers.celery_app import celery_app

logger = structlog.get_logger(__name__)


async def run_trial_expiry_sweep_async() -> dict[str, int]:
    result = await run_sweep()
    if result["failed"] > 0:
        await send_ops_alert(event="trial_expiry_push_failed", payload=result)
    return result


@celery_app.task(name="study_access.workers.tasks.trial_expiry.run_trial_expiry_sweep")
def run_trial_expiry_sweep() -> dict[str, int]:
    return run_async_job(run_trial_expiry_sweep_async(), job_name="trial_expiry_sweep")
