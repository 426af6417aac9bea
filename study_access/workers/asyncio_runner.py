from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable
from typing import TypeVar

import structlog

from study_access.db.session import dispose_engine

T = TypeVar("T")
logger = structlog.get_logger(__name__)


async def _run_with_fresh_db_pool(awaitable: Awaitable[T], *, job_name: str) -> T:
    # pooled connections are bound to the event loop that opened them
    await dispose_engine()
    started_at = time.monotonic()
    try:
        with structlog.contextvars.bound_contextvars(job=job_name):
            try:
                result = await awaitable
            except Exception:
                logger.exception("worker_job_failed")
                raise
            logger.info("worker_job_finished", duration_ms=int((time.monotonic() - started_at) * 1000))
            return result
    finally:
        await dispose_engine()


def run_async_job(awaitable: Awaitable[T], *, job_name: str) -> T:
    return asyncio.run(_run_with_fresh_db_pool(awaitable, job_name=job_name))
