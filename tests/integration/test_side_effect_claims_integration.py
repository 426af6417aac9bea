from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from study_access.db.repo.side_effect_claims_repo import SideEffectClaimsRepo
from study_access.db.repo.users_repo import UsersRepo
from study_access.db.session import SessionLocal
from study_access.economy.side_effects.service import (
    SIDE_EFFECT_FAILED,
    SIDE_EFFECT_SENT,
    SIDE_EFFECT_SKIPPED,
    run_side_effect_once,
)


@pytest.mark.asyncio
async def test_parallel_invocations_run_action_once() -> None:
    calls: list[str] = []

    async def action() -> None:
        calls.append("sent")
        await asyncio.sleep(0)

    results = await asyncio.gather(
        *[
            run_side_effect_once(kind="welcome_email", subject_key="parallel@example.com", action=action)
            for _ in range(4)
        ]
    )

    assert calls == ["sent"]
    assert sorted(results) == [SIDE_EFFECT_SENT] + [SIDE_EFFECT_SKIPPED] * 3

    async with SessionLocal() as session:
        claim = await SideEffectClaimsRepo.get(
            session,
            kind="welcome_email",
            subject_key="parallel@example.com",
        )
    assert claim is not None
    assert claim.status == "sent"
    assert claim.attempts == 1


@pytest.mark.asyncio
async def test_failed_action_can_be_retried() -> None:
    attempts: list[int] = []

    async def flaky() -> None:
        attempts.append(len(attempts))
        if len(attempts) == 1:
            raise RuntimeError("provider down")

    first = await run_side_effect_once(kind="welcome_email", subject_key="retry@example.com", action=flaky)
    second = await run_side_effect_once(kind="welcome_email", subject_key="retry@example.com", action=flaky)
    third = await run_side_effect_once(kind="welcome_email", subject_key="retry@example.com", action=flaky)

    assert (first, second, third) == (SIDE_EFFECT_FAILED, SIDE_EFFECT_SENT, SIDE_EFFECT_SKIPPED)
    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_older_delivery_event_does_not_overwrite_newer_outcome() -> None:
    now = datetime.now(timezone.utc)
    async with SessionLocal.begin() as session:
        await SideEffectClaimsRepo.ensure(
            session,
            kind="welcome_email",
            subject_key="events@example.com",
            user_id=None,
            now_utc=now,
        )

    async with SessionLocal.begin() as session:
        delivered = await SideEffectClaimsRepo.record_delivery(
            session,
            kind="welcome_email",
            subject_key="events@example.com",
            delivery_status="delivered",
            event_at=now,
            error=None,
            provider_message_id="msg-1",
            now_utc=now,
        )
        processed = await SideEffectClaimsRepo.record_delivery(
            session,
            kind="welcome_email",
            subject_key="events@example.com",
            delivery_status="processed",
            event_at=now - timedelta(seconds=5),
            error=None,
            provider_message_id=None,
            now_utc=now,
        )

    assert (delivered, processed) == (True, False)
    async with SessionLocal() as session:
        claim = await SideEffectClaimsRepo.get(session, kind="welcome_email", subject_key="events@example.com")
    assert claim is not None
    assert claim.delivery_status == "delivered"
    assert claim.provider_message_id == "msg-1"


@pytest.mark.asyncio
async def test_recent_rows_are_counted_per_user_and_kind() -> None:
    now = datetime.now(timezone.utc)
    async with SessionLocal.begin() as session:
        await UsersRepo.ensure_exists(session, user_id="u-invites")
        for index, created_at in enumerate([now - timedelta(hours=25), now - timedelta(hours=1), now]):
            await SideEffectClaimsRepo.ensure(
                session,
                kind="parent_invite_email",
                subject_key=f"invite-{index}",
                user_id="u-invites",
                now_utc=created_at,
            )

    async with SessionLocal() as session:
        recent = await SideEffectClaimsRepo.count_created_since(
            session,
            kind="parent_invite_email",
            user_id="u-invites",
            since_utc=now - timedelta(hours=24),
        )
    assert recent == 2
