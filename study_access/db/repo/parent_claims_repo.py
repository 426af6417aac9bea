from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from study_access.db.models.parent_claims import ParentClaim


class ParentClaimsRepo:
    @staticmethod
    async def create(
        session: AsyncSession,
        *,
        claim_id: UUID,
        claim_code: str,
        beneficiary_email: str,
        now_utc: datetime,
    ) -> ParentClaim:
        claim = ParentClaim(
            id=claim_id,
            claim_code=claim_code,
            beneficiary_email=beneficiary_email,
            status="created",
            created_at=now_utc,
            updated_at=now_utc,
        )
        session.add(claim)
        await session.flush()
        return claim

    @staticmethod
    async def get_by_id(session: AsyncSession, claim_id: UUID) -> ParentClaim | None:
        return await session.get(ParentClaim, claim_id)

    @staticmethod
    async def get_by_code_for_update(session: AsyncSession, claim_code: str) -> ParentClaim | None:
        stmt = select(ParentClaim).where(ParentClaim.claim_code == claim_code).with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def set_checkout_session(
        session: AsyncSession,
        *,
        claim_id: UUID,
        checkout_session_id: str,
        livemode: bool,
    ) -> None:
        stmt = (
            update(ParentClaim)
            .where(ParentClaim.id == claim_id)
            .values(
                checkout_session_id=checkout_session_id,
                livemode=livemode,
                updated_at=func.now(),
            )
        )
        await session.execute(stmt)

    @staticmethod
    async def mark_paid_if_created(
        session: AsyncSession,
        *,
        claim_id: UUID,
        paid_expires_at_ms: int,
        payment_subscription_id: str | None,
        livemode: bool,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(ParentClaim)
            .where(
                ParentClaim.id == claim_id,
                ParentClaim.status == "created",
            )
            .values(
                status="paid",
                paid_expires_at_ms=paid_expires_at_ms,
                payment_subscription_id=payment_subscription_id,
                livemode=livemode,
                paid_at=now_utc,
                updated_at=now_utc,
            )
            .returning(ParentClaim.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def extend_paid_expiry(
        session: AsyncSession,
        *,
        claim_id: UUID,
        paid_expires_at_ms: int,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(ParentClaim)
            .where(
                ParentClaim.id == claim_id,
                ParentClaim.status == "paid",
                or_(
                    ParentClaim.paid_expires_at_ms.is_(None),
                    ParentClaim.paid_expires_at_ms < paid_expires_at_ms,
                ),
            )
            .values(paid_expires_at_ms=paid_expires_at_ms, updated_at=now_utc)
            .returning(ParentClaim.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def mark_claimed(
        session: AsyncSession,
        *,
        claim_id: UUID,
        user_id: str,
        expected_status: str,
        expected_claimed_by: str | None,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(ParentClaim)
            .where(
                ParentClaim.id == claim_id,
                ParentClaim.status == expected_status,
                ParentClaim.claimed_by.is_not_distinct_from(expected_claimed_by),
            )
            .values(
                status="claimed",
                claimed_by=user_id,
                claimed_at=(
                    func.coalesce(ParentClaim.claimed_at, now_utc)
                    if expected_claimed_by == user_id
                    else now_utc
                ),
                updated_at=now_utc,
            )
            .returning(ParentClaim.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None
