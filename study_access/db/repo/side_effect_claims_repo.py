from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.ext.asyncio import AsyncSession

from study_access.db.models.side_effect_claims import SideEffectClaim

CLAIMABLE_STATUSES = ("pending", "failed")


class SideEffectClaimsRepo:
    @staticmethod
    async def get(
        session: AsyncSession,
        *,
        kind: str,
        subject_key: str,
    ) -> SideEffectClaim | None:
        stmt = select(SideEffectClaim).where(
            SideEffectClaim.kind == kind,
            SideEffectClaim.subject_key == subject_key,
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def ensure(
        session: AsyncSession,
        *,
        kind: str,
        subject_key: str,
        user_id: str | None,
        now_utc: datetime,
    ) -> None:
        stmt = (
            postgresql_insert(SideEffectClaim)
            .values(
                kind=kind,
                subject_key=subject_key,
                user_id=user_id,
                status="pending",
                attempts=0,
                created_at=now_utc,
                updated_at=now_utc,
            )
            .on_conflict_do_nothing(
                index_elements=[SideEffectClaim.kind, SideEffectClaim.subject_key]
            )
        )
        await session.execute(stmt)

    @staticmethod
    async def try_claim(
        session: AsyncSession,
        *,
        kind: str,
        subject_key: str,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(SideEffectClaim)
            .where(
                SideEffectClaim.kind == kind,
                SideEffectClaim.subject_key == subject_key,
                SideEffectClaim.sent_at.is_(None),
                SideEffectClaim.status.in_(CLAIMABLE_STATUSES),
            )
            .values(
                status="sending",
                attempts=SideEffectClaim.attempts + 1,
                updated_at=now_utc,
            )
            .returning(SideEffectClaim.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def mark_sent(
        session: AsyncSession,
        *,
        kind: str,
        subject_key: str,
        now_utc: datetime,
    ) -> None:
        stmt = (
            update(SideEffectClaim)
            .where(
                SideEffectClaim.kind == kind,
                SideEffectClaim.subject_key == subject_key,
                SideEffectClaim.status == "sending",
            )
            .values(status="sent", sent_at=now_utc, last_error=None, updated_at=now_utc)
        )
        await session.execute(stmt)

    @staticmethod
    async def mark_failed(
        session: AsyncSession,
        *,
        kind: str,
        subject_key: str,
        error: str,
        now_utc: datetime,
    ) -> None:
        stmt = (
            update(SideEffectClaim)
            .where(
                SideEffectClaim.kind == kind,
                SideEffectClaim.subject_key == subject_key,
                SideEffectClaim.status == "sending",
            )
            .values(status="failed", last_error=error[:1000], updated_at=now_utc)
        )
        await session.execute(stmt)

    @staticmethod
    async def count_created_since(
        session: AsyncSession,
        *,
        kind: str,
        user_id: str,
        since_utc: datetime,
    ) -> int:
        stmt = select(func.count(SideEffectClaim.id)).where(
            SideEffectClaim.kind == kind,
            SideEffectClaim.user_id == user_id,
            SideEffectClaim.created_at >= since_utc,
        )
        result = await session.execute(stmt)
        return int(result.scalar_one())

    @staticmethod
    async def record_delivery(
        session: AsyncSession,
        *,
        kind: str,
        subject_key: str,
        delivery_status: str,
        event_at: datetime,
        error: str | None,
        provider_message_id: str | None,
        now_utc: datetime,
    ) -> bool:
        # older events never overwrite a newer outcome
        stmt = (
            update(SideEffectClaim)
            .where(
                SideEffectClaim.kind == kind,
                SideEffectClaim.subject_key == subject_key,
                or_(
                    SideEffectClaim.delivery_event_at.is_(None),
                    SideEffectClaim.delivery_event_at <= event_at,
                ),
            )
            .values(
                delivery_status=delivery_status,
                delivery_event_at=event_at,
                delivery_error=error[:1000] if error else None,
                provider_message_id=func.coalesce(provider_message_id, SideEffectClaim.provider_message_id),
                updated_at=now_utc,
            )
            .returning(SideEffectClaim.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None
