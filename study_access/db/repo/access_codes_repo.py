from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.ext.asyncio import AsyncSession

from study_access.db.models.access_code_redemptions import AccessCodeRedemption
from study_access.db.models.access_codes import AccessCode


class AccessCodesRepo:
    @staticmethod
    async def get_by_code(session: AsyncSession, code: str) -> AccessCode | None:
        stmt = select(AccessCode).where(AccessCode.code == code)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_code_for_update(session: AsyncSession, code: str) -> AccessCode | None:
        stmt = select(AccessCode).where(AccessCode.code == code).with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def try_create(
        session: AsyncSession,
        *,
        code: str,
        tier: str,
        expires_at: datetime,
        max_uses: int,
        grant_days: int | None,
        note: str | None,
        created_by: str,
        created_at: datetime,
    ) -> int | None:
        stmt = (
            postgresql_insert(AccessCode)
            .values(
                code=code,
                tier=tier,
                expires_at=expires_at,
                max_uses=max_uses,
                uses_count=0,
                grant_days=grant_days,
                note=note,
                created_by=created_by,
                created_at=created_at,
            )
            .on_conflict_do_nothing(index_elements=[AccessCode.code])
            .returning(AccessCode.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_codes(
        session: AsyncSession,
        *,
        note: str | None = None,
        limit: int = 50,
    ) -> list[AccessCode]:
        stmt = (
            select(AccessCode)
            .order_by(AccessCode.created_at.desc(), AccessCode.id.desc())
            .limit(limit)
        )
        if note:
            stmt = stmt.where(AccessCode.note == note)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def get_redemption(
        session: AsyncSession,
        *,
        code_id: int,
        user_id: str,
    ) -> AccessCodeRedemption | None:
        stmt = select(AccessCodeRedemption).where(
            AccessCodeRedemption.code_id == code_id,
            AccessCodeRedemption.user_id == user_id,
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def try_create_redemption(
        session: AsyncSession,
        *,
        code_id: int,
        user_id: str,
        tier: str,
        expires_at: datetime,
        created_at: datetime,
    ) -> bool:
        stmt = (
            postgresql_insert(AccessCodeRedemption)
            .values(
                code_id=code_id,
                user_id=user_id,
                tier=tier,
                expires_at=expires_at,
                created_at=created_at,
            )
            .on_conflict_do_nothing(
                index_elements=[AccessCodeRedemption.code_id, AccessCodeRedemption.user_id]
            )
            .returning(AccessCodeRedemption.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def increment_uses_if_available(session: AsyncSession, *, code_id: int) -> int | None:
        stmt = (
            update(AccessCode)
            .where(
                AccessCode.id == code_id,
                AccessCode.uses_count < AccessCode.max_uses,
            )
            .values(uses_count=AccessCode.uses_count + 1)
            .returning(AccessCode.uses_count)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()
