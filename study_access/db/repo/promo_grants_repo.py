from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.ext.asyncio import AsyncSession

from study_access.db.models.promo_grants import PromoGrant


class PromoGrantsRepo:
    @staticmethod
    async def get_by_user_promo(
        session: AsyncSession,
        *,
        user_id: str,
        promo_key: str,
    ) -> PromoGrant | None:
        stmt = select(PromoGrant).where(
            PromoGrant.user_id == user_id,
            PromoGrant.promo_key == promo_key,
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def try_create(
        session: AsyncSession,
        *,
        user_id: str,
        promo_key: str,
        event_id: str,
        environment: str | None,
        expires_at: datetime,
        raw_event: dict[str, object],
        created_at: datetime,
    ) -> bool:
        stmt = (
            postgresql_insert(PromoGrant)
            .values(
                user_id=user_id,
                promo_key=promo_key,
                event_id=event_id,
                environment=environment,
                expires_at=expires_at,
                raw_event=raw_event,
                created_at=created_at,
            )
            .on_conflict_do_nothing(index_elements=[PromoGrant.user_id, PromoGrant.promo_key])
            .returning(PromoGrant.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None
