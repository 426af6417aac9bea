from __future__ import annotations

from datetime import datetime

from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.ext.asyncio import AsyncSession

from study_access.db.models.entitlement_overrides import EntitlementOverride


class EntitlementOverridesRepo:
    @staticmethod
    async def get_by_user_id(session: AsyncSession, user_id: str) -> EntitlementOverride | None:
        return await session.get(EntitlementOverride, user_id)

    @staticmethod
    async def upsert(
        session: AsyncSession,
        *,
        user_id: str,
        tier: str,
        expires_at: datetime | None,
        note: str | None,
        granted_by: str,
        now_utc: datetime,
    ) -> None:
        stmt = postgresql_insert(EntitlementOverride).values(
            user_id=user_id,
            tier=tier,
            expires_at=expires_at,
            note=note,
            granted_by=granted_by,
            created_at=now_utc,
            updated_at=now_utc,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[EntitlementOverride.user_id],
            set_={
                "tier": stmt.excluded.tier,
                "expires_at": stmt.excluded.expires_at,
                "note": stmt.excluded.note,
                "granted_by": stmt.excluded.granted_by,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await session.execute(stmt)
