from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import and_, or_, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.ext.asyncio import AsyncSession

from study_access.db.models.entitlement_mirrors import EntitlementMirror
from study_access.db.models.users import User


@dataclass(frozen=True, slots=True)
class TrialWarningCandidate:
    user_id: str
    push_token: str
    expires_at: datetime
    last_warning_days_remaining: int | None


class EntitlementMirrorsRepo:
    @staticmethod
    async def get_by_user_id(session: AsyncSession, user_id: str) -> EntitlementMirror | None:
        return await session.get(EntitlementMirror, user_id)

    @staticmethod
    async def get_by_user_id_for_update(
        session: AsyncSession,
        user_id: str,
    ) -> EntitlementMirror | None:
        stmt = select(EntitlementMirror).where(EntitlementMirror.user_id == user_id).with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def upsert(
        session: AsyncSession,
        *,
        user_id: str,
        tier: str,
        expires_at: datetime | None,
        source: str,
        now_utc: datetime,
    ) -> None:
        stmt = postgresql_insert(EntitlementMirror).values(
            user_id=user_id,
            tier=tier,
            expires_at=expires_at,
            source=source,
            updated_at=now_utc,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[EntitlementMirror.user_id],
            set_={
                "tier": stmt.excluded.tier,
                "expires_at": stmt.excluded.expires_at,
                "source": stmt.excluded.source,
                "updated_at": stmt.excluded.updated_at,
                # a new grant restarts trial bookkeeping
                "trial_last_warning_days_remaining": None,
                "trial_last_warning_sent_at": None,
                "expired_processed_at": None,
            },
        )
        await session.execute(stmt)

    @staticmethod
    async def list_trial_warning_candidates(
        session: AsyncSession,
        *,
        window_start: datetime,
        window_end: datetime,
        after_user_id: str | None,
        limit: int,
    ) -> list[TrialWarningCandidate]:
        stmt = (
            select(
                EntitlementMirror.user_id,
                User.push_token,
                EntitlementMirror.expires_at,
                EntitlementMirror.trial_last_warning_days_remaining,
            )
            .join(User, User.id == EntitlementMirror.user_id)
            .where(
                EntitlementMirror.source == "trial",
                EntitlementMirror.expired_processed_at.is_(None),
                EntitlementMirror.expires_at > window_start,
                EntitlementMirror.expires_at <= window_end,
                User.push_token.is_not(None),
            )
            .order_by(EntitlementMirror.user_id.asc())
            .limit(limit)
        )
        if after_user_id is not None:
            stmt = stmt.where(EntitlementMirror.user_id > after_user_id)
        result = await session.execute(stmt)
        return [
            TrialWarningCandidate(
                user_id=str(row.user_id),
                push_token=str(row.push_token),
                expires_at=row.expires_at,
                last_warning_days_remaining=row.trial_last_warning_days_remaining,
            )
            for row in result
        ]

    @staticmethod
    async def claim_trial_warning(
        session: AsyncSession,
        *,
        user_id: str,
        days_remaining: int,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(EntitlementMirror)
            .where(
                EntitlementMirror.user_id == user_id,
                EntitlementMirror.source == "trial",
                EntitlementMirror.expired_processed_at.is_(None),
                or_(
                    EntitlementMirror.trial_last_warning_days_remaining.is_(None),
                    EntitlementMirror.trial_last_warning_days_remaining != days_remaining,
                ),
            )
            .values(
                trial_last_warning_days_remaining=days_remaining,
                trial_last_warning_sent_at=now_utc,
            )
            .returning(EntitlementMirror.user_id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def mark_trial_expired(
        session: AsyncSession,
        *,
        user_id: str,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(EntitlementMirror)
            .where(
                and_(
                    EntitlementMirror.user_id == user_id,
                    EntitlementMirror.source == "trial",
                    EntitlementMirror.expired_processed_at.is_(None),
                    EntitlementMirror.expires_at <= now_utc,
                )
            )
            .values(
                tier="free",
                expired_processed_at=now_utc,
                updated_at=now_utc,
            )
            .returning(EntitlementMirror.user_id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None
