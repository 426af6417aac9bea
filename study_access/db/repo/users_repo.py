from __future__ import annotations

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.ext.asyncio import AsyncSession

from study_access.db.models.users import User


class UsersRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, user_id: str) -> User | None:
        return await session.get(User, user_id)

    @staticmethod
    async def exists(session: AsyncSession, user_id: str) -> bool:
        stmt = select(User.id).where(User.id == user_id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def upsert_seen(session: AsyncSession, *, user_id: str, email: str | None) -> None:
        stmt = postgresql_insert(User).values(id=user_id, email=email)
        set_values: dict[str, object] = {"updated_at": func.now()}
        if email:
            set_values["email"] = stmt.excluded.email
        stmt = stmt.on_conflict_do_update(index_elements=[User.id], set_=set_values)
        await session.execute(stmt)

    @staticmethod
    async def set_push_token(session: AsyncSession, *, user_id: str, push_token: str | None) -> bool:
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(push_token=push_token, updated_at=func.now())
            .returning(User.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def delete(session: AsyncSession, *, user_id: str) -> bool:
        stmt = delete(User).where(User.id == user_id).returning(User.id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def ensure_exists(session: AsyncSession, *, user_id: str) -> None:
        stmt = (
            postgresql_insert(User)
            .values(id=user_id)
            .on_conflict_do_nothing(index_elements=[User.id])
        )
        await session.execute(stmt)
