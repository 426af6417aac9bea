from __future__ import annotations

import pytest
from sqlalchemy import text

import study_access.db.models  # noqa: F401
from study_access.core.integration_db_safety import require_disposable_db
from study_access.db.models.base import Base
from study_access.db.session import engine

TRUNCATE_TABLES = (
    "access_code_redemptions",
    "access_codes",
    "parent_claims",
    "entitlement_mirrors",
    "entitlement_overrides",
    "promo_grants",
    "side_effect_claims",
    "users",
)

TRUNCATE_SQL = f"TRUNCATE TABLE {', '.join(TRUNCATE_TABLES)} RESTART IDENTITY CASCADE"


@pytest.fixture(scope="session", autouse=True)
def guard_integration_db_target() -> None:
    require_disposable_db(str(engine.url))


@pytest.fixture(autouse=True)
async def cleanup_db() -> None:
    await engine.dispose()

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:  # pragma: no cover - environment-dependent
        pytest.skip(f"Postgres is required for integration tests: {exc}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.execute(text(TRUNCATE_SQL))

    yield

    await engine.dispose()
