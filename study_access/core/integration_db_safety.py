from __future__ import annotations

import re
from dataclasses import dataclass

from sqlalchemy.engine import make_url

TEST_DB_NAME_RE = re.compile(r"test", re.IGNORECASE)
ALLOWED_LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1", "::1", "postgres", "study_access_postgres"})


@dataclass(frozen=True, slots=True)
class DbTargetCheck:
    is_safe: bool
    reason: str
    database_name: str
    host: str


def check_integration_db_target(database_url: str) -> DbTargetCheck:
    """Decide whether a database may be wiped between integration tests."""
    parsed = make_url(database_url)
    database_name = (parsed.database or "").strip()
    host = (parsed.host or "").strip().lower()

    if parsed.get_backend_name() != "postgresql":
        reason = "only PostgreSQL test databases are supported"
    elif not database_name:
        reason = "database name is empty"
    elif TEST_DB_NAME_RE.search(database_name) is None:
        reason = "database name must contain 'test'"
    elif host not in ALLOWED_LOCAL_HOSTS:
        reason = f"host '{host}' is not a local test host"
    else:
        return DbTargetCheck(is_safe=True, reason="ok", database_name=database_name, host=host)
    return DbTargetCheck(is_safe=False, reason=reason, database_name=database_name, host=host)


def require_disposable_db(database_url: str) -> None:
    check = check_integration_db_target(database_url)
    if check.is_safe:
        return
    raise RuntimeError(
        "Refusing to truncate tables outside a local test database: "
        f"{check.reason} (name='{check.database_name}' host='{check.host}')"
    )
