from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

TIERS = ("pro", "premium")
TIER_RANK = {"free": 0, "pro": 1, "premium": 2}


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(slots=True)
class RedeemResult:
    tier: str
    # None means the active grant never expires
    expires_at: datetime | None
    source: str
    idempotent_replay: bool = False


@dataclass(frozen=True, slots=True)
class EntitlementState:
    tier: str
    expires_at: datetime | None
    source: str
