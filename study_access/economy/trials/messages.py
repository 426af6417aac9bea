from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta

ONE_DAY = timedelta(days=1)


@dataclass(frozen=True, slots=True)
class TrialWarningMessage:
    title: str
    body: str


def days_remaining(*, expires_at: datetime, now_utc: datetime) -> int:
    remaining = (expires_at - now_utc) / ONE_DAY
    return max(0, math.ceil(remaining))


def build_trial_warning_message(days: int) -> TrialWarningMessage:
    if days <= 0:
        return TrialWarningMessage(
            title="Pro access ends today",
            body="Your free Pro access ends today. Upgrade now to keep Pro features.",
        )
    if days == 1:
        return TrialWarningMessage(
            title="1 day left of Pro",
            body="Your free Pro access ends tomorrow. Upgrade to keep Pro features.",
        )
    return TrialWarningMessage(
        title=f"{days} days left of Pro",
        body=f"Your free Pro access ends in {days} days. Upgrade to keep Pro features.",
    )
