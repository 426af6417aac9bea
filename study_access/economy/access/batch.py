from __future__ import annotations

import secrets
from datetime import datetime

from study_access.economy.types import as_utc

CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CLAIM_CODE_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
CLAIM_CODE_LENGTH = 20
MAX_BATCH_SIZE = 500


def generate_raw_code(*, groups: int = 4, group_length: int = 4) -> str:
    if groups <= 0 or group_length <= 0:
        raise ValueError("groups and group_length must be positive")
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(groups * group_length))


def generate_claim_code(length: int = CLAIM_CODE_LENGTH) -> str:
    return "".join(secrets.choice(CLAIM_CODE_ALPHABET) for _ in range(length))


def parse_utc_datetime(value: str) -> datetime:
    return as_utc(datetime.fromisoformat(value))
