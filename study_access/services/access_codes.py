from __future__ import annotations

import re

_ACCESS_CODE_STRIP_PATTERN = re.compile(r"[^0-9A-Z]+")
MIN_CODE_LENGTH = 8
CODE_GROUP_LENGTH = 4


def normalize_access_code(raw_code: str) -> str:
    return _ACCESS_CODE_STRIP_PATTERN.sub("", raw_code.upper())


def is_redeemable_code_shape(normalized_code: str) -> bool:
    return MIN_CODE_LENGTH <= len(normalized_code) <= 64


def format_access_code(normalized_code: str, *, group_length: int = CODE_GROUP_LENGTH) -> str:
    return "-".join(
        normalized_code[index : index + group_length]
        for index in range(0, len(normalized_code), group_length)
    )
