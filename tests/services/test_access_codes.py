from __future__ import annotations

from study_access.economy.access.batch import (
    CLAIM_CODE_ALPHABET,
    CLAIM_CODE_LENGTH,
    CODE_ALPHABET,
    generate_claim_code,
    generate_raw_code,
    parse_utc_datetime,
)
from study_access.services.access_codes import (
    format_access_code,
    is_redeemable_code_shape,
    normalize_access_code,
)


def test_normalize_access_code_strips_separators_and_case() -> None:
    assert normalize_access_code(" abcd-efgh ijkl_mn23 ") == "ABCDEFGHIJKLMN23"
    assert normalize_access_code("ab.cd/ef") == "ABCDEF"


def test_normalize_access_code_is_idempotent() -> None:
    normalized = normalize_access_code("wxyz-2345-abcd")
    assert normalize_access_code(normalized) == normalized


def test_redeemable_shape_requires_eight_characters() -> None:
    assert is_redeemable_code_shape("ABCDEFG") is False
    assert is_redeemable_code_shape("ABCDEFGH") is True
    assert is_redeemable_code_shape("A" * 64) is True
    assert is_redeemable_code_shape("A" * 65) is False


def test_format_access_code_groups_by_four() -> None:
    assert format_access_code("ABCDEFGHJKLMNPQR") == "ABCD-EFGH-JKLM-NPQR"
    assert format_access_code("ABCDEF") == "ABCD-EF"


def test_generated_codes_use_unambiguous_alphabet() -> None:
    code = generate_raw_code()
    assert len(code) == 16
    assert set(code) <= set(CODE_ALPHABET)
    assert not set(code) & {"0", "O", "1", "I"}


def test_generated_claim_code_survives_normalization() -> None:
    claim_code = generate_claim_code()
    assert len(claim_code) == CLAIM_CODE_LENGTH
    assert set(claim_code) <= set(CLAIM_CODE_ALPHABET)
    assert normalize_access_code(claim_code) == claim_code


def test_parse_utc_datetime_assumes_utc_for_naive_values() -> None:
    parsed = parse_utc_datetime("2026-03-01T10:00:00")
    assert parsed.utcoffset().total_seconds() == 0
    assert parse_utc_datetime("2026-03-01T12:00:00+02:00") == parsed
