from __future__ import annotations

import argparse
import csv
from datetime import datetime, timezone

import pytest

from scripts.access_code_tool import _validate_issue_args, _write_output
from study_access.economy.access.issuance import IssuedAccessCode


def _issue_args(**overrides: object) -> argparse.Namespace:
    values: dict[str, object] = {"count": 10, "max_uses": 1, "grant_days": None}
    values.update(overrides)
    return argparse.Namespace(**values)


def test_validate_issue_args_accepts_defaults() -> None:
    _validate_issue_args(_issue_args())


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"count": 0}, "--count"),
        ({"count": 501}, "--count"),
        ({"max_uses": 0}, "--max-uses"),
        ({"grant_days": 0}, "--grant-days"),
    ],
)
def test_validate_issue_args_rejects_out_of_range(overrides: dict[str, object], message: str) -> None:
    with pytest.raises(ValueError, match=message):
        _validate_issue_args(_issue_args(**overrides))


def test_write_output_creates_csv_with_plaintext_codes(tmp_path) -> None:
    output = tmp_path / "nested" / "codes.csv"
    issued = [
        IssuedAccessCode(
            code_id=7,
            code="ABCD-EFGH-JKLM-NPQR",
            tier="pro",
            expires_at=datetime(2026, 6, 1, tzinfo=timezone.utc),
            max_uses=2,
        )
    ]

    _write_output(output, issued)

    with output.open(encoding="utf-8") as file:
        rows = list(csv.reader(file))
    assert rows == [
        ["code", "code_id", "tier", "expires_at", "max_uses"],
        ["ABCD-EFGH-JKLM-NPQR", "7", "pro", "2026-06-01T00:00:00+00:00", "2"],
    ]
