from __future__ import annotations

from datetime import datetime, timezone

from study_access.services.webhook_signatures import (
    compute_billing_signature,
    is_valid_billing_signature,
)

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)
BODY = b'{"event":{"id":"evt_1"}}'


def _check(**overrides: object) -> bool:
    timestamp = str(int(NOW.timestamp()))
    params: dict[str, object] = {
        "secret": "whsec",
        "payload": BODY,
        "timestamp_header": timestamp,
        "signature_header": compute_billing_signature(secret="whsec", timestamp=timestamp, payload=BODY),
        "tolerance_seconds": 300,
        "now_utc": NOW,
    }
    params.update(overrides)
    return is_valid_billing_signature(**params)  # type: ignore[arg-type]


def test_valid_signature_is_accepted() -> None:
    assert _check() is True


def test_prefixed_signature_is_accepted() -> None:
    timestamp = str(int(NOW.timestamp()))
    digest = compute_billing_signature(secret="whsec", timestamp=timestamp, payload=BODY)
    assert _check(signature_header=f"sha256={digest}") is True


def test_tampered_body_is_rejected() -> None:
    assert _check(payload=BODY + b" ") is False


def test_wrong_secret_is_rejected() -> None:
    assert _check(secret="other") is False


def test_stale_and_future_timestamps_are_rejected() -> None:
    for offset in (-301, 301):
        timestamp = str(int(NOW.timestamp()) + offset)
        signature = compute_billing_signature(secret="whsec", timestamp=timestamp, payload=BODY)
        assert _check(timestamp_header=timestamp, signature_header=signature) is False


def test_missing_headers_or_secret_are_rejected() -> None:
    assert _check(timestamp_header=None) is False
    assert _check(signature_header=None) is False
    assert _check(secret="") is False
    assert _check(timestamp_header="not-a-number") is False
