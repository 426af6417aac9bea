from __future__ import annotations

import base64
import hashlib
import hmac
from datetime import datetime, timezone

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec


def _within_tolerance(timestamp: str, *, tolerance_seconds: int, now_utc: datetime | None) -> bool:
    try:
        sent_at = int(timestamp)
    except ValueError:
        return False
    now_ts = int((now_utc or datetime.now(timezone.utc)).timestamp())
    return abs(now_ts - sent_at) <= max(0, tolerance_seconds)


def compute_billing_signature(*, secret: str, timestamp: str, payload: bytes) -> str:
    message = timestamp.encode("utf-8") + b"." + payload
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def is_valid_billing_signature(
    *,
    secret: str,
    payload: bytes,
    timestamp_header: str | None,
    signature_header: str | None,
    tolerance_seconds: int,
    now_utc: datetime | None = None,
) -> bool:
    """Check an HMAC-SHA256 signature over ``"{timestamp}.{raw body}"``.

    Stale and future-dated timestamps outside the tolerance are rejected
    before the digest is compared.
    """
    if not secret or not timestamp_header or not signature_header:
        return False

    timestamp = timestamp_header.strip()
    if not _within_tolerance(timestamp, tolerance_seconds=tolerance_seconds, now_utc=now_utc):
        return False

    expected = compute_billing_signature(secret=secret, timestamp=timestamp, payload=payload)
    received = signature_header.strip().lower()
    if received.startswith("sha256="):
        received = received[len("sha256=") :]
    return hmac.compare_digest(expected, received)


def load_email_event_public_key(raw_key: str) -> ec.EllipticCurvePublicKey:
    """Accept the provider's key as PEM or as bare base64 DER."""
    raw_key = raw_key.strip()
    if raw_key.startswith("-----BEGIN"):
        key = serialization.load_pem_public_key(raw_key.encode("ascii"))
    else:
        key = serialization.load_der_public_key(base64.b64decode(raw_key))
    if not isinstance(key, ec.EllipticCurvePublicKey):
        raise ValueError("email event key must be an EC public key")
    return key


def is_valid_email_event_signature(
    *,
    public_key: str,
    payload: bytes,
    timestamp_header: str | None,
    signature_header: str | None,
    tolerance_seconds: int,
    now_utc: datetime | None = None,
) -> bool:
    """Check an ECDSA P-256/SHA-256 signature over ``timestamp + raw body``."""
    if not public_key or not timestamp_header or not signature_header:
        return False

    timestamp = timestamp_header.strip()
    if not _within_tolerance(timestamp, tolerance_seconds=tolerance_seconds, now_utc=now_utc):
        return False

    try:
        key = load_email_event_public_key(public_key)
        signature = base64.b64decode(signature_header.strip(), validate=True)
    except (ValueError, UnsupportedAlgorithm):
        return False

    try:
        key.verify(signature, timestamp.encode("utf-8") + payload, ec.ECDSA(hashes.SHA256()))
    except InvalidSignature:
        return False
    return True
