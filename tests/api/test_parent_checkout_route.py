from __future__ import annotations

from uuid import UUID

from fastapi.testclient import TestClient

from study_access.api.routes import parent_checkout
from study_access.economy.claims.checkout import ParentCheckout
from study_access.main import app
from study_access.services.payment_processor import PaymentProcessorError

CLAIM_ID = UUID("6f1c9a52-8d0e-4b5a-9a43-2a7e0c1d9b11")


def test_checkout_rejects_invalid_email() -> None:
    client = TestClient(app)
    response = client.post("/v1/parents/checkout", json={"beneficiary_email": "not-an-email"})

    assert response.status_code == 422
    assert response.json() == {"detail": {"code": "E_EMAIL_INVALID"}}


def test_checkout_returns_redirect_url(monkeypatch) -> None:
    async def start_parent_checkout(*, beneficiary_email: str) -> ParentCheckout:
        assert beneficiary_email == "Kid@Example.com"
        return ParentCheckout(claim_id=CLAIM_ID, url="https://checkout.example/session")

    monkeypatch.setattr(parent_checkout, "start_parent_checkout", start_parent_checkout)

    client = TestClient(app)
    response = client.post("/v1/parents/checkout", json={"beneficiary_email": "Kid@Example.com"})

    assert response.status_code == 200
    assert response.json() == {"claim_id": str(CLAIM_ID), "url": "https://checkout.example/session"}


def test_checkout_maps_provider_failure(monkeypatch) -> None:
    async def start_parent_checkout(*, beneficiary_email: str) -> ParentCheckout:
        raise PaymentProcessorError("processor down")

    monkeypatch.setattr(parent_checkout, "start_parent_checkout", start_parent_checkout)

    client = TestClient(app)
    response = client.post("/v1/parents/checkout", json={"beneficiary_email": "kid@example.com"})

    assert response.status_code == 502
    assert response.json() == {"detail": {"code": "E_UPSTREAM_UNAVAILABLE"}}
