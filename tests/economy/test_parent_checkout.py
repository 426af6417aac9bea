from __future__ import annotations

from types import SimpleNamespace

import pytest

from study_access.economy.claims import checkout
from study_access.economy.claims.checkout import (
    InvalidBeneficiaryEmailError,
    normalize_beneficiary_email,
    start_parent_checkout,
)
from study_access.services.payment_processor import HostedCheckout


def test_normalize_beneficiary_email() -> None:
    assert normalize_beneficiary_email("  Kid@Example.COM ") == "kid@example.com"
    for invalid in ("", "kid", "kid@example", "a b@example.com", "x" * 250 + "@ex.com"):
        with pytest.raises(InvalidBeneficiaryEmailError):
            normalize_beneficiary_email(invalid)


@pytest.mark.asyncio
async def test_start_parent_checkout_links_claim_to_session(monkeypatch, fake_session_local) -> None:
    created: list[dict[str, object]] = []
    linked: list[dict[str, object]] = []

    class _Processor:
        async def create_subscription_checkout(self, **kwargs) -> HostedCheckout:
            self.kwargs = kwargs
            return HostedCheckout(session_id="cs_1", url="https://checkout.test/cs_1", livemode=False)

    async def create(session, **kwargs) -> None:
        created.append(kwargs)

    async def set_checkout_session(session, **kwargs) -> None:
        linked.append(kwargs)

    monkeypatch.setattr(checkout, "SessionLocal", fake_session_local)
    monkeypatch.setattr(checkout.ParentClaimsRepo, "create", create)
    monkeypatch.setattr(checkout.ParentClaimsRepo, "set_checkout_session", set_checkout_session)
    monkeypatch.setattr(
        checkout,
        "get_settings",
        lambda: SimpleNamespace(
            stripe_parent_price_id="price_1",
            parent_checkout_success_url="https://app.test/ok",
            parent_checkout_cancel_url="https://app.test/cancel",
        ),
    )
    processor = _Processor()

    result = await start_parent_checkout(beneficiary_email="Kid@Example.com", processor=processor)

    assert result.url == "https://checkout.test/cs_1"
    assert created[0]["claim_id"] == result.claim_id
    assert created[0]["beneficiary_email"] == "kid@example.com"
    assert len(created[0]["claim_code"]) == 20
    assert processor.kwargs["claim_id"] == str(result.claim_id)
    assert processor.kwargs["price_id"] == "price_1"
    assert linked == [{"claim_id": result.claim_id, "checkout_session_id": "cs_1", "livemode": False}]
