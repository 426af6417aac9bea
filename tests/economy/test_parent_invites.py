from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from study_access.economy.claims import invites
from study_access.economy.claims.invites import (
    InvalidParentEmailError,
    InviteLimitReachedError,
    send_parent_invite,
)
from study_access.economy.side_effects.emails import PARENT_INVITE_EMAIL_KIND
from study_access.economy.side_effects.service import SIDE_EFFECT_FAILED, SIDE_EFFECT_SENT

NOW = datetime(2026, 4, 1, tzinfo=timezone.utc)


class _Outbox:
    def __init__(self) -> None:
        self.recent = 0
        self.count_queries: list[dict[str, object]] = []
        self.runs: list[dict[str, object]] = []
        self.sent: list[object] = []
        self.fail_send = False


@pytest.fixture
def outbox(monkeypatch, fake_session_local) -> _Outbox:
    box = _Outbox()

    async def count_created_since(session, **kwargs) -> int:
        box.count_queries.append(kwargs)
        return box.recent

    async def run_side_effect_once(*, kind, subject_key, action, user_id=None) -> str:
        box.runs.append({"kind": kind, "subject_key": subject_key, "user_id": user_id})
        try:
            await action()
        except RuntimeError:
            return SIDE_EFFECT_FAILED
        return SIDE_EFFECT_SENT

    async def send_email(message) -> None:
        if box.fail_send:
            raise RuntimeError("provider down")
        box.sent.append(message)

    monkeypatch.setattr(
        invites,
        "get_settings",
        lambda: SimpleNamespace(parent_invite_daily_limit=3, marketing_base_url="https://flash.test/"),
    )
    monkeypatch.setattr(invites, "SessionLocal", fake_session_local)
    monkeypatch.setattr(invites.SideEffectClaimsRepo, "count_created_since", count_created_since)
    monkeypatch.setattr(invites, "run_side_effect_once", run_side_effect_once)
    monkeypatch.setattr(invites, "send_email", send_email)
    return box


@pytest.mark.asyncio
async def test_invite_emails_parent_with_prefilled_checkout_link(outbox) -> None:
    status = await send_parent_invite(
        user_id="u1",
        child_email="kid@example.com",
        parent_email="  Mum@Example.com ",
        now_utc=NOW,
    )

    assert status == SIDE_EFFECT_SENT
    message = outbox.sent[0]
    assert message.to_email == "mum@example.com"
    assert "https://flash.test/parents?child_email=kid%40example.com" in message.text
    run = outbox.runs[0]
    assert run["kind"] == PARENT_INVITE_EMAIL_KIND
    assert run["user_id"] == "u1"
    assert message.custom_args == {"kind": PARENT_INVITE_EMAIL_KIND, "subject_key": run["subject_key"]}
    assert outbox.count_queries[0]["since_utc"] == NOW - timedelta(hours=24)


@pytest.mark.asyncio
async def test_each_invite_gets_its_own_ledger_row(outbox) -> None:
    await send_parent_invite(user_id="u1", child_email="kid@example.com", parent_email="a@example.com")
    await send_parent_invite(user_id="u1", child_email="kid@example.com", parent_email="a@example.com")

    assert len(outbox.sent) == 2
    assert outbox.runs[0]["subject_key"] != outbox.runs[1]["subject_key"]


@pytest.mark.asyncio
async def test_invite_limit_is_enforced_before_sending(outbox) -> None:
    outbox.recent = 3

    with pytest.raises(InviteLimitReachedError):
        await send_parent_invite(user_id="u1", child_email="kid@example.com", parent_email="a@example.com")
    assert outbox.runs == []


@pytest.mark.asyncio
@pytest.mark.parametrize("parent_email", ["", "not-an-email", "a@b", "two words@example.com"])
async def test_invalid_parent_email_is_rejected(outbox, parent_email: str) -> None:
    with pytest.raises(InvalidParentEmailError):
        await send_parent_invite(user_id="u1", child_email="kid@example.com", parent_email=parent_email)
    assert outbox.count_queries == []


@pytest.mark.asyncio
async def test_failed_delivery_is_reported_not_raised(outbox) -> None:
    outbox.fail_send = True

    status = await send_parent_invite(user_id="u1", child_email="kid@example.com", parent_email="a@example.com")

    assert status == SIDE_EFFECT_FAILED
