from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import httpx
import pytest

from study_access.services import email_delivery
from study_access.services.email_delivery import EmailDeliveryError, EmailMessage, send_email


def _settings(**overrides: object) -> SimpleNamespace:
    base = {
        "sendgrid_api_key": "sg-key",
        "sendgrid_api_url": "https://mail.test/send",
        "email_from_address": "hello@flash.test",
        "email_from_name": "Flash",
    }
    base.update(overrides)
    return SimpleNamespace(**base)


class _Client:
    def __init__(self, response: httpx.Response, calls: list[dict[str, Any]]) -> None:
        self._response = response
        self._calls = calls

    async def __aenter__(self) -> "_Client":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None

    async def post(self, url: str, json: dict[str, Any], headers: dict[str, str]) -> httpx.Response:
        self._calls.append({"url": url, "json": json, "headers": headers})
        return self._response


def _patch(monkeypatch, response: httpx.Response, **settings: object) -> list[dict[str, Any]]:
    calls: list[dict[str, Any]] = []
    monkeypatch.setattr(email_delivery, "get_settings", lambda: _settings(**settings))
    monkeypatch.setattr(email_delivery.httpx, "AsyncClient", lambda timeout: _Client(response, calls))
    return calls


@pytest.mark.asyncio
async def test_send_email_posts_sendgrid_body(monkeypatch) -> None:
    calls = _patch(monkeypatch, httpx.Response(202))

    await send_email(EmailMessage(to_email="kid@example.com", subject="Hi", text="plain", html="<p>x</p>"))

    assert calls[0]["url"] == "https://mail.test/send"
    assert calls[0]["headers"]["Authorization"] == "Bearer sg-key"
    body = calls[0]["json"]
    assert body["personalizations"] == [{"to": [{"email": "kid@example.com"}]}]
    assert [item["type"] for item in body["content"]] == ["text/plain", "text/html"]


@pytest.mark.asyncio
async def test_send_email_raises_on_rejected_request(monkeypatch) -> None:
    _patch(monkeypatch, httpx.Response(400, text="bad"))

    with pytest.raises(EmailDeliveryError):
        await send_email(EmailMessage(to_email="kid@example.com", subject="Hi", text="plain"))


@pytest.mark.asyncio
async def test_send_email_requires_api_key(monkeypatch) -> None:
    calls = _patch(monkeypatch, httpx.Response(202), sendgrid_api_key="")

    with pytest.raises(EmailDeliveryError):
        await send_email(EmailMessage(to_email="kid@example.com", subject="Hi", text="plain"))
    assert calls == []


@pytest.mark.asyncio
async def test_send_email_passes_delivery_tags_as_custom_args(monkeypatch) -> None:
    calls = _patch(monkeypatch, httpx.Response(202))

    await send_email(
        EmailMessage(
            to_email="mum@example.com",
            subject="Hi",
            text="plain",
            custom_args={"kind": "parent_invite_email", "subject_key": "abc"},
        )
    )

    assert calls[0]["json"]["personalizations"] == [
        {
            "to": [{"email": "mum@example.com"}],
            "custom_args": {"kind": "parent_invite_email", "subject_key": "abc"},
        }
    ]
