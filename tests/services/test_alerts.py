from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import httpx
import pytest

from study_access.services import alerts


class _Response:
    def __init__(self, *, fail: bool) -> None:
        self._fail = fail

    def raise_for_status(self) -> None:
        if self._fail:
            request = httpx.Request("POST", "https://alerts.test")
            raise httpx.HTTPStatusError("failed", request=request, response=httpx.Response(500))


class _Client:
    def __init__(self, calls: list[dict[str, Any]], *, fail_urls: set[str]) -> None:
        self._calls = calls
        self._fail_urls = fail_urls

    async def __aenter__(self) -> "_Client":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None

    async def post(self, url: str, json: dict[str, object]) -> _Response:
        self._calls.append({"url": url, "json": json})
        return _Response(fail=url in self._fail_urls)


def _settings(**overrides: object) -> SimpleNamespace:
    base = {"app_env": "test", "ops_alert_webhook_url": "", "ops_alert_slack_webhook_url": ""}
    base.update(overrides)
    return SimpleNamespace(**base)


def _patch_http_client(
    monkeypatch: pytest.MonkeyPatch,
    calls: list[dict[str, Any]],
    *,
    fail_urls: set[str] | None = None,
) -> None:
    def factory(timeout: float) -> _Client:  # noqa: ARG001
        return _Client(calls, fail_urls=fail_urls or set())

    monkeypatch.setattr(alerts.httpx, "AsyncClient", factory)


@pytest.mark.asyncio
async def test_send_ops_alert_returns_false_when_no_targets_configured(monkeypatch) -> None:
    calls: list[dict[str, Any]] = []
    monkeypatch.setattr(alerts, "get_settings", lambda: _settings())
    _patch_http_client(monkeypatch, calls)

    assert await alerts.send_ops_alert(event="parent_claim_missing_billing", payload={}) is False
    assert calls == []


@pytest.mark.asyncio
async def test_critical_event_is_routed_to_slack_and_generic(monkeypatch) -> None:
    calls: list[dict[str, Any]] = []
    monkeypatch.setattr(
        alerts,
        "get_settings",
        lambda: _settings(
            ops_alert_webhook_url="https://generic.test",
            ops_alert_slack_webhook_url="https://slack.test",
        ),
    )
    _patch_http_client(monkeypatch, calls)

    delivered = await alerts.send_ops_alert(
        event="parent_claim_missing_billing",
        payload={"claim_id": "c-1"},
    )

    assert delivered is True
    assert [call["url"] for call in calls] == ["https://slack.test", "https://generic.test"]
    assert calls[0]["json"]["text"] == "[CRITICAL] parent_claim_missing_billing"
    assert calls[1]["json"]["payload"] == {"claim_id": "c-1"}
    assert calls[1]["json"]["severity"] == "critical"


@pytest.mark.asyncio
async def test_unknown_event_uses_generic_channel_only(monkeypatch) -> None:
    calls: list[dict[str, Any]] = []
    monkeypatch.setattr(
        alerts,
        "get_settings",
        lambda: _settings(
            ops_alert_webhook_url="https://generic.test",
            ops_alert_slack_webhook_url="https://slack.test",
        ),
    )
    _patch_http_client(monkeypatch, calls)

    assert await alerts.send_ops_alert(event="something_else", payload={}) is True
    assert [call["url"] for call in calls] == ["https://generic.test"]


@pytest.mark.asyncio
async def test_failed_delivery_on_every_channel_returns_false(monkeypatch) -> None:
    calls: list[dict[str, Any]] = []
    monkeypatch.setattr(
        alerts,
        "get_settings",
        lambda: _settings(ops_alert_webhook_url="https://generic.test"),
    )
    _patch_http_client(monkeypatch, calls, fail_urls={"https://generic.test"})

    assert await alerts.send_ops_alert(event="trial_expiry_push_failed", payload={}) is False
    assert len(calls) == 1
