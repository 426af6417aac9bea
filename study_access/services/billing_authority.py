from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import httpx
import structlog

from study_access.core.config import Settings, get_settings
from study_access.economy.errors import ProviderError

logger = structlog.get_logger(__name__)


class BillingAuthorityError(ProviderError):
    pass


@dataclass(frozen=True, slots=True)
class ActiveGrant:
    entitlement_id: str
    # None means the grant never expires
    expires_at: datetime | None


def _ms_to_datetime(value: object) -> datetime | None:
    if value is None:
        return None
    try:
        millis = int(value)
    except (TypeError, ValueError):
        return None
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


def _datetime_to_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


class BillingAuthorityClient:
    """REST client for the external entitlement authority (RevenueCat v2 shape)."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        project_id: str,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._project_id = project_id
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "BillingAuthorityClient":
        resolved = settings or get_settings()
        return cls(
            base_url=resolved.billing_api_base_url,
            api_key=resolved.billing_api_key,
            project_id=resolved.billing_project_id,
            timeout_seconds=resolved.billing_api_timeout_seconds,
        )

    def _customer_path(self, user_id: str) -> str:
        return f"/projects/{quote(self._project_id, safe='')}/customers/{quote(user_id, safe='')}"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        body: dict[str, Any] | None = None,
        allow_not_found: bool = False,
    ) -> dict[str, Any] | None:
        if not self._api_key or not self._project_id:
            raise BillingAuthorityError("billing authority is not configured")

        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout_seconds,
                headers={"Authorization": f"Bearer {self._api_key}"},
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, json=body)
        except httpx.HTTPError as exc:
            logger.warning(
                "billing_authority_transport_failed",
                method=method,
                error_type=type(exc).__name__,
            )
            raise BillingAuthorityError(f"billing authority request failed: {type(exc).__name__}") from exc

        if allow_not_found and response.status_code == 404:
            return None
        if response.status_code >= 400:
            logger.warning(
                "billing_authority_request_rejected",
                method=method,
                status_code=response.status_code,
            )
            raise BillingAuthorityError(f"billing authority returned {response.status_code}")

        if not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise BillingAuthorityError("billing authority returned invalid JSON") from exc
        return payload if isinstance(payload, dict) else {}

    async def get_active_grant(self, *, user_id: str, entitlement_id: str) -> ActiveGrant | None:
        payload = await self._request(
            "GET",
            f"{self._customer_path(user_id)}/active_entitlements",
            allow_not_found=True,
        )
        if payload is None:
            return None

        items = payload.get("items")
        if not isinstance(items, list):
            return None
        for item in items:
            if not isinstance(item, dict) or item.get("entitlement_id") != entitlement_id:
                continue
            return ActiveGrant(
                entitlement_id=entitlement_id,
                expires_at=_ms_to_datetime(item.get("expires_at")),
            )
        return None

    async def grant(self, *, user_id: str, entitlement_id: str, expires_at: datetime) -> None:
        await self._request(
            "POST",
            f"{self._customer_path(user_id)}/actions/grant_entitlement",
            body={"entitlement_id": entitlement_id, "expires_at": _datetime_to_ms(expires_at)},
        )

    async def revoke(self, *, user_id: str, entitlement_id: str) -> None:
        await self._request(
            "POST",
            f"{self._customer_path(user_id)}/actions/revoke_granted_entitlement",
            body={"entitlement_id": entitlement_id},
        )
