from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from study_access.core.config import get_settings

logger = structlog.get_logger(__name__)
PUSH_BATCH_LIMIT = 100


@dataclass(frozen=True, slots=True)
class PushMessage:
    to: str
    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)

    def as_payload(self) -> dict[str, Any]:
        return {
            "to": self.to,
            "title": self.title,
            "body": self.body,
            "data": self.data,
            "sound": "default",
        }


@dataclass(slots=True)
class PushBatchResult:
    sent: int = 0
    failed: int = 0


def chunked(items: list[PushMessage], size: int) -> list[list[PushMessage]]:
    step = max(1, size)
    return [items[index : index + step] for index in range(0, len(items), step)]


def _count_ticket_errors(payload: object, expected: int) -> int:
    if not isinstance(payload, dict):
        return 0
    tickets = payload.get("data")
    if not isinstance(tickets, list):
        return 0
    errors = sum(1 for ticket in tickets if isinstance(ticket, dict) and ticket.get("status") == "error")
    return min(errors, expected)


async def send_push_messages(messages: list[PushMessage]) -> PushBatchResult:
    result = PushBatchResult()
    if not messages:
        return result

    settings = get_settings()
    async with httpx.AsyncClient(timeout=10.0) as client:
        for batch in chunked(messages, PUSH_BATCH_LIMIT):
            try:
                response = await client.post(
                    settings.push_api_url,
                    json=[message.as_payload() for message in batch],
                    headers={"Accept": "application/json"},
                )
                response.raise_for_status()
            except httpx.HTTPError:
                logger.exception("push_batch_delivery_failed", batch_size=len(batch))
                result.failed += len(batch)
                continue

            try:
                ticket_errors = _count_ticket_errors(response.json(), len(batch))
            except ValueError:
                ticket_errors = 0
            result.failed += ticket_errors
            result.sent += len(batch) - ticket_errors

    return result
