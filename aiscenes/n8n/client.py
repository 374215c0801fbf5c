"""Webhook client for n8n workflows."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from aiscenes.config import get_settings
from aiscenes.n8n.http import request_with_retry

logger = structlog.get_logger()


@dataclass
class WebhookReply:
    status_code: int
    body: Any

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class N8nWebhookClient:
    """POSTs JSON payloads to workflow webhooks.

    Timeouts surface as `httpx.TimeoutException`; callers turn them into
    envelopes. A body that is not JSON is returned as ``{"raw": text}``.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float | None = None,
        max_attempts: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.n8n_timeout_seconds
        self.max_attempts = max_attempts if max_attempts is not None else settings.n8n_max_attempts
        self._transport = transport

    async def post(self, url: str, payload: dict[str, Any], *, operation: str = "n8n.webhook") -> WebhookReply:
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
            response = await request_with_retry(
                client,
                "POST",
                url,
                json=payload,
                max_attempts=self.max_attempts,
                operation=operation,
            )

        try:
            body = response.json()
        except ValueError:
            logger.warning("Webhook returned non-JSON body", url=url, status_code=response.status_code)
            body = {"raw": response.text}

        logger.info("Webhook responded", url=url, status_code=response.status_code, operation=operation)
        return WebhookReply(status_code=response.status_code, body=body)
