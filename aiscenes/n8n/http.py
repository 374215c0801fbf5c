"""
Outbound HTTP helpers.

Retry with backoff for transient upstream statuses. Workflow webhooks are not
idempotent, so callers opt into more than one attempt explicitly.
"""

from __future__ import annotations

import asyncio
import random
from typing import Iterable

import httpx
import structlog
from prometheus_client import Counter

logger = structlog.get_logger()

http_retries_total = Counter(
    "aiscenes_http_retries_total",
    "Outbound HTTP retries by operation and reason",
    ["operation", "reason", "status_code"],
)

RETRY_STATUSES = {429, 502, 503, 504}


def should_retry(status_code: int) -> bool:
    return status_code in RETRY_STATUSES


def _backoff(attempt: int, base_backoff: float, max_backoff: float) -> float:
    delay = min(max_backoff, base_backoff * (2 ** (attempt - 1)))
    return delay + random.uniform(0, delay / 2)


async def request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    max_attempts: int = 1,
    retry_statuses: Iterable[int] | None = None,
    base_backoff: float = 0.5,
    max_backoff: float = 8.0,
    operation: str = "request",
    **kwargs,
) -> httpx.Response:
    """
    Make an HTTP request with exponential backoff + jitter.

    Timeouts and network errors are re-raised once attempts are exhausted.
    """
    retry_statuses = set(retry_statuses or RETRY_STATUSES)

    attempt = 0
    while True:
        attempt += 1
        try:
            response = await client.request(method, url, **kwargs)
        except (httpx.TimeoutException, httpx.NetworkError) as e:
            if attempt >= max_attempts:
                raise
            delay = _backoff(attempt, base_backoff, max_backoff)
            http_retries_total.labels(operation=operation, reason="network", status_code="0").inc()
            logger.warning(
                "Retrying request due to network error",
                url=url,
                attempt=attempt,
                delay=delay,
                error=str(e),
            )
            await asyncio.sleep(delay)
            continue

        if response.status_code in retry_statuses and attempt < max_attempts:
            retry_after = response.headers.get("Retry-After")
            if retry_after:
                try:
                    delay = float(retry_after)
                except ValueError:
                    delay = base_backoff
            else:
                delay = _backoff(attempt, base_backoff, max_backoff)

            http_retries_total.labels(
                operation=operation,
                reason="status",
                status_code=str(response.status_code),
            ).inc()
            logger.warning(
                "Retrying request due to status",
                status_code=response.status_code,
                url=url,
                attempt=attempt,
                delay=delay,
            )
            await asyncio.sleep(delay)
            continue

        return response
