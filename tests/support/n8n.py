from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import httpx

from aiscenes.n8n.client import N8nWebhookClient
from aiscenes.n8n.store import ExecutionStore, N8nFunction


@dataclass
class FakeExecutionStore(ExecutionStore):
    """In-memory fake for ExecutionStore."""

    jobs: dict[str, dict[str, Any]] = field(default_factory=dict)
    functions: dict[str, N8nFunction] = field(default_factory=dict)
    credits: dict[str, int] = field(default_factory=dict)
    consumed: list[dict[str, Any]] = field(default_factory=list)
    consume_error: Exception | None = None

    def add_function(self, **kwargs: Any) -> N8nFunction:
        function = N8nFunction(**kwargs)
        self.functions[function.id] = function
        return function

    async def get_job(self, job_id: str) -> dict[str, Any] | None:
        return self.jobs.get(job_id)

    async def list_active_functions(self) -> list[N8nFunction]:
        return [fn for fn in self.functions.values() if fn.active]

    async def get_function(self, function_id: str) -> N8nFunction | None:
        return self.functions.get(function_id)

    async def find_active_function(self, ref: str) -> N8nFunction | None:
        by_id = self.functions.get(ref)
        if by_id is not None and by_id.active:
            return by_id
        for fn in self.functions.values():
            if fn.name == ref and fn.active:
                return fn
        return None

    async def get_user_credits(self, user_id: str) -> int | None:
        return self.credits.get(user_id)

    async def consume_credits(
        self,
        *,
        user_id: str,
        credits: int,
        description: str,
        job_id: str,
        function_id: str,
    ) -> bool:
        if self.consume_error is not None:
            raise self.consume_error
        balance = self.credits.get(user_id, 0)
        if balance < credits:
            return False
        self.credits[user_id] = balance - credits
        self.consumed.append(
            {
                "user_id": user_id,
                "credits": credits,
                "description": description,
                "job_id": job_id,
                "function_id": function_id,
            }
        )
        return True


@dataclass
class WebhookRecorder:
    """httpx.MockTransport handler that records requests and replays canned replies.

    `replies` are consumed in order; the last one repeats. A reply may be an
    `httpx.Response` or an exception instance to raise.
    """

    replies: list[Any] = field(default_factory=list)
    requests: list[httpx.Request] = field(default_factory=list)

    def reply_json(self, body: Any, status_code: int = 200) -> None:
        self.replies.append(httpx.Response(status_code, json=body))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.replies:
            return httpx.Response(200, json={"status": "ok"})
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply

    @property
    def payloads(self) -> list[Any]:
        return [json.loads(request.content) for request in self.requests]

    def client(self, **kwargs: Any) -> N8nWebhookClient:
        return N8nWebhookClient(transport=httpx.MockTransport(self), **kwargs)
