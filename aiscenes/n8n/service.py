"""
Workflow function execution.

`execute_function` runs the ownership, binding and credit checks for a node
action, calls the function's webhook and answers with an envelope. Credits
are only consumed once the workflow reports success.
"""

from __future__ import annotations

import uuid
from typing import Any, Literal

import httpx
import structlog
from prometheus_client import Counter
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from aiscenes.config import get_settings
from aiscenes.kernel.errors import (
    ForbiddenError,
    NotFoundError,
    PaymentRequiredError,
    UpstreamError,
    ValidationError,
)
from aiscenes.kernel.time import utc_now
from aiscenes.ltree.addresses import is_under, node_part
from aiscenes.ltree.document import field_address
from aiscenes.ltree.store import NodeNotFoundError, NodeRecord, NodeStore
from aiscenes.n8n.client import N8nWebhookClient
from aiscenes.n8n.envelope import normalize_response, timeout_envelope
from aiscenes.n8n.store import ExecutionStore, N8nFunction

logger = structlog.get_logger()

n8n_executions_total = Counter(
    "aiscenes_n8n_executions_total",
    "Workflow function executions by kind and envelope status",
    ["kind", "status"],
)

FUNCTION_KINDS = ("generate", "validate")


class FieldWrite(BaseModel):
    address: str
    value: Any = None


class ExecutePayload(BaseModel):
    fields: list[FieldWrite] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)


class ExecuteFunctionRequest(BaseModel):
    """Execution request; accepts snake_case and camelCase keys."""

    model_config = ConfigDict(populate_by_name=True)

    job_id: str | None = Field(default=None, validation_alias=AliasChoices("job_id", "jobId"))
    node_id: str | None = Field(default=None, validation_alias=AliasChoices("node_id", "nodeId"))
    function_id: str | None = Field(
        default=None, validation_alias=AliasChoices("function_id", "functionId")
    )
    idempotency_key: str | None = Field(
        default=None, validation_alias=AliasChoices("idempotency_key", "idempotencyKey")
    )
    mode: Literal["generate", "validate"] = "generate"
    context: dict[str, Any] = Field(default_factory=dict)
    payload: ExecutePayload = Field(default_factory=ExecutePayload)


def _envelope_env() -> str:
    environment = get_settings().environment
    return environment if environment in ("dev", "staging", "prod") else "dev"


class N8nService:
    def __init__(
        self,
        store: ExecutionStore,
        node_store: NodeStore,
        client: N8nWebhookClient | None = None,
    ):
        self.store = store
        self.node_store = node_store
        self.client = client or N8nWebhookClient()

    async def list_functions(self) -> list[dict[str, Any]]:
        functions = await self.store.list_active_functions()
        return [fn.public_dict() for fn in sorted(functions, key=lambda fn: fn.name)]

    # -------------------------------------------------------------------------
    # Checks
    # -------------------------------------------------------------------------

    async def _authorize_job(self, user_id: str, job_id: str) -> None:
        job = await self.store.get_job(job_id)
        if job is None:
            raise NotFoundError(message="Job not found", code="n8n.job_not_found", meta={"job_id": job_id})
        if job.get("user_id") != user_id:
            raise ForbiddenError(message="Job not owned by user", code="n8n.job_not_owned", meta={"job_id": job_id})

    async def _load_node(self, node_id: str, job_id: str) -> NodeRecord:
        node = await self.node_store.get_node(node_id)
        if node is None:
            raise NodeNotFoundError(node_id=node_id)
        if node.job_id != job_id:
            raise ValidationError(
                message="Node does not belong to job",
                code="n8n.node_job_mismatch",
                meta={"node_id": node_id, "job_id": job_id},
                status_code=400,
            )
        return node

    async def _resolve_function(self, function_ref: str, node: NodeRecord) -> N8nFunction:
        function = await self.store.find_active_function(function_ref)
        if function is None:
            raise ValidationError(
                message="Could not find an active n8n function by id or name",
                code="n8n.function_not_found",
                meta={"function_id": function_ref},
                status_code=400,
            )
        if function.kind not in FUNCTION_KINDS:
            raise ValidationError(
                message=f"Unsupported function kind: {function.kind}",
                code="n8n.invalid_function_kind",
                meta={"function_id": function.id, "kind": function.kind},
                status_code=400,
            )

        configured = node.generate_n8n_id if function.kind == "generate" else node.validate_n8n_id
        if configured not in (function_ref, function.id):
            raise ValidationError(
                message=f"Function is not configured for {function.kind} on this node",
                code=f"n8n.function_not_configured_for_{function.kind}",
                meta={"function_id": function.id, "node_id": node.id},
                status_code=400,
            )
        return function

    async def _check_credits(self, user_id: str, function: N8nFunction, *, job_id: str, node_id: str) -> int:
        available = await self.store.get_user_credits(user_id)
        if available is None:
            raise NotFoundError(
                message="User credits not found",
                code="billing.credits_not_found",
                meta={"user_id": user_id},
            )
        required = function.price
        if available < required:
            raise PaymentRequiredError(
                message="Not enough credits to run this action.",
                code="billing.insufficient_credits",
                meta={
                    "function_id": function.id,
                    "job_id": job_id,
                    "node_id": node_id,
                    "required": required,
                    "available": available,
                    "shortfall": max(required - available, 0),
                    "currency": "credits",
                },
            )
        return required

    @staticmethod
    def _check_scope(fields: list[FieldWrite], node_addr: str) -> None:
        for field in fields:
            root = node_part(field.address)
            if root and not is_under(root, node_addr):
                raise ValidationError(
                    message=f"Address {root} is not under {node_addr}",
                    code="n8n.address_out_of_scope",
                    meta={"address": field.address, "node_addr": node_addr},
                    status_code=400,
                )

    # -------------------------------------------------------------------------
    # Webhook
    # -------------------------------------------------------------------------

    async def _call_webhook(self, function: N8nFunction, payload: dict[str, Any]) -> dict[str, Any]:
        request_id = payload["request_id"]
        started_at = utc_now()
        env = _envelope_env()

        if not function.webhook_url:
            raise UpstreamError(
                message="Function has no webhook configured",
                code="n8n.webhook_not_configured",
                meta={"function_id": function.id},
            )

        try:
            reply = await self.client.post(function.webhook_url, payload, operation=f"n8n.{function.kind}")
        except httpx.TimeoutException:
            logger.warning("Webhook timed out", request_id=request_id, function_id=function.id)
            return timeout_envelope(
                request_id,
                started_at,
                timeout_seconds=self.client.timeout_seconds,
                env=env,
            )
        except httpx.HTTPError as exc:
            logger.error("Webhook request failed", request_id=request_id, function_id=function.id, error=str(exc))
            raise UpstreamError(
                message="Webhook request failed",
                code="n8n.webhook_unreachable",
                meta={"function_id": function.id},
            ) from exc

        return normalize_response(
            request_id,
            started_at,
            status_code=reply.status_code,
            body=reply.body,
            env=env,
        )

    async def _consume(self, user_id: str, function: N8nFunction, job_id: str, required: int) -> int:
        try:
            consumed = await self.store.consume_credits(
                user_id=user_id,
                credits=required,
                description=f"{function.kind} - {function.name}",
                job_id=job_id,
                function_id=function.id,
            )
        except Exception as exc:
            # The workflow already ran; the envelope is returned either way.
            logger.error("Failed to consume credits", user_id=user_id, job_id=job_id, error=str(exc))
            return 0
        if not consumed:
            logger.warning("consume_credits returned false", user_id=user_id, job_id=job_id, credits=required)
            return 0
        return required

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def execute_function(self, user_id: str, request: ExecuteFunctionRequest) -> dict[str, Any]:
        if not request.job_id or not request.node_id or not request.function_id:
            raise ValidationError(
                message="job_id, node_id, and function_id are required",
                code="n8n.missing_params",
                meta={
                    "received": {
                        "job_id": request.job_id,
                        "node_id": request.node_id,
                        "function_id": request.function_id,
                    }
                },
                status_code=400,
            )

        job_id, node_id = request.job_id, request.node_id
        request_id = str(uuid.uuid4())
        log = logger.bind(request_id=request_id, job_id=job_id, node_id=node_id)
        if request.idempotency_key:
            log.info("Idempotency key received", idempotency_key=request.idempotency_key)

        await self._authorize_job(user_id, job_id)
        node = await self._load_node(node_id, job_id)
        function = await self._resolve_function(request.function_id, node)
        required = await self._check_credits(user_id, function, job_id=job_id, node_id=node_id)
        fields = request.payload.fields
        self._check_scope(fields, node.addr)

        webhook_payload: dict[str, Any] = {
            "request_id": request_id,
            "job": {"id": job_id},
            "node": {"id": node_id, "addr": node.addr, "type": node.node_type},
            "function": {"id": function.id, "kind": function.kind},
            "fields": [field.model_dump() for field in fields],
            "context": {**request.payload.context, **request.context},
            "mode": request.mode,
        }
        if request.idempotency_key:
            webhook_payload["idempotency_key"] = request.idempotency_key

        log.info("Calling workflow webhook", function_id=function.id, kind=function.kind)
        envelope = await self._call_webhook(function, webhook_payload)

        status = envelope.get("status")
        credits_consumed = 0
        if required > 0 and status in ("success", "partial_success"):
            credits_consumed = await self._consume(user_id, function, job_id, required)

        if credits_consumed > 0 and isinstance(envelope.get("meta"), dict):
            envelope["meta"]["credits_consumed"] = credits_consumed

        n8n_executions_total.labels(kind=function.kind, status=str(status)).inc()
        log.info("Workflow execution finished", status=status, credits_consumed=credits_consumed)
        return envelope

    async def validate_node_content(
        self,
        node_id: str,
        job_id: str,
        field_values: dict[str, Any],
    ) -> dict[str, Any]:
        node = await self._load_node(node_id, job_id)
        if not node.validate_n8n_id:
            return {"valid": True, "message": "No validation configured for this node"}

        function = await self.store.get_function(node.validate_n8n_id)
        if function is None:
            raise NotFoundError(
                message="Validation function not found",
                code="n8n.function_not_found",
                meta={"function_id": node.validate_n8n_id},
            )

        fields = [
            {"address": field_address(node.addr, node.content, ref) or ref, "value": value}
            for ref, value in field_values.items()
        ]
        payload = {
            "request_id": str(uuid.uuid4()),
            "job": {"id": job_id},
            "node": {"id": node.id, "addr": node.addr, "type": node.node_type},
            "function": {"id": function.id, "kind": function.kind},
            "fields": fields,
            "context": {},
            "mode": "validate",
        }
        envelope = await self._call_webhook(function, payload)
        n8n_executions_total.labels(kind="validate", status=str(envelope.get("status"))).inc()

        if envelope.get("status") != "success":
            error = envelope.get("error") or {}
            message = error.get("message")
            return {
                "valid": False,
                "error": message.get("en") if isinstance(message, dict) else message,
            }

        data = envelope.get("data")
        parsed = data.get("parsed") if isinstance(data, dict) else None
        if not isinstance(parsed, dict):
            parsed = {}
        result: dict[str, Any] = {"valid": bool(parsed.get("valid"))}
        if parsed.get("suggestions"):
            result["suggestions"] = parsed["suggestions"]
        return result
