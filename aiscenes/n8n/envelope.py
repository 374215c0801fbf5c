"""
Response envelopes for workflow executions.

Every execution answers with the same shape whether the workflow succeeded,
failed or never answered:

    {request_id, timestamp, http_status, status, error?, data?, warnings?, meta}

Workflows that already reply with an envelope are passed through after light
normalisation; anything else is wrapped.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from aiscenes.kernel.time import isoformat_z, utc_now

EnvelopeStatus = Literal["success", "error", "partial_success"]
ErrorType = Literal[
    "validation",
    "authentication",
    "authorization",
    "credits",
    "webhook_connectivity",
    "workflow_execution",
    "upstream_http",
    "rate_limited",
    "parsing",
    "internal",
]

_DEFAULT_HTTP_STATUS = {"success": 200, "error": 500, "partial_success": 207}


def bi(message: Any, en_default: str, ar_default: str | None = None) -> dict[str, str]:
    """Bilingual ``{en, ar}`` message; already-bilingual dicts pass through."""
    if isinstance(message, dict) and "en" in message and "ar" in message:
        return message
    text = message if isinstance(message, str) else en_default
    return {"en": text, "ar": ar_default if ar_default is not None else text}


def is_envelope(response: Any) -> bool:
    return (
        isinstance(response, dict)
        and "status" in response
        and ("http_status" in response or "data" in response or "error" in response)
    )


def create_envelope(
    request_id: str,
    started_at: datetime,
    status: EnvelopeStatus,
    *,
    env: str = "dev",
    data: Any = None,
    error_type: ErrorType | None = None,
    error_code: str | None = None,
    error_message: Any = None,
    error_details: Any = None,
    retry_possible: bool = False,
    http_status: int | None = None,
    credits_consumed: int | None = None,
    warnings: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    finished_at = utc_now()
    envelope: dict[str, Any] = {
        "request_id": request_id,
        "timestamp": isoformat_z(finished_at),
        "http_status": http_status or _DEFAULT_HTTP_STATUS[status],
        "status": status,
    }
    if error_code is not None:
        envelope["error"] = {
            "type": error_type or "internal",
            "code": error_code,
            "message": error_message,
            "details": error_details,
            "retry_possible": retry_possible,
        }
    if data is not None:
        envelope["data"] = {"raw_response": data, "parsed": data}
    if warnings:
        envelope["warnings"] = warnings

    meta: dict[str, Any] = {
        "env": env,
        "started_at": isoformat_z(started_at),
        "finished_at": isoformat_z(finished_at),
        "duration_ms": int((finished_at - started_at).total_seconds() * 1000),
    }
    if credits_consumed is not None:
        meta["credits_consumed"] = credits_consumed
    envelope["meta"] = meta
    return envelope


def _coerce_http_status(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return value
    return value


def normalize_response(
    request_id: str,
    started_at: datetime,
    *,
    status_code: int,
    body: Any,
    env: str = "dev",
) -> dict[str, Any]:
    """Turn a webhook reply (already decoded) into an envelope."""
    if is_envelope(body):
        envelope = dict(body)
        if "http_status" in envelope:
            envelope["http_status"] = _coerce_http_status(envelope["http_status"])
        error = envelope.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            envelope["error"] = {**error, "message": bi(error["message"], error["message"])}
        envelope["request_id"] = request_id
        return envelope

    ok = 200 <= status_code < 300
    succeeded = ok and isinstance(body, dict) and (
        body.get("status") in ("ok", "success") or body.get("success") is True
    )
    if succeeded:
        return create_envelope(request_id, started_at, "success", env=env, data=body)

    return create_envelope(
        request_id,
        started_at,
        "error",
        env=env,
        error_type="workflow_execution",
        error_code="N8N_WEBHOOK_FAILED",
        error_message=bi(None, "Webhook execution failed", "فشل تنفيذ webhook"),
        error_details={"status": status_code, "response": body},
        retry_possible=False,
        http_status=status_code,
    )


def timeout_envelope(request_id: str, started_at: datetime, *, timeout_seconds: float, env: str = "dev") -> dict[str, Any]:
    return create_envelope(
        request_id,
        started_at,
        "error",
        env=env,
        error_type="webhook_connectivity",
        error_code="N8N_WEBHOOK_TIMEOUT",
        error_message=bi(None, "Webhook request timed out", "انتهت مهلة طلب webhook"),
        error_details={"timeout_ms": int(timeout_seconds * 1000)},
        retry_possible=True,
        http_status=504,
    )
