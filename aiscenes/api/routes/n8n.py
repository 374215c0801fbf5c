"""n8n workflow function routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from aiscenes.api.dependencies import get_n8n_service
from aiscenes.auth.middleware import AuthenticatedUser, get_current_user
from aiscenes.n8n.service import ExecuteFunctionRequest, N8nService

router = APIRouter(prefix="/n8n", tags=["n8n"])


@router.get("/functions")
async def list_functions(
    service: N8nService = Depends(get_n8n_service),
) -> dict[str, Any]:
    """Active workflow functions ordered by name."""
    return {"data": await service.list_functions()}


@router.post("/execute")
async def execute_function(
    request: ExecuteFunctionRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    service: N8nService = Depends(get_n8n_service),
) -> dict[str, Any]:
    """
    Execute a node's workflow function.

    Pre-flight failures (ownership, binding, credits, scope) are typed
    errors. Once the webhook is called the answer is always an envelope
    with HTTP 200; the workflow outcome is in `status` / `http_status`.
    """
    return await service.execute_function(user.user_id, request)
