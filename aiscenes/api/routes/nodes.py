"""
Node API routes.

- list and fetch nodes (with ancestors / children / descendants)
- dependency staleness checks
- template materialization
- content validation through the node's validate function
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Header, Query, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from aiscenes.api.dependencies import get_job_access, get_n8n_service, get_node_store
from aiscenes.ltree.store import NodeStore
from aiscenes.n8n.service import N8nService
from aiscenes.nodes.access import JobAccess
from aiscenes.nodes.dependencies import check_dependencies
from aiscenes.nodes.materialize import materialize_collections
from aiscenes.nodes.queries import get_node_view, list_nodes_view

logger = structlog.get_logger()

router = APIRouter(prefix="/nodes", tags=["Nodes"])


class DependencyCheckRequest(BaseModel):
    job_id: UUID


class MaterializeRequest(BaseModel):
    job_id: UUID
    node_ids: list[UUID] = Field(min_length=1)


class ValidateContentRequest(BaseModel):
    job_id: UUID
    field_values: dict[str, Any] = Field(default_factory=dict)


def _split_types(types: str | None) -> list[str] | None:
    if not types:
        return None
    values = [value.strip() for value in types.split(",") if value.strip()]
    return values or None


@router.get("")
async def list_nodes(
    job_id: UUID | None = Query(None, description="Filter by job"),
    node_type: str | None = Query(None, description="Filter by node_type"),
    search: str | None = Query(None, description="Substring match on addr or node_type"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    store: NodeStore = Depends(get_node_store),
    access: JobAccess = Depends(get_job_access),
) -> dict[str, Any]:
    """List nodes of the caller's jobs."""
    if job_id:
        await access.require_job(str(job_id))
    return await list_nodes_view(
        store,
        user_id=access.user_id,
        job_id=str(job_id) if job_id else None,
        node_type=node_type,
        search=search,
        limit=limit,
        offset=offset,
    )


@router.post("/materialize")
async def materialize(
    request: MaterializeRequest,
    store: NodeStore = Depends(get_node_store),
    access: JobAccess = Depends(get_job_access),
) -> dict[str, Any]:
    """Expand form and group templates of the given job nodes in place."""
    await access.require_job(str(request.job_id))
    return await materialize_collections(
        store,
        str(request.job_id),
        [str(node_id) for node_id in request.node_ids],
    )


@router.get("/{node_id}")
async def get_node(
    node_id: UUID,
    ancestors: bool = Query(False),
    children: bool = Query(False),
    descendants: bool = Query(False),
    depth: int | None = Query(None, ge=1),
    types: str | None = Query(None, description="Comma-separated node_type filter"),
    if_none_match: str | None = Header(None),
    store: NodeStore = Depends(get_node_store),
    access: JobAccess = Depends(get_job_access),
) -> Response:
    """
    Fetch a node and optionally its relatives.

    The response carries a weak ETag; a matching `If-None-Match` yields 304.
    """
    await access.require_node(str(node_id))
    view = await get_node_view(
        store,
        str(node_id),
        ancestors=ancestors,
        children=children,
        descendants=descendants,
        depth=depth,
        types=_split_types(types),
    )
    etag = view["meta"]["etag"]
    if if_none_match and if_none_match == etag:
        return Response(status_code=304, headers={"ETag": etag})
    return JSONResponse(content=view, headers={"ETag": etag})


@router.post("/{node_id}/dependencies")
async def node_dependencies(
    node_id: UUID,
    request: DependencyCheckRequest,
    store: NodeStore = Depends(get_node_store),
    access: JobAccess = Depends(get_job_access),
) -> dict[str, Any]:
    await access.require_job(str(request.job_id))
    return await check_dependencies(store, str(node_id), str(request.job_id))


@router.post("/{node_id}/validate")
async def validate_content(
    node_id: UUID,
    request: ValidateContentRequest,
    service: N8nService = Depends(get_n8n_service),
    access: JobAccess = Depends(get_job_access),
) -> dict[str, Any]:
    await access.require_job(str(request.job_id))
    return await service.validate_node_content(str(node_id), str(request.job_id), request.field_values)
