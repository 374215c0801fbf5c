"""
Hybrid address resolver endpoints.

One operation endpoint mirrors the resolver service:
- resolve / set / exists / list_children / collection for a single address
- resolve_many / set_many for batches
- push_payload for interpolated writes
"""

from __future__ import annotations

from typing import Any, Literal

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from aiscenes.api.dependencies import get_hybrid_service, get_job_access
from aiscenes.kernel.errors import ValidationError
from aiscenes.kernel.serialization import to_jsonable
from aiscenes.ltree.addresses import validate_address
from aiscenes.ltree.service import HybridAddrService
from aiscenes.nodes.access import JobAccess

logger = structlog.get_logger()

router = APIRouter(prefix="/ltree", tags=["LTree"])

Operation = Literal[
    "resolve",
    "set",
    "exists",
    "list_children",
    "collection",
    "resolve_many",
    "set_many",
    "push_payload",
]

_NEEDS_ADDRESS = {"resolve", "set", "exists", "list_children", "collection", "push_payload"}


class AddressWrite(BaseModel):
    address: str
    value: Any = None


class LtreeOperationRequest(BaseModel):
    operation: Operation
    job_id: str
    address: str | None = None
    value: Any = None
    addresses: list[str] = Field(default_factory=list)
    writes: list[AddressWrite] = Field(default_factory=list)
    payload: dict[str, Any] = Field(default_factory=dict)
    context: dict[str, Any] = Field(default_factory=dict)


class ValidateAddressRequest(BaseModel):
    address: str


@router.post("")
async def run_operation(
    request: LtreeOperationRequest,
    service: HybridAddrService = Depends(get_hybrid_service),
    access: JobAccess = Depends(get_job_access),
) -> dict[str, Any]:
    """Run one resolver operation against a job's nodes."""
    job_id = request.job_id
    address = request.address or ""
    if request.operation in _NEEDS_ADDRESS and not address:
        raise ValidationError(
            message=f"address is required for {request.operation}",
            code="ltree.address_required",
            status_code=400,
        )

    await access.require_job(job_id)
    logger.debug("LTree operation", operation=request.operation, job_id=job_id, address=address)

    if request.operation == "resolve":
        return {"success": True, "data": await service.get_item_at(job_id, address)}

    if request.operation == "set":
        return {"success": True, "data": await service.set_item_at(job_id, address, request.value)}

    if request.operation == "exists":
        return {"success": True, "exists": await service.address_exists(job_id, address)}

    if request.operation == "list_children":
        children = await service.list_children(job_id, address)
        return {"success": True, "data": to_jsonable([child.to_dict() for child in children])}

    if request.operation == "collection":
        return {"success": True, "data": await service.get_collection_instances(job_id, address)}

    if request.operation == "resolve_many":
        return {"success": True, "data": await service.resolve_many(job_id, request.addresses)}

    if request.operation == "set_many":
        writes = [(write.address, write.value) for write in request.writes]
        return {"success": True, "data": await service.set_many(job_id, writes)}

    data = await service.push_payload(job_id, address, request.payload, request.context)
    return {"success": True, "data": data}


@router.post("/validate")
async def validate(request: ValidateAddressRequest) -> dict[str, Any]:
    """Check an address without touching storage."""
    result = validate_address(request.address)
    parsed = None
    if result.parsed is not None:
        parsed = {"ltree_path": result.parsed.ltree_path, "json_keys": result.parsed.json_keys}
    return {"is_valid": result.is_valid, "error": result.error, "parsed": parsed}
