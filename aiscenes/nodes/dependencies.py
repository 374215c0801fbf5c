"""Dependency staleness for generated nodes."""

from __future__ import annotations

from typing import Any

import structlog

from aiscenes.kernel.errors import ValidationError
from aiscenes.kernel.time import isoformat_z
from aiscenes.ltree.addresses import NODE_ADDR_RE, node_part
from aiscenes.ltree.store import NodeNotFoundError, NodeStore

logger = structlog.get_logger()

NOT_FOUND = "NOT_FOUND"


def _dependency_path(dep: Any) -> tuple[str | None, bool]:
    if isinstance(dep, str):
        return dep, False
    if isinstance(dep, dict):
        path = dep.get("path")
        return (str(path) if path else None), bool(dep.get("optional"))
    return None, False


async def check_dependencies(store: NodeStore, node_id: str, job_id: str) -> dict[str, Any]:
    """Report dependencies updated after the node itself.

    A dependency is either an addr string or ``{"path": addr, "optional": bool}``.
    Hybrid addresses are checked by their node part. A missing or malformed
    required dependency is reported stale with ``NOT_FOUND``; missing optional
    ones are skipped.
    """
    node = await store.get_node(node_id)
    if node is None:
        raise NodeNotFoundError(node_id=node_id)
    if node.job_id != job_id:
        raise ValidationError(
            message=f"Node {node_id} does not belong to job {job_id}",
            code="nodes.job_mismatch",
            meta={"node_id": node_id, "job_id": job_id},
            status_code=400,
        )

    stale: list[dict[str, Any]] = []
    for dep in node.dependencies or []:
        dep_path, optional = _dependency_path(dep)
        if not dep_path:
            logger.warning("Skipping malformed dependency", node_id=node_id, dependency=dep)
            continue

        addr = node_part(dep_path)
        dep_node = await store.find_node(job_id, addr) if NODE_ADDR_RE.fullmatch(addr) else None
        if dep_node is None:
            if optional:
                logger.debug("Optional dependency missing", node_id=node_id, dependency=dep_path)
                continue
            stale.append(
                {
                    "addr": dep_path,
                    "is_stale": True,
                    "last_updated": None,
                    "dependency_updated": NOT_FOUND,
                }
            )
            continue

        if node.updated_at is None or dep_node.updated_at is None:
            continue
        if dep_node.updated_at > node.updated_at:
            stale.append(
                {
                    "addr": dep_path,
                    "is_stale": True,
                    "last_updated": isoformat_z(node.updated_at),
                    "dependency_updated": isoformat_z(dep_node.updated_at),
                }
            )

    logger.info(
        "Dependency check complete",
        node_id=node_id,
        job_id=job_id,
        stale=len(stale),
    )
    return {
        "node_addr": node.addr,
        "stale_dependencies": stale,
        "all_fresh": not stale,
    }
