"""
Node read views.

Shapes returned here are what the node routes serialize directly: a node
with its optional relatives plus a `meta` block carrying a weak ETag derived
from the newest `updated_at` in the response.
"""

from __future__ import annotations

from typing import Any

import structlog

from aiscenes.kernel.serialization import to_jsonable
from aiscenes.kernel.time import epoch_millis
from aiscenes.ltree.store import NodeNotFoundError, NodeRecord, NodeStore

logger = structlog.get_logger()


def compute_etag(nodes: list[NodeRecord]) -> str:
    """Weak ETag over the newest ``updated_at`` among ``nodes``."""
    stamps = [epoch_millis(node.updated_at) for node in nodes if node.updated_at is not None]
    return f'W/"{max(stamps) if stamps else 0}"'


async def get_node_view(
    store: NodeStore,
    node_id: str,
    *,
    ancestors: bool = False,
    children: bool = False,
    descendants: bool = False,
    depth: int | None = None,
    types: list[str] | None = None,
) -> dict[str, Any]:
    node = await store.get_node(node_id)
    if node is None:
        raise NodeNotFoundError(node_id=node_id)

    view: dict[str, Any] = {"node": node.to_dict()}
    seen: list[NodeRecord] = [node]

    if ancestors:
        rows = await store.related(node, "ancestors", types=types)
        view["ancestors"] = [row.to_dict() for row in rows]
        seen.extend(rows)
    if children:
        rows = await store.related(node, "children", types=types)
        view["children"] = [row.to_dict() for row in rows]
        seen.extend(rows)
    if descendants:
        rows = await store.related(node, "descendants", depth=depth, types=types)
        view["descendants"] = [row.to_dict() for row in rows]
        seen.extend(rows)

    view["meta"] = {
        "job_id": node.job_id,
        "count": len(seen),
        "etag": compute_etag(seen),
    }
    logger.debug("Node view built", node_id=node_id, count=len(seen))
    return to_jsonable(view)


async def list_nodes_view(
    store: NodeStore,
    *,
    user_id: str,
    job_id: str | None = None,
    node_type: str | None = None,
    search: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> dict[str, Any]:
    nodes, total = await store.list_nodes(
        user_id=user_id,
        job_id=job_id,
        node_type=node_type,
        search=search,
        limit=limit,
        offset=offset,
    )
    return to_jsonable(
        {
            "nodes": [node.to_dict() for node in nodes],
            "pagination": {
                "offset": offset,
                "limit": limit,
                "total": total,
                "has_more": offset + len(nodes) < total,
            },
            "meta": {
                "filters": {"job_id": job_id, "node_type": node_type, "search": search},
                "count": len(nodes),
            },
        }
    )
