"""Job ownership checks for node and address operations."""

from __future__ import annotations

import structlog

from aiscenes.kernel.errors import ForbiddenError, NotFoundError
from aiscenes.ltree.store import NodeNotFoundError, NodeRecord, NodeStore

logger = structlog.get_logger()


class JobAccess:
    """Guards a caller's reads and writes to the jobs they own."""

    def __init__(self, store: NodeStore, user_id: str):
        self.store = store
        self.user_id = user_id

    async def require_job(self, job_id: str) -> None:
        job = await self.store.get_job(job_id)
        if job is None:
            raise NotFoundError(message="Job not found", code="nodes.job_not_found", meta={"job_id": job_id})
        if job.get("user_id") != self.user_id:
            logger.warning("Job access denied", job_id=job_id, user_id=self.user_id)
            raise ForbiddenError(
                message="Job not owned by user",
                code="nodes.job_not_owned",
                meta={"job_id": job_id},
            )

    async def require_node(self, node_id: str) -> NodeRecord:
        """Load a node and check the caller owns its job."""
        node = await self.store.get_node(node_id)
        if node is None:
            raise NodeNotFoundError(node_id=node_id)
        await self.require_job(node.job_id)
        return node
