"""
Node storage.

Nodes live in the `nodes` table, addressed within a job by an ltree `addr`
and carrying a jsonb `content` document. `NodeStore` is the seam the resolver
and node services depend on; `SqlNodeStore` is the Postgres implementation.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

import structlog
from sqlalchemy import bindparam, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import IntegrityError

from aiscenes.db.client import get_db_session
from aiscenes.kernel.errors import ConflictError, NotFoundError

logger = structlog.get_logger()

Relation = Literal["ancestors", "children", "descendants"]
ContentMutation = Callable[[Any], Any]


class NodeNotFoundError(NotFoundError):
    def __init__(self, *, job_id: str | None = None, addr: str | None = None, node_id: str | None = None):
        meta = {k: v for k, v in (("job_id", job_id), ("addr", addr), ("node_id", node_id)) if v}
        super().__init__(message="Node not found", code="ltree.node_not_found", meta=meta)


class NodeAddrConflictError(ConflictError):
    def __init__(self, *, job_id: str, addrs: list[str] | None = None):
        meta: dict[str, Any] = {"job_id": job_id}
        if addrs:
            meta["addrs"] = addrs
        super().__init__(message="Node address already exists", code="nodes.addr_conflict", meta=meta)


@dataclass
class NewNode:
    job_id: str
    addr: str
    node_type: str
    content: Any = None
    title: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass
class NodeRecord:
    id: str
    job_id: str
    addr: str
    node_type: str
    content: Any = None
    title: str | None = None
    dependencies: list[Any] = field(default_factory=list)
    generate_n8n_id: str | None = None
    validate_n8n_id: str | None = None
    status: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "addr": self.addr,
            "node_type": self.node_type,
            "title": self.title,
            "content": self.content,
            "dependencies": self.dependencies,
            "generate_n8n_id": self.generate_n8n_id,
            "validate_n8n_id": self.validate_n8n_id,
            "status": self.status,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class NodeStore:
    """Abstract storage interface for job nodes."""

    async def get_job(self, job_id: str) -> dict[str, Any] | None:
        """`{id, user_id}` of a job, or None."""
        raise NotImplementedError

    async def get_node(self, node_id: str) -> NodeRecord | None:
        raise NotImplementedError

    async def find_node(self, job_id: str, addr: str) -> NodeRecord | None:
        raise NotImplementedError

    async def update_content(self, job_id: str, addr: str, mutate: ContentMutation) -> NodeRecord:
        """Apply `mutate` to the node's current content under a row lock.

        Raises NodeNotFoundError when no node has `addr` in the job.
        """
        raise NotImplementedError

    async def related(
        self,
        node: NodeRecord,
        relation: Relation,
        *,
        depth: int | None = None,
        types: list[str] | None = None,
    ) -> list[NodeRecord]:
        raise NotImplementedError

    async def list_nodes(
        self,
        *,
        user_id: str,
        job_id: str | None = None,
        node_type: str | None = None,
        search: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[NodeRecord], int]:
        raise NotImplementedError

    async def write_nodes(self, *, inserts: list[NewNode], contents: dict[str, Any]) -> None:
        """Insert new nodes and replace content by node id, all or nothing.

        Raises NodeAddrConflictError when an insert collides with an existing
        addr and NodeNotFoundError when a content target is gone.
        """
        raise NotImplementedError

    async def get_library_node(self, library_id: str) -> dict[str, Any] | None:
        raise NotImplementedError


_NODE_COLUMNS = """
    id, job_id, addr::text AS addr, node_type, title, content, dependencies,
    generate_n8n_id, validate_n8n_id, status, created_at, updated_at
"""


def escape_like(value: str) -> str:
    """Escape ``ILIKE`` wildcards so ``value`` matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _row_to_node(row: Any) -> NodeRecord:
    return NodeRecord(
        id=str(row["id"]),
        job_id=str(row["job_id"]),
        addr=str(row["addr"]),
        node_type=str(row["node_type"]),
        title=row.get("title"),
        content=row.get("content"),
        dependencies=list(row.get("dependencies") or []),
        generate_n8n_id=row.get("generate_n8n_id"),
        validate_n8n_id=row.get("validate_n8n_id"),
        status=row.get("status"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


class SqlNodeStore(NodeStore):
    """Postgres-backed node store (ltree + jsonb)."""

    async def get_job(self, job_id: str) -> dict[str, Any] | None:
        async with get_db_session() as session:
            result = await session.execute(
                text("SELECT id, user_id FROM jobs WHERE id::text = :job_id"),
                {"job_id": job_id},
            )
            row = result.mappings().first()
        if row is None:
            return None
        return {"id": str(row["id"]), "user_id": str(row["user_id"]) if row["user_id"] is not None else None}

    async def get_node(self, node_id: str) -> NodeRecord | None:
        async with get_db_session() as session:
            result = await session.execute(
                text(f"SELECT {_NODE_COLUMNS} FROM nodes WHERE id = :node_id"),
                {"node_id": node_id},
            )
            row = result.mappings().first()
        return _row_to_node(row) if row else None

    async def find_node(self, job_id: str, addr: str) -> NodeRecord | None:
        async with get_db_session() as session:
            result = await session.execute(
                text(
                    f"SELECT {_NODE_COLUMNS} FROM nodes "
                    "WHERE job_id = :job_id AND addr = CAST(:addr AS ltree)"
                ),
                {"job_id": job_id, "addr": addr},
            )
            row = result.mappings().first()
        return _row_to_node(row) if row else None

    async def update_content(self, job_id: str, addr: str, mutate: ContentMutation) -> NodeRecord:
        async with get_db_session() as session:
            result = await session.execute(
                text(
                    f"SELECT {_NODE_COLUMNS} FROM nodes "
                    "WHERE job_id = :job_id AND addr = CAST(:addr AS ltree) "
                    "FOR UPDATE"
                ),
                {"job_id": job_id, "addr": addr},
            )
            row = result.mappings().first()
            if row is None:
                raise NodeNotFoundError(job_id=job_id, addr=addr)

            node = _row_to_node(row)
            node.content = mutate(node.content)

            updated = await session.execute(
                text(
                    "UPDATE nodes SET content = :content, updated_at = now() "
                    "WHERE id = :node_id RETURNING updated_at"
                ).bindparams(bindparam("content", type_=JSONB)),
                {"content": node.content, "node_id": node.id},
            )
            node.updated_at = updated.scalar_one()

        logger.debug("Node content updated", job_id=job_id, addr=addr, node_id=node.id)
        return node

    async def related(
        self,
        node: NodeRecord,
        relation: Relation,
        *,
        depth: int | None = None,
        types: list[str] | None = None,
    ) -> list[NodeRecord]:
        params: dict[str, Any] = {"job_id": node.job_id, "addr": node.addr}
        where = ["job_id = :job_id"]

        if relation == "ancestors":
            where.append("addr @> CAST(:addr AS ltree)")
            where.append("addr <> CAST(:addr AS ltree)")
        elif relation == "children":
            where.append("addr <@ CAST(:addr AS ltree)")
            where.append("nlevel(addr) = nlevel(CAST(:addr AS ltree)) + 1")
        else:
            where.append("addr <@ CAST(:addr AS ltree)")
            where.append("addr <> CAST(:addr AS ltree)")
            if depth is not None:
                where.append("nlevel(addr) <= nlevel(CAST(:addr AS ltree)) + :depth")
                params["depth"] = depth

        if types:
            where.append("node_type = ANY(:types)")
            params["types"] = list(types)

        query = f"SELECT {_NODE_COLUMNS} FROM nodes WHERE {' AND '.join(where)} ORDER BY addr"
        async with get_db_session() as session:
            result = await session.execute(text(query), params)
            rows = result.mappings().all()
        return [_row_to_node(row) for row in rows]

    async def list_nodes(
        self,
        *,
        user_id: str,
        job_id: str | None = None,
        node_type: str | None = None,
        search: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[NodeRecord], int]:
        params: dict[str, Any] = {"user_id": user_id, "limit": limit, "offset": offset}
        where: list[str] = ["job_id IN (SELECT id FROM jobs WHERE user_id::text = :user_id)"]
        if job_id:
            where.append("job_id = :job_id")
            params["job_id"] = job_id
        if node_type:
            where.append("node_type = :node_type")
            params["node_type"] = node_type
        if search:
            where.append(
                "(addr::text ILIKE :pattern ESCAPE '\\' OR node_type ILIKE :pattern ESCAPE '\\')"
            )
            params["pattern"] = f"%{escape_like(search)}%"

        where_sql = " AND ".join(where)
        async with get_db_session() as session:
            result = await session.execute(
                text(
                    f"SELECT {_NODE_COLUMNS} FROM nodes WHERE {where_sql} "
                    "ORDER BY addr LIMIT :limit OFFSET :offset"
                ),
                params,
            )
            rows = result.mappings().all()
            count = await session.execute(
                text(f"SELECT COUNT(*) FROM nodes WHERE {where_sql}"),
                {k: v for k, v in params.items() if k not in ("limit", "offset")},
            )
            total = int(count.scalar_one() or 0)
        return [_row_to_node(row) for row in rows], total

    async def write_nodes(self, *, inserts: list[NewNode], contents: dict[str, Any]) -> None:
        insert_sql = text(
            "INSERT INTO nodes (id, job_id, addr, node_type, title, content, status) "
            "VALUES (:id, :job_id, CAST(:addr AS ltree), :node_type, :title, :content, 'idle')"
        ).bindparams(bindparam("content", type_=JSONB))
        update_sql = text(
            "UPDATE nodes SET content = :content, updated_at = now() WHERE id = :node_id"
        ).bindparams(bindparam("content", type_=JSONB))

        try:
            async with get_db_session() as session:
                for node in inserts:
                    await session.execute(
                        insert_sql,
                        {
                            "id": node.id,
                            "job_id": node.job_id,
                            "addr": node.addr,
                            "node_type": node.node_type,
                            "title": node.title,
                            "content": node.content,
                        },
                    )
                for node_id, content in contents.items():
                    result = await session.execute(update_sql, {"content": content, "node_id": node_id})
                    if result.rowcount == 0:
                        raise NodeNotFoundError(node_id=node_id)
        except IntegrityError as exc:
            job_id = inserts[0].job_id if inserts else ""
            raise NodeAddrConflictError(job_id=job_id) from exc

        logger.debug("Nodes written", inserted=len(inserts), updated=len(contents))

    async def get_library_node(self, library_id: str) -> dict[str, Any] | None:
        async with get_db_session() as session:
            result = await session.execute(
                text(
                    "SELECT id, node_type, title, slug, content FROM node_library WHERE id = :library_id"
                ),
                {"library_id": library_id},
            )
            row = result.mappings().first()
        return dict(row) if row else None
