"""Persistence for workflow functions, job ownership and user credits."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import text

from aiscenes.db.client import get_db_session

logger = structlog.get_logger()


@dataclass
class N8nFunction:
    id: str
    name: str
    kind: str
    active: bool = True
    price_in_credits: Decimal | int = 0
    webhook_url: str | None = None

    @property
    def price(self) -> int:
        try:
            return max(int(self.price_in_credits or 0), 0)
        except (TypeError, ValueError):
            return 0

    def public_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "kind": self.kind, "active": self.active}


def _row_to_function(row: Any) -> N8nFunction:
    return N8nFunction(
        id=str(row["id"]),
        name=str(row["name"]),
        kind=str(row["kind"]),
        active=bool(row.get("active", True)),
        price_in_credits=row.get("price_in_credits") or 0,
        webhook_url=row.get("webhook_url"),
    )


class ExecutionStore:
    """Abstract storage interface used by workflow execution."""

    async def get_job(self, job_id: str) -> dict[str, Any] | None:
        """`{id, user_id}` of a job, or None."""
        raise NotImplementedError

    async def list_active_functions(self) -> list[N8nFunction]:
        raise NotImplementedError

    async def get_function(self, function_id: str) -> N8nFunction | None:
        raise NotImplementedError

    async def find_active_function(self, ref: str) -> N8nFunction | None:
        """Active function whose id is `ref`, falling back to its name."""
        raise NotImplementedError

    async def get_user_credits(self, user_id: str) -> int | None:
        raise NotImplementedError

    async def consume_credits(
        self,
        *,
        user_id: str,
        credits: int,
        description: str,
        job_id: str,
        function_id: str,
    ) -> bool:
        raise NotImplementedError


_FUNCTION_COLUMNS = "id, name, kind, active, price_in_credits, webhook_url"


class SqlExecutionStore(ExecutionStore):
    async def get_job(self, job_id: str) -> dict[str, Any] | None:
        async with get_db_session() as session:
            result = await session.execute(
                text("SELECT id, user_id FROM jobs WHERE id = :job_id"),
                {"job_id": job_id},
            )
            row = result.mappings().first()
        if row is None:
            return None
        return {"id": str(row["id"]), "user_id": str(row["user_id"]) if row["user_id"] is not None else None}

    async def list_active_functions(self) -> list[N8nFunction]:
        async with get_db_session() as session:
            result = await session.execute(
                text(f"SELECT {_FUNCTION_COLUMNS} FROM n8n_functions WHERE active = true ORDER BY name")
            )
            rows = result.mappings().all()
        return [_row_to_function(row) for row in rows]

    async def get_function(self, function_id: str) -> N8nFunction | None:
        async with get_db_session() as session:
            result = await session.execute(
                text(f"SELECT {_FUNCTION_COLUMNS} FROM n8n_functions WHERE id = :function_id"),
                {"function_id": function_id},
            )
            row = result.mappings().first()
        return _row_to_function(row) if row else None

    async def find_active_function(self, ref: str) -> N8nFunction | None:
        async with get_db_session() as session:
            for column in ("id", "name"):
                result = await session.execute(
                    text(
                        f"SELECT {_FUNCTION_COLUMNS} FROM n8n_functions "
                        f"WHERE {column} = :ref AND active = true LIMIT 1"
                    ),
                    {"ref": ref},
                )
                row = result.mappings().first()
                if row is not None:
                    return _row_to_function(row)
        return None

    async def get_user_credits(self, user_id: str) -> int | None:
        async with get_db_session() as session:
            result = await session.execute(
                text("SELECT credits FROM user_credits WHERE user_id = :user_id"),
                {"user_id": user_id},
            )
            row = result.mappings().first()
        if row is None:
            return None
        return int(row["credits"] or 0)

    async def consume_credits(
        self,
        *,
        user_id: str,
        credits: int,
        description: str,
        job_id: str,
        function_id: str,
    ) -> bool:
        async with get_db_session() as session:
            result = await session.execute(
                text(
                    "SELECT consume_credits(:user_id, :credits, :description, :job_id, :function_id)"
                ),
                {
                    "user_id": user_id,
                    "credits": credits,
                    "description": description,
                    "job_id": job_id,
                    "function_id": function_id,
                },
            )
            consumed = bool(result.scalar_one())
        logger.debug("consume_credits called", user_id=user_id, credits=credits, consumed=consumed)
        return consumed
