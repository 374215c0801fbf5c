"""Storage for `storyboard_jobs` rows."""

from __future__ import annotations

from typing import Any

from sqlalchemy import bindparam, text
from sqlalchemy.dialects.postgresql import JSONB

from aiscenes.db.client import get_db_session

_JOB_COLUMNS = """
    id, user_id, session_id, lead_name, lead_gender, face_ref_url, language,
    accent, genres, prompt, status, stage, n8n_webhook_sent, n8n_response,
    created_at, updated_at
"""

_UPDATABLE = {"status", "stage", "n8n_webhook_sent", "n8n_response"}


class StoryboardJobStore:
    async def insert_job(self, data: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    async def get_job(self, job_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    async def update_job(self, job_id: str, **changes: Any) -> None:
        raise NotImplementedError


class SqlStoryboardJobStore(StoryboardJobStore):
    async def insert_job(self, data: dict[str, Any]) -> dict[str, Any]:
        async with get_db_session() as session:
            result = await session.execute(
                text(
                    "INSERT INTO storyboard_jobs "
                    "(user_id, session_id, lead_name, lead_gender, face_ref_url, language, "
                    "accent, genres, prompt, status, stage, n8n_webhook_sent) "
                    "VALUES (:user_id, :session_id, :lead_name, :lead_gender, :face_ref_url, "
                    ":language, :accent, :genres, :prompt, :status, :stage, :n8n_webhook_sent) "
                    f"RETURNING {_JOB_COLUMNS}"
                ),
                data,
            )
            row = result.mappings().one()
        return dict(row)

    async def get_job(self, job_id: str) -> dict[str, Any] | None:
        async with get_db_session() as session:
            result = await session.execute(
                text(f"SELECT {_JOB_COLUMNS} FROM storyboard_jobs WHERE id = :job_id"),
                {"job_id": job_id},
            )
            row = result.mappings().first()
        return dict(row) if row else None

    async def update_job(self, job_id: str, **changes: Any) -> None:
        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unsupported storyboard job columns: {sorted(unknown)}")
        if not changes:
            return

        assignments = ", ".join(f"{column} = :{column}" for column in changes)
        statement = text(
            f"UPDATE storyboard_jobs SET {assignments}, updated_at = now() WHERE id = :job_id"
        )
        if "n8n_response" in changes:
            statement = statement.bindparams(bindparam("n8n_response", type_=JSONB))

        async with get_db_session() as session:
            await session.execute(statement, {**changes, "job_id": job_id})
