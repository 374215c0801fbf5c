from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

from aiscenes.kernel.time import utc_now
from aiscenes.storyboard.store import StoryboardJobStore


@dataclass
class FakeStoryboardJobStore(StoryboardJobStore):
    """In-memory fake for StoryboardJobStore; keeps every update for assertions."""

    jobs: dict[str, dict[str, Any]] = field(default_factory=dict)
    updates: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    async def insert_job(self, data: dict[str, Any]) -> dict[str, Any]:
        now = utc_now()
        job = {"id": str(uuid.uuid4()), **data, "n8n_response": None, "created_at": now, "updated_at": now}
        self.jobs[job["id"]] = job
        return dict(job)

    async def get_job(self, job_id: str) -> dict[str, Any] | None:
        job = self.jobs.get(job_id)
        return dict(job) if job else None

    async def update_job(self, job_id: str, **changes: Any) -> None:
        self.updates.append((job_id, changes))
        self.jobs[job_id].update(changes, updated_at=utc_now())
