"""
Storyboard jobs.

A storyboard job is created from the intake form and handed to the start-job
workflow. The webhook outcome is recorded on the row; a failed dispatch never
fails the request, the job can be retried instead.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from aiscenes.config import get_settings
from aiscenes.kernel.errors import ConflictError, ForbiddenError, NotFoundError, UnauthorizedError
from aiscenes.kernel.serialization import to_jsonable
from aiscenes.kernel.time import isoformat_z, utc_now
from aiscenes.n8n.client import N8nWebhookClient
from aiscenes.storyboard.store import StoryboardJobStore

logger = structlog.get_logger()


class CreateStoryboardJobRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    lead_name: str = Field(min_length=1, validation_alias=AliasChoices("lead_name", "leadName"))
    lead_gender: str = Field(min_length=1, validation_alias=AliasChoices("lead_gender", "leadGender"))
    language: str = Field(min_length=1)
    accent: str = Field(min_length=1)
    genres: list[str] = Field(min_length=1)
    prompt: str | None = None
    face_ref_url: str | None = Field(
        default=None, validation_alias=AliasChoices("face_ref_url", "faceRefUrl")
    )
    user_id: str | None = Field(default=None, validation_alias=AliasChoices("user_id", "userId"))
    session_id: str | None = Field(
        default=None, validation_alias=AliasChoices("session_id", "sessionId")
    )


def _start_payload(job: dict[str, Any]) -> dict[str, Any]:
    return to_jsonable(
        {
            "row_id": job["id"],
            "table_id": "storyboard_jobs",
            "lead_name": job.get("lead_name"),
            "lead_gender": job.get("lead_gender"),
            "face_ref_url": job.get("face_ref_url"),
            "language": job.get("language"),
            "accent": job.get("accent"),
            "genres": job.get("genres"),
            "prompt": job.get("prompt"),
            "created_at": job.get("created_at"),
        }
    )


class StoryboardService:
    def __init__(
        self,
        store: StoryboardJobStore,
        client: N8nWebhookClient | None = None,
        webhook_url: str | None = None,
    ):
        self.store = store
        self.client = client or N8nWebhookClient()
        self.webhook_url = webhook_url if webhook_url is not None else get_settings().n8n_start_job_webhook_url

    async def _dispatch(self, job: dict[str, Any]) -> dict[str, Any]:
        """POST the start webhook; return the `n8n_response` record."""
        sent_at = isoformat_z(utc_now())
        if not self.webhook_url:
            logger.warning("Start-job webhook not configured", job_id=str(job["id"]))
            return {"error": "Start-job webhook not configured", "sent_at": sent_at}

        try:
            reply = await self.client.post(self.webhook_url, _start_payload(job), operation="n8n.start_job")
        except httpx.HTTPError as exc:
            logger.error("Start-job webhook failed", job_id=str(job["id"]), error=str(exc))
            return {"error": str(exc) or exc.__class__.__name__, "sent_at": sent_at}

        record: dict[str, Any] = {"status": reply.status_code, "response": reply.body, "sent_at": sent_at}
        if not reply.ok:
            record["error"] = f"Webhook responded with HTTP {reply.status_code}"
        return record

    async def create_storyboard_job(self, request: CreateStoryboardJobRequest) -> dict[str, Any]:
        if not request.user_id and not request.session_id:
            raise UnauthorizedError(
                message="Either user_id or session_id is required",
                code="storyboard.identity_required",
            )

        job = await self.store.insert_job(
            {
                "user_id": request.user_id,
                "session_id": request.session_id,
                "lead_name": request.lead_name,
                "lead_gender": request.lead_gender,
                "face_ref_url": request.face_ref_url,
                "language": request.language,
                "accent": request.accent,
                "genres": list(request.genres),
                "prompt": request.prompt or None,
                "status": "pending",
                "stage": "created",
                "n8n_webhook_sent": False,
            }
        )
        job_id = str(job["id"])
        logger.info("Storyboard job created", job_id=job_id, user_id=request.user_id, session_id=request.session_id)

        response = await self._dispatch(job)
        sent = "error" not in response
        await self.store.update_job(job_id, n8n_webhook_sent=sent, n8n_response=response)

        return {
            "success": True,
            "job_id": job_id,
            "webhook_sent": sent,
            "message": "Storyboard job created successfully",
        }

    @staticmethod
    def _check_owner(
        job: dict[str, Any],
        job_id: str,
        user_id: str | None,
        session_id: str | None,
    ) -> None:
        """Signed-in jobs need the owning user; guest jobs need their session."""
        if not user_id and not session_id:
            raise UnauthorizedError(
                message="Either user_id or session_id is required",
                code="storyboard.identity_required",
            )
        owner = job.get("user_id")
        if owner:
            allowed = user_id is not None and str(owner) == user_id
        else:
            allowed = session_id is not None and job.get("session_id") == session_id
        if not allowed:
            raise ForbiddenError(
                message="Job not owned by caller",
                code="storyboard.job_not_owned",
                meta={"job_id": job_id},
            )

    async def retry_storyboard_job(
        self,
        job_id: str,
        *,
        user_id: str | None = None,
        session_id: str | None = None,
    ) -> dict[str, Any]:
        job = await self.store.get_job(job_id)
        if job is None:
            raise NotFoundError(message="Job not found", code="storyboard.job_not_found", meta={"job_id": job_id})
        self._check_owner(job, job_id, user_id, session_id)

        if job.get("status") != "failed" and job.get("n8n_webhook_sent"):
            raise ConflictError(
                message="Only failed jobs can be retried",
                code="storyboard.not_retryable",
                meta={"job_id": job_id, "status": job.get("status")},
            )

        await self.store.update_job(
            job_id,
            status="pending",
            stage="created",
            n8n_webhook_sent=False,
            n8n_response=None,
        )
        logger.info("Storyboard job reset for retry", job_id=job_id)

        response = await self._dispatch(job)
        failed = "error" in response
        await self.store.update_job(
            job_id,
            n8n_webhook_sent=not failed,
            n8n_response=response,
            status="failed" if failed else "pending",
            stage="failed" if failed else "processing",
        )

        return {
            "success": True,
            "job_id": job_id,
            "webhook_sent": not failed,
            "message": (
                "Job reset but webhook failed. You can try again."
                if failed
                else "Job successfully retried"
            ),
        }
