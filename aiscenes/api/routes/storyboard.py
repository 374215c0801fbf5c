"""Storyboard job routes."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from aiscenes.api.dependencies import get_storyboard_service
from aiscenes.auth.middleware import AuthenticatedUser, get_optional_user
from aiscenes.storyboard.service import CreateStoryboardJobRequest, StoryboardService

router = APIRouter(prefix="/storyboard/jobs", tags=["Storyboard"])


@router.post("")
async def create_job(
    request: CreateStoryboardJobRequest,
    user: AuthenticatedUser | None = Depends(get_optional_user),
    service: StoryboardService = Depends(get_storyboard_service),
) -> dict[str, Any]:
    """Create a storyboard job for a signed-in user or a guest session."""
    if user is not None:
        request = request.model_copy(update={"user_id": user.user_id})
    return await service.create_storyboard_job(request)


@router.post("/{job_id}/retry")
async def retry_job(
    job_id: UUID,
    session_id: str | None = Query(None, description="Guest session that created the job"),
    user: AuthenticatedUser | None = Depends(get_optional_user),
    service: StoryboardService = Depends(get_storyboard_service),
) -> dict[str, Any]:
    """Re-dispatch a job owned by the signed-in user or the guest session."""
    return await service.retry_storyboard_job(
        str(job_id),
        user_id=user.user_id if user is not None else None,
        session_id=session_id,
    )
