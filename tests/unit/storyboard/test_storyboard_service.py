import httpx
import pytest
from pydantic import ValidationError as PydanticValidationError

from aiscenes.kernel.errors import ConflictError, ForbiddenError, NotFoundError, UnauthorizedError
from aiscenes.storyboard.service import CreateStoryboardJobRequest, StoryboardService

START_URL = "https://n8n.test/webhook/start-job"
USER_ID = "7d0f6a8e-3c1b-4f7a-9d2e-5b6c7a8d9e01"


def _request(**overrides) -> CreateStoryboardJobRequest:
    body = {
        "leadName": "Nour",
        "leadGender": "female",
        "language": "ar",
        "accent": "levantine",
        "genres": ["drama", "comedy"],
        "prompt": "A road trip",
        "faceRefUrl": "https://cdn.test/faces/nour.png",
        "userId": USER_ID,
    }
    body.update(overrides)
    return CreateStoryboardJobRequest.model_validate(body)


@pytest.fixture
def service(storyboard_store, webhook):
    return StoryboardService(storyboard_store, webhook.client(), webhook_url=START_URL)


@pytest.mark.unit
class TestCreateRequest:
    def test_requires_at_least_one_genre(self):
        with pytest.raises(PydanticValidationError):
            _request(genres=[])

    def test_blank_strings_are_rejected(self):
        with pytest.raises(PydanticValidationError):
            _request(leadName="   ")

    def test_snake_case_is_accepted(self):
        request = CreateStoryboardJobRequest(
            lead_name="Sami", lead_gender="male", language="en", accent="us", genres=["action"], session_id="s-1"
        )
        assert request.session_id == "s-1"
        assert request.user_id is None


@pytest.mark.asyncio
class TestCreateStoryboardJob:
    async def test_creates_job_and_dispatches(self, service, storyboard_store, webhook):
        webhook.reply_json({"received": True})

        result = await service.create_storyboard_job(_request())

        job_id = result["job_id"]
        assert result == {
            "success": True,
            "job_id": job_id,
            "webhook_sent": True,
            "message": "Storyboard job created successfully",
        }
        job = storyboard_store.jobs[job_id]
        assert job["status"] == "pending"
        assert job["stage"] == "created"
        assert job["n8n_webhook_sent"] is True
        assert job["n8n_response"]["status"] == 200
        assert job["n8n_response"]["response"] == {"received": True}

        sent = webhook.payloads[0]
        assert sent["row_id"] == job_id
        assert sent["table_id"] == "storyboard_jobs"
        assert sent["genres"] == ["drama", "comedy"]
        assert sent["face_ref_url"] == "https://cdn.test/faces/nour.png"
        assert isinstance(sent["created_at"], str)

    async def test_webhook_error_status_is_recorded(self, service, storyboard_store, webhook):
        webhook.reply_json({"message": "down"}, status_code=503)

        result = await service.create_storyboard_job(_request())

        assert result["success"] is True
        assert result["webhook_sent"] is False
        record = storyboard_store.jobs[result["job_id"]]["n8n_response"]
        assert record["error"] == "Webhook responded with HTTP 503"

    async def test_unreachable_webhook_is_recorded(self, service, storyboard_store, webhook):
        webhook.replies.append(httpx.ConnectError("refused"))

        result = await service.create_storyboard_job(_request())

        assert result["webhook_sent"] is False
        assert storyboard_store.jobs[result["job_id"]]["n8n_response"]["error"] == "refused"

    async def test_unconfigured_webhook(self, storyboard_store, webhook):
        service = StoryboardService(storyboard_store, webhook.client(), webhook_url="")

        result = await service.create_storyboard_job(_request())

        assert result["webhook_sent"] is False
        assert webhook.requests == []

    async def test_identity_required(self, service, storyboard_store):
        with pytest.raises(UnauthorizedError) as exc:
            await service.create_storyboard_job(_request(userId=None))
        assert exc.value.code == "storyboard.identity_required"
        assert storyboard_store.jobs == {}


@pytest.mark.asyncio
class TestRetryStoryboardJob:
    async def _failed_job(self, service, storyboard_store, webhook) -> str:
        webhook.replies.append(httpx.ConnectError("refused"))
        result = await service.create_storyboard_job(_request())
        webhook.replies.clear()
        return result["job_id"]

    async def test_retry_after_failed_dispatch(self, service, storyboard_store, webhook):
        job_id = await self._failed_job(service, storyboard_store, webhook)

        result = await service.retry_storyboard_job(job_id, user_id=USER_ID)

        assert result == {
            "success": True,
            "job_id": job_id,
            "webhook_sent": True,
            "message": "Job successfully retried",
        }
        job = storyboard_store.jobs[job_id]
        assert job["status"] == "pending"
        assert job["stage"] == "processing"
        reset = storyboard_store.updates[-2][1]
        assert reset == {
            "status": "pending",
            "stage": "created",
            "n8n_webhook_sent": False,
            "n8n_response": None,
        }

    async def test_retry_that_fails_again(self, service, storyboard_store, webhook):
        job_id = await self._failed_job(service, storyboard_store, webhook)
        webhook.reply_json({}, status_code=500)

        result = await service.retry_storyboard_job(job_id, user_id=USER_ID)

        assert result["webhook_sent"] is False
        assert result["message"] == "Job reset but webhook failed. You can try again."
        job = storyboard_store.jobs[job_id]
        assert (job["status"], job["stage"]) == ("failed", "failed")

    async def test_sent_job_is_not_retryable(self, service, storyboard_store):
        result = await service.create_storyboard_job(_request())
        with pytest.raises(ConflictError) as exc:
            await service.retry_storyboard_job(result["job_id"], user_id=USER_ID)
        assert exc.value.code == "storyboard.not_retryable"

    async def test_failed_status_is_retryable_even_if_sent(self, service, storyboard_store):
        result = await service.create_storyboard_job(_request())
        storyboard_store.jobs[result["job_id"]]["status"] = "failed"
        retried = await service.retry_storyboard_job(result["job_id"], user_id=USER_ID)
        assert retried["webhook_sent"] is True

    async def test_unknown_job(self, service):
        with pytest.raises(NotFoundError) as exc:
            await service.retry_storyboard_job("missing", user_id=USER_ID)
        assert exc.value.code == "storyboard.job_not_found"

    async def test_other_user_cannot_retry(self, service, storyboard_store, webhook):
        job_id = await self._failed_job(service, storyboard_store, webhook)
        with pytest.raises(ForbiddenError) as exc:
            await service.retry_storyboard_job(job_id, user_id="someone-else")
        assert exc.value.code == "storyboard.job_not_owned"
        assert storyboard_store.jobs[job_id]["n8n_webhook_sent"] is False

    async def test_guest_job_needs_its_session(self, service, storyboard_store, webhook):
        webhook.replies.append(httpx.ConnectError("refused"))
        result = await service.create_storyboard_job(_request(userId=None, sessionId="guest-1"))
        webhook.replies.clear()
        job_id = result["job_id"]

        with pytest.raises(ForbiddenError):
            await service.retry_storyboard_job(job_id, session_id="guest-2")
        with pytest.raises(ForbiddenError):
            await service.retry_storyboard_job(job_id, user_id=USER_ID)

        retried = await service.retry_storyboard_job(job_id, session_id="guest-1")
        assert retried["webhook_sent"] is True

    async def test_anonymous_retry_is_rejected(self, service, storyboard_store, webhook):
        job_id = await self._failed_job(service, storyboard_store, webhook)
        with pytest.raises(UnauthorizedError) as exc:
            await service.retry_storyboard_job(job_id)
        assert exc.value.code == "storyboard.identity_required"
