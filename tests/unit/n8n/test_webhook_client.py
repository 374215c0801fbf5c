import httpx
import pytest

pytestmark = [pytest.mark.unit, pytest.mark.asyncio]


async def test_post_sends_json_and_decodes_reply(webhook):
    webhook.reply_json({"status": "ok"}, status_code=201)

    reply = await webhook.client().post("https://n8n.test/webhook/a", {"hello": "world"})

    assert reply.ok
    assert reply.status_code == 201
    assert reply.body == {"status": "ok"}
    assert webhook.payloads == [{"hello": "world"}]
    assert webhook.requests[0].method == "POST"


async def test_non_json_body_is_kept_raw(webhook):
    webhook.replies.append(httpx.Response(502, text="<html>Bad gateway</html>"))

    reply = await webhook.client().post("https://n8n.test/webhook/a", {})

    assert not reply.ok
    assert reply.body == {"raw": "<html>Bad gateway</html>"}


async def test_client_defaults_come_from_settings(webhook):
    client = webhook.client()
    assert client.timeout_seconds == 60.0
    assert client.max_attempts == 1
    assert webhook.client(timeout_seconds=2, max_attempts=3).max_attempts == 3
