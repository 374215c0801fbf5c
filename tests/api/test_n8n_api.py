"""Workflow function listing and execution endpoints."""

import httpx
import pytest

pytestmark = pytest.mark.api

JOB_ID = "11111111-1111-4111-8111-111111111111"


@pytest.fixture
def node(node_store, execution_store, test_user):
    execution_store.jobs[JOB_ID] = {"id": JOB_ID, "user_id": test_user.user_id}
    execution_store.credits[test_user.user_id] = 5
    execution_store.add_function(
        id="fn-gen",
        name="Generate scenes",
        kind="generate",
        price_in_credits=2,
        webhook_url="https://n8n.test/webhook/gen",
    )
    return node_store.add(job_id=JOB_ID, addr="root.scenes", node_type="group", generate_n8n_id="fn-gen")


def test_list_functions(client, node):
    response = client.get("/api/v1/n8n/functions")
    assert response.status_code == 200
    assert response.json() == {
        "data": [{"id": "fn-gen", "name": "Generate scenes", "kind": "generate", "active": True}]
    }


def test_execute_success(client, node, execution_store, webhook, test_user):
    webhook.reply_json({"status": "success", "scenes": 3})

    response = client.post(
        "/api/v1/n8n/execute",
        json={"jobId": JOB_ID, "nodeId": node.id, "functionId": "fn-gen"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    assert body["meta"]["credits_consumed"] == 2
    assert execution_store.credits[test_user.user_id] == 3


def test_execute_timeout_is_an_envelope(client, node, webhook):
    webhook.replies.append(httpx.ReadTimeout("slow"))

    response = client.post(
        "/api/v1/n8n/execute",
        json={"job_id": JOB_ID, "node_id": node.id, "function_id": "fn-gen"},
    )

    assert response.status_code == 200
    assert response.json()["http_status"] == 504


def test_execute_insufficient_credits(client, node, execution_store, test_user):
    execution_store.credits[test_user.user_id] = 0

    response = client.post(
        "/api/v1/n8n/execute",
        json={"jobId": JOB_ID, "nodeId": node.id, "functionId": "fn-gen"},
    )

    assert response.status_code == 402
    body = response.json()
    assert body["code"] == "billing.insufficient_credits"
    assert body["meta"]["shortfall"] == 2
    assert body["detail"] == "Not enough credits to run this action."


def test_execute_missing_params(client, node):
    response = client.post("/api/v1/n8n/execute", json={"jobId": JOB_ID})
    assert response.status_code == 400
    assert response.json()["code"] == "n8n.missing_params"


def test_execute_unreachable_webhook(client, node, webhook):
    webhook.replies.append(httpx.ConnectError("refused"))
    response = client.post(
        "/api/v1/n8n/execute",
        json={"jobId": JOB_ID, "nodeId": node.id, "functionId": "fn-gen"},
    )
    assert response.status_code == 502
    assert response.json()["code"] == "n8n.webhook_unreachable"
