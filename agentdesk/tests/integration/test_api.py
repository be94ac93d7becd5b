from __future__ import annotations

from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from agentdesk.apps.api.main import create_app
from agentdesk.domain.models import utc_now
from agentdesk.tests.utils.auth import create_test_api_key


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=create_app()), base_url="http://test")


async def _create_agent(client: AsyncClient, headers: dict[str, str], **overrides) -> dict:
    body = {"name": "Ava", "business_name": "Acme", "tone": "friendly"}
    body.update(overrides)
    response = await client.post("/v1/agents", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]


@pytest.mark.asyncio
async def test_support_flow_end_to_end() -> None:
    _raw, owner_headers, _user, _key = await create_test_api_key(tenant_id="t1", role="owner")
    _raw, service_headers, _user, _key = await create_test_api_key(tenant_id="t1", role="service")

    async with _client() as client:
        agent = await _create_agent(client, owner_headers)
        response = await client.post(
            f"/v1/agents/{agent['id']}/knowledge",
            json={"source_name": "refunds.md", "content": "Refunds processed within 5 days"},
            headers=owner_headers,
        )
        assert response.status_code == 201
        fragment_id = response.json()["data"]["id"]

        response = await client.post(
            f"/v1/agents/{agent['id']}/messages",
            json={"session_id": "s1", "text": "how long for a refund?"},
            headers=service_headers,
        )
        assert response.status_code == 200
        payload = response.json()
        assert payload["meta"]["api_version"] == "v1"
        reply = payload["data"]
        assert reply["state"] == "open"
        assert reply["fragment_ids"] == [fragment_id]
        assert "Refunds processed within 5 days" in reply["reply"]
        assert (reply["customer_ordinal"], reply["reply_ordinal"]) == (0, 1)

        response = await client.post(
            f"/v1/agents/{agent['id']}/messages",
            json={"session_id": "s1", "text": "thanks"},
            headers=service_headers,
        )
        thanks = response.json()["data"]
        assert thanks["conversation_id"] == reply["conversation_id"]
        assert thanks["grounded"] is False
        assert "knowledge base" in thanks["reply"]

        response = await client.get(
            f"/v1/conversations/{reply['conversation_id']}", headers=owner_headers
        )
        conversation = response.json()["data"]
        assert [message["ordinal"] for message in conversation["messages"]] == [0, 1, 2, 3]

        response = await client.post(
            f"/v1/conversations/{reply['conversation_id']}/resolve", headers=owner_headers
        )
        assert response.json()["data"]["state"] == "resolved"

        response = await client.get(f"/v1/agents/{agent['id']}/metrics", headers=owner_headers)
        metrics = response.json()["data"]
        assert metrics["resolved_conversations"] == 1
        assert metrics["total_messages"] == 4
        assert metrics["resolution_rate"] == 100.0
        assert metrics["avg_response_time_s"] >= 0.0

        response = await client.get("/v1/dashboard", headers=owner_headers)
        dashboard = response.json()["data"]
        assert dashboard["agent_count"] == 1
        assert [item["id"] for item in dashboard["recent_agents"]] == [agent["id"]]


@pytest.mark.asyncio
async def test_error_envelope_and_status_mapping() -> None:
    _raw, owner_headers, _user, _key = await create_test_api_key(tenant_id="t1", role="owner")
    _raw, admin_headers, _user, _key = await create_test_api_key(tenant_id="t1", role="admin")
    _raw, foreign_headers, _user, _key = await create_test_api_key(tenant_id="t2", role="owner")
    _raw, service_headers, _user, _key = await create_test_api_key(tenant_id="t1", role="service")

    async with _client() as client:
        agent = await _create_agent(client, owner_headers)

        response = await client.get(f"/v1/agents/{agent['id']}", headers=foreign_headers)
        assert response.status_code == 404
        error = response.json()["error"]
        assert error["code"] == "NOT_FOUND"
        assert "request_id" in response.json()["meta"]

        response = await client.post("/v1/agents", json={"name": "B", "business_name": "C"}, headers=admin_headers)
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

        response = await client.post(
            "/v1/agents", json={"name": "B", "business_name": "C", "tone": "grumpy"}, headers=owner_headers
        )
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INVALID_INPUT"

        response = await client.post(
            "/v1/agents", json={"name": "B", "business_name": "C", "tenant_id": "t2"}, headers=owner_headers
        )
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "REQUEST_VALIDATION_ERROR"

        # Service credentials only reach the inbound route.
        response = await client.get("/v1/agents", headers=service_headers)
        assert response.status_code == 403

        response = await client.post(
            f"/v1/agents/{agent['id']}/messages",
            json={"session_id": "s1", "text": "hello"},
            headers=service_headers,
        )
        conversation_id = response.json()["data"]["conversation_id"]
        response = await client.post(f"/v1/conversations/{conversation_id}/resolve", headers=service_headers)
        assert response.status_code == 403

        response = await client.delete("/v1/knowledge/missing", headers=owner_headers)
        assert response.status_code == 404


@pytest.mark.asyncio
async def test_authentication_failures() -> None:
    _raw, revoked_headers, _user, _key = await create_test_api_key(
        tenant_id="t1", role="owner", key_revoked=True
    )
    _raw, expired_headers, _user, _key = await create_test_api_key(
        tenant_id="t1", role="owner", key_expires_at=utc_now() - timedelta(minutes=1)
    )
    async with _client() as client:
        response = await client.get("/v1/agents")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTH_UNAUTHORIZED"

        response = await client.get("/v1/agents", headers={"Authorization": "Token abc"})
        assert response.status_code == 401

        response = await client.get("/v1/agents", headers={"Authorization": "Bearer adk_unknown"})
        assert response.status_code == 401

        assert (await client.get("/v1/agents", headers=revoked_headers)).status_code == 401
        assert (await client.get("/v1/agents", headers=expired_headers)).status_code == 401


@pytest.mark.asyncio
async def test_agent_lifecycle_and_legacy_alias() -> None:
    _raw, owner_headers, _user, _key = await create_test_api_key(tenant_id="t1", role="owner")
    async with _client() as client:
        agent = await _create_agent(client, owner_headers)

        response = await client.patch(
            f"/v1/agents/{agent['id']}", json={"tone": "technical"}, headers=owner_headers
        )
        assert response.status_code == 200
        assert response.json()["data"]["tone"] == "technical"

        response = await client.post(
            f"/v1/agents/{agent['id']}/preview", json={"text": "anything?"}, headers=owner_headers
        )
        assert response.status_code == 200
        assert response.json()["data"]["grounded"] is False

        # Unversioned aliases return bare payloads with deprecation headers.
        response = await client.get("/agents", headers=owner_headers)
        assert response.status_code == 200
        assert response.headers["Deprecation"] == "true"
        assert [item["id"] for item in response.json()] == [agent["id"]]

        response = await client.delete(f"/v1/agents/{agent['id']}", headers=owner_headers)
        assert response.status_code == 204
        response = await client.get(f"/v1/agents/{agent['id']}", headers=owner_headers)
        assert response.status_code == 404


@pytest.mark.asyncio
async def test_health_is_public() -> None:
    async with _client() as client:
        response = await client.get("/v1/health")
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "ok"
    assert set(response.json()["data"]["db_pool"]) == {"size", "checked_out"}
