"""HTTP API tests with aiohttp's TestClient."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp.test_utils import TestClient, TestServer

SERVICE_KEY = "service-secret"


def _app(orchestrator=None, scheduler=None):
    from agentloop.api.server import create_app
    from agentloop.shell.auth import Authenticator, hash_token
    from agentloop.shell.config import Config

    store = MagicMock()
    store.find_token_owner = AsyncMock(
        side_effect=lambda h: "user-1" if h == hash_token("user-token") else None)
    return create_app(Config(), MagicMock(), orchestrator or MagicMock(), scheduler or MagicMock(),
                      Authenticator(store, SERVICE_KEY))


def _auth(token=SERVICE_KEY):
    return {"Authorization": f"Bearer {token}"}


# --- Assessment ---

@pytest.mark.asyncio
async def test_run_assessment():
    orchestrator = MagicMock()
    orchestrator.run = AsyncMock(return_value={"success": True, "assessment_id": "as-1"})

    async with TestClient(TestServer(_app(orchestrator))) as client:
        resp = await client.post("/run_agent_assessment", json={"agent_id": "agent-1"},
                                 headers=_auth("user-token"))
        assert resp.status == 200
        body = await resp.json()
        assert body == {"success": True, "assessment_id": "as-1"}
        assert resp.headers["Access-Control-Allow-Origin"] == "*"

    auth = orchestrator.run.await_args.kwargs["auth"]
    assert auth.user_id == "user-1"


@pytest.mark.asyncio
async def test_error_envelopes():
    from agentloop.shell.errors import NotFoundError, ProviderError

    orchestrator = MagicMock()
    orchestrator.run = AsyncMock(side_effect=[
        NotFoundError("Agent not found or unauthorized"),
        ProviderError("google", "503 Service Unavailable"),
        RuntimeError("kaboom"),
    ])

    async with TestClient(TestServer(_app(orchestrator))) as client:
        resp = await client.post("/run_agent_assessment", json={"agent_id": "x"})
        assert resp.status == 401
        assert (await resp.json())["success"] is False

        resp = await client.post("/run_agent_assessment", json={}, headers=_auth())
        assert resp.status == 400
        assert (await resp.json())["error"] == "agent_id is required"

        resp = await client.post("/run_agent_assessment", data="not json", headers=_auth())
        assert resp.status == 400

        resp = await client.post("/run_agent_assessment", json={"agent_id": "x"}, headers=_auth())
        assert resp.status == 404

        resp = await client.post("/run_agent_assessment", json={"agent_id": "x"}, headers=_auth())
        assert resp.status == 502
        assert "google API error" in (await resp.json())["error"]

        resp = await client.post("/run_agent_assessment", json={"agent_id": "x"}, headers=_auth())
        assert resp.status == 500
        assert (await resp.json()) == {"success": False, "error": "kaboom"}


@pytest.mark.asyncio
async def test_preflight():
    async with TestClient(TestServer(_app())) as client:
        resp = await client.options("/run_agent_assessment")
        assert resp.status == 204
        assert "authorization" in resp.headers["Access-Control-Allow-Headers"]


# --- Trade execution ---

@pytest.mark.asyncio
async def test_execute_trade():
    from agentloop.shell.contract import ActionType

    orchestrator = MagicMock()
    orchestrator.execute_action = AsyncMock(return_value={"kind": "OPEN", "asset": "BTC"})

    async with TestClient(TestServer(_app(orchestrator))) as client:
        resp = await client.post("/execute_hyperliquid_trade", headers=_auth(), json={
            "agent_id": "agent-1",
            "action": {"action": "OPEN_LONG", "asset": "btc", "leverage": 3},
            "simulate": True,
        })
        assert resp.status == 200
        body = await resp.json()
        assert body["success"] is True
        assert body["action"]["asset"] == "BTC"
        assert body["result"]["kind"] == "OPEN"

        agent_id, action, simulate, auth = orchestrator.execute_action.await_args.args
        assert agent_id == "agent-1"
        assert action.action is ActionType.OPEN_LONG
        assert simulate is True
        assert auth.is_service_request

        for bad in ({"agent_id": "a", "action": {"action": "OPEN_LONG"}},
                    {"agent_id": "a", "action": {"action": "NO_ACTION"}},
                    {"agent_id": "a", "action": {"action": "CLOSE_LONG", "asset": "BTC"}, "simulate": "yes"}):
            resp = await client.post("/execute_hyperliquid_trade", headers=_auth(), json=bad)
            assert resp.status == 400


# --- Scheduler ---

@pytest.mark.asyncio
async def test_scheduler_requires_service_key():
    scheduler = MagicMock()
    scheduler.run_once = AsyncMock(return_value={"success": True, "total": 0})

    async with TestClient(TestServer(_app(scheduler=scheduler))) as client:
        resp = await client.post("/agent_scheduler", headers=_auth("user-token"))
        assert resp.status == 401

        resp = await client.post("/agent_scheduler", headers=_auth())
        assert resp.status == 200
        assert (await resp.json())["total"] == 0
    scheduler.run_once.assert_awaited_once()


# --- Metrics ---

@pytest.mark.asyncio
async def test_metrics_endpoint():
    async with TestClient(TestServer(_app())) as client:
        resp = await client.get("/metrics")
        assert resp.status == 200
        text = await resp.text()
        assert "al_assessments_total" in text
