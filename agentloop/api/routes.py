"""REST API endpoint handlers."""

from __future__ import annotations

import json

import structlog
from aiohttp import web

from agentloop.api import ctx_key
from agentloop.llm.normalizer import normalize_trade_action
from agentloop.shell.contract import ActionType
from agentloop.shell.errors import UnauthorizedError, ValidationError

log = structlog.get_logger()


async def _json_body(request: web.Request) -> dict:
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except json.JSONDecodeError:
        raise ValidationError("Request body must be JSON")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _agent_id(body: dict) -> str:
    agent_id = body.get("agent_id") or body.get("agentId")
    if not agent_id or not isinstance(agent_id, str):
        raise ValidationError("agent_id is required")
    return agent_id


async def run_assessment_handler(request: web.Request) -> web.Response:
    ctx = request.app[ctx_key]
    auth = await ctx["authenticator"].authenticate(request.headers.get("Authorization"))
    body = await _json_body(request)
    result = await ctx["orchestrator"].run(_agent_id(body), auth=auth)
    return web.json_response(result)


async def execute_trade_handler(request: web.Request) -> web.Response:
    ctx = request.app[ctx_key]
    auth = await ctx["authenticator"].authenticate(request.headers.get("Authorization"))
    body = await _json_body(request)
    agent_id = _agent_id(body)

    action = normalize_trade_action(body.get("action"))
    if action is None or action.action is ActionType.NO_ACTION:
        raise ValidationError("action must be an OPEN_* or CLOSE_* trade action with an asset")

    simulate = body.get("simulate")
    if simulate is not None and not isinstance(simulate, bool):
        raise ValidationError("simulate must be a boolean")

    result = await ctx["orchestrator"].execute_action(agent_id, action, simulate, auth)
    return web.json_response({"success": True, "action": action.to_dict(), "result": result})


async def scheduler_handler(request: web.Request) -> web.Response:
    ctx = request.app[ctx_key]
    auth = await ctx["authenticator"].authenticate(request.headers.get("Authorization"))
    if not auth.is_service_request:
        raise UnauthorizedError("Scheduler requires the service key")
    result = await ctx["scheduler"].run_once()
    return web.json_response(result)


async def health_handler(request: web.Request) -> web.Response:
    return web.json_response({"success": True, "status": "ok"})


def setup_routes(app: web.Application) -> None:
    """Register all REST API routes."""
    app.router.add_post("/run_agent_assessment", run_assessment_handler)
    app.router.add_post("/execute_hyperliquid_trade", execute_trade_handler)
    app.router.add_post("/agent_scheduler", scheduler_handler)
    app.router.add_get("/health", health_handler)
