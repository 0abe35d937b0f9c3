"""API Server — aiohttp app with CORS and error middlewares, REST routes and /metrics."""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from aiohttp import web

from agentloop.api import ctx_key
from agentloop.api.metrics import metrics_handler
from agentloop.api.routes import setup_routes
from agentloop.shell.errors import AgentLoopError, status_for

log = structlog.get_logger()

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "POST, GET, OPTIONS",
}


@web.middleware
async def cors_middleware(request: web.Request, handler):
    """Answer preflight requests and stamp CORS headers on every response."""
    if request.method == "OPTIONS":
        return web.Response(status=204, headers=CORS_HEADERS)
    response = await handler(request)
    response.headers.update(CORS_HEADERS)
    return response


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Map domain errors to {success: false, error}. No tracebacks to clients."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except Exception as e:
        status = status_for(e)
        if isinstance(e, AgentLoopError):
            log.warning("api.request_failed", path=request.path, status=status, error=str(e),
                        error_type=type(e).__name__)
        else:
            log.error("api.unhandled_error", path=request.path, error=str(e),
                      error_type=type(e).__name__)
        return web.json_response(
            {"success": False, "error": str(e) or "An unexpected error occurred"}, status=status,
        )


def create_app(config, db, orchestrator, scheduler, authenticator) -> web.Application:
    """Create and configure the aiohttp application."""
    app = web.Application(middlewares=[cors_middleware, error_middleware])

    app[ctx_key] = {
        "config": config,
        "db": db,
        "orchestrator": orchestrator,
        "scheduler": scheduler,
        "authenticator": authenticator,
        "started_at": datetime.now(timezone.utc),
    }

    setup_routes(app)

    # Prometheus metrics (no auth)
    app.router.add_get("/metrics", metrics_handler)

    return app
