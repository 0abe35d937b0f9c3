"""Prometheus /metrics endpoint — assessment, LLM, order and scheduler counters."""

from __future__ import annotations

import structlog
from aiohttp import web
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, Info, generate_latest

log = structlog.get_logger()

# Custom registry avoids pytest conflicts with the global default registry.
registry = CollectorRegistry()

# --- Assessments ---
assessments_total = Counter(
    "al_assessments_total", "Assessment runs by outcome", ["outcome"], registry=registry,
)
assessment_seconds = Histogram(
    "al_assessment_seconds", "Wall time of one assessment run", registry=registry,
    buckets=(1, 2, 5, 10, 20, 30, 60, 120, 300),
)
snapshot_failures_total = Counter(
    "al_snapshot_failures_total", "PnL snapshot writes that failed", registry=registry,
)

# --- LLM ---
llm_calls_total = Counter(
    "al_llm_calls_total", "LLM provider calls by provider and outcome", ["provider", "outcome"],
    registry=registry,
)
llm_retries_total = Counter(
    "al_llm_retries_total", "Transient LLM errors retried", ["provider"], registry=registry,
)
parse_strategy_total = Counter(
    "al_parse_strategy_total", "Which normalizer strategy produced the result", ["strategy"],
    registry=registry,
)

# --- Orders ---
orders_total = Counter(
    "al_orders_total", "Order decisions by kind, mode and outcome", ["kind", "mode", "outcome"],
    registry=registry,
)

# --- Scheduler ---
scheduler_runs_total = Counter("al_scheduler_runs_total", "Scheduler fan-out runs", registry=registry)
scheduler_last_agents = Gauge(
    "al_scheduler_last_agents", "Agents seen by the last scheduler run", ["result"], registry=registry,
)

system_info = Info("al_system", "agentloop metadata", registry=registry)


async def metrics_handler(request: web.Request) -> web.Response:
    body = generate_latest(registry)
    return web.Response(body=body, headers={"Content-Type": "text/plain; version=0.0.4; charset=utf-8"})
