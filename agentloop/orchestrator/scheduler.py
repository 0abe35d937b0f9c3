"""Scheduler fan-out — one assessment per active agent, bounded concurrency."""

from __future__ import annotations

import asyncio

import structlog

from agentloop.api import metrics
from agentloop.orchestrator.assessment import SERVICE_AUTH, AssessmentOrchestrator
from agentloop.shell.contract import Agent
from agentloop.shell.store import Store

log = structlog.get_logger()

DEFAULT_CONCURRENCY = 50


class AgentScheduler:
    def __init__(self, store: Store, orchestrator: AssessmentOrchestrator,
                 concurrency: int = DEFAULT_CONCURRENCY) -> None:
        self._store = store
        self._orchestrator = orchestrator
        self._concurrency = max(1, concurrency)
        self._running = False

    async def _assess(self, semaphore: asyncio.Semaphore, agent: Agent) -> dict:
        async with semaphore:
            result = await self._orchestrator.run(agent.id, auth=SERVICE_AUTH)
            return {"agent_id": agent.id, "agent_name": agent.name, "success": True, "result": result}

    async def run_once(self) -> dict:
        """Assess every active agent. One agent's failure never affects another."""
        if self._running:
            log.warning("scheduler.already_running")
            return {"success": False, "error": "Scheduler run already in progress"}

        self._running = True
        try:
            agents = await self._store.list_active_agents()
            metrics.scheduler_runs_total.inc()
            log.info("scheduler.start", agents=len(agents), concurrency=self._concurrency)

            semaphore = asyncio.Semaphore(self._concurrency)
            outcomes = await asyncio.gather(
                *(self._assess(semaphore, agent) for agent in agents),
                return_exceptions=True,
            )

            results = []
            for agent, outcome in zip(agents, outcomes):
                if isinstance(outcome, BaseException):
                    log.error("scheduler.agent_failed", agent_id=agent.id, error=str(outcome),
                              error_type=type(outcome).__name__)
                    results.append({"agent_id": agent.id, "agent_name": agent.name,
                                    "success": False, "error": str(outcome)})
                else:
                    results.append(outcome)
        finally:
            self._running = False

        succeeded = sum(1 for r in results if r["success"])
        failed = len(results) - succeeded
        metrics.scheduler_last_agents.labels(result="succeeded").set(succeeded)
        metrics.scheduler_last_agents.labels(result="failed").set(failed)
        log.info("scheduler.complete", total=len(agents), succeeded=succeeded, failed=failed)
        return {
            "success": True,
            "total": len(agents),
            "processed": len(results),
            "succeeded": succeeded,
            "failed": failed,
            "concurrency": self._concurrency,
            "results": results,
        }
