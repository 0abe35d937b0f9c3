"""agentloop — main entry point.

Startup: load config -> connect DB -> build clients -> start API -> start scheduler
Shutdown: stop scheduler -> stop API -> close clients -> close DB
"""

from __future__ import annotations

import asyncio
import signal

import structlog
from aiohttp import web
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from agentloop import __version__
from agentloop.api import metrics
from agentloop.api.server import create_app
from agentloop.llm.providers import LLMRouter
from agentloop.orchestrator.assessment import AssessmentOrchestrator
from agentloop.orchestrator.scheduler import AgentScheduler
from agentloop.shell.auth import Authenticator
from agentloop.shell.config import Config, load_config
from agentloop.shell.database import Database
from agentloop.shell.hyperliquid import AssetMetaCache, HyperliquidClient
from agentloop.shell.ledger import Ledger
from agentloop.shell.store import Store
from agentloop.trading.executor import InProcessTradeExecutor, RemoteTradeExecutor, TradeExecutor
from agentloop.utils.logging import setup_logging

log = structlog.get_logger()


class AgentLoop:
    """Main application — wires the components and runs the scheduler."""

    def __init__(self) -> None:
        self._config: Config | None = None
        self._db: Database | None = None
        self._hyperliquid: HyperliquidClient | None = None
        self._router: LLMRouter | None = None
        self._executor: TradeExecutor | None = None
        self._agent_scheduler: AgentScheduler | None = None
        self._scheduler: AsyncIOScheduler | None = None
        self._api_runner: web.AppRunner | None = None
        self._running = False

    async def start(self) -> None:
        """Full startup sequence."""
        log.info("agentloop.starting", version=__version__)

        # 1. Config
        self._config = load_config()
        setup_logging(self._config.log_level)
        log.info("config.loaded", network=self._config.hyperliquid.network,
                 executor=self._config.api.executor, assets=self._config.hyperliquid.tracked_assets)
        metrics.system_info.info({"version": __version__, "network": self._config.hyperliquid.network})

        # 2. Database
        self._db = Database(self._config.db_path)
        await self._db.connect()
        store = Store(self._db)
        ledger = Ledger(self._db)

        # 3. Clients
        self._hyperliquid = HyperliquidClient(self._config.hyperliquid)
        asset_cache = AssetMetaCache(self._hyperliquid)
        self._router = LLMRouter(self._config.llm)
        authenticator = Authenticator(store, self._config.api.service_key)

        trade_service = InProcessTradeExecutor(
            ledger, self._hyperliquid, asset_cache, self._config.hyperliquid, self._config.trading,
        )
        if self._config.api.executor == "remote":
            self._executor = RemoteTradeExecutor(self._config.api.execute_url, self._config.api.service_key)
        else:
            self._executor = trade_service

        orchestrator = AssessmentOrchestrator(
            store, ledger, self._hyperliquid, self._router, self._executor, authenticator,
            self._config.hyperliquid, trade_service=trade_service,
        )
        self._agent_scheduler = AgentScheduler(store, orchestrator, self._config.scheduler.concurrency)

        # 4. API server
        if self._config.api.enabled:
            app = create_app(self._config, self._db, orchestrator, self._agent_scheduler, authenticator)
            self._api_runner = web.AppRunner(app)
            await self._api_runner.setup()
            site = web.TCPSite(self._api_runner, self._config.api.host, self._config.api.port)
            await site.start()
            log.info("api.started", host=self._config.api.host, port=self._config.api.port)

        # 5. Scheduler
        self._scheduler = AsyncIOScheduler()
        if self._config.scheduler.enabled:
            self._scheduler.add_job(
                self._agent_scheduler.run_once,
                IntervalTrigger(minutes=self._config.scheduler.interval_minutes),
                id="agent_scheduler", max_instances=1, coalesce=True,
            )
            log.info("scheduler.configured", interval_minutes=self._config.scheduler.interval_minutes)
        self._scheduler.start()

        self._running = True
        log.info("agentloop.started")

        # Keep alive
        while self._running:
            await asyncio.sleep(1)

    async def stop(self) -> None:
        """Graceful shutdown sequence."""
        log.info("agentloop.stopping")
        self._running = False

        if self._scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=False)

        if self._api_runner:
            await self._api_runner.cleanup()

        if isinstance(self._executor, RemoteTradeExecutor):
            await self._executor.close()
        if self._router:
            await self._router.close()
        if self._hyperliquid:
            await self._hyperliquid.close()

        if self._db:
            await self._db.close()

        log.info("agentloop.stopped")


async def main() -> None:
    app = AgentLoop()

    # Handle SIGTERM/SIGINT for graceful shutdown
    loop = asyncio.get_running_loop()

    _stop_task = None

    def signal_handler():
        nonlocal _stop_task
        if _stop_task is None:
            _stop_task = asyncio.create_task(app.stop())

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.start()
    except KeyboardInterrupt:
        pass
    finally:
        if app._running:
            await app.stop()
        elif _stop_task is not None:
            await _stop_task


def run() -> None:
    """Entry point for pyproject.toml script."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
