"""Assessment Orchestrator — one agent, one full market-assessment cycle.

Load agent → load ledger + market state → PnL → prompt → LLM → normalize →
persist assessment and PnL snapshot → reconcile → execute each decision.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone

import pandas as pd
import structlog

from agentloop.api import metrics
from agentloop.llm.normalizer import parse_llm_text
from agentloop.llm.prompts import build_prompt, determine_prompt_type, resolve_prompt_template
from agentloop.llm.providers import LLMRouter
from agentloop.shell.auth import AuthContext, Authenticator
from agentloop.shell.config import HyperliquidConfig
from agentloop.shell.contract import Agent, LLMTradeAction
from agentloop.shell.errors import NotFoundError
from agentloop.shell.hyperliquid import CANDLE_COLUMNS, HyperliquidClient
from agentloop.shell.ledger import Ledger
from agentloop.shell.pnl import calculate_pnl_metrics, price_map
from agentloop.shell.store import Store
from agentloop.trading.executor import ExecutionContext, InProcessTradeExecutor, TradeExecutor
from agentloop.trading.reconciler import reconcile

log = structlog.get_logger()

SERVICE_AUTH = AuthContext(user_id=None, is_service_request=True)


class AssessmentOrchestrator:
    def __init__(
        self,
        store: Store,
        ledger: Ledger,
        market: HyperliquidClient,
        router: LLMRouter,
        executor: TradeExecutor,
        authenticator: Authenticator,
        hl_config: HyperliquidConfig,
        trade_service: InProcessTradeExecutor | None = None,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._market = market
        self._router = router
        self._executor = executor
        self._auth = authenticator
        self._hl = hl_config
        self._trade_service = trade_service

    async def load_agent(self, agent_id: str, auth: AuthContext) -> Agent:
        """Agent visible to the caller. Other users' agents look missing."""
        agent = await self._store.get_agent(agent_id)
        if agent is None or (not auth.is_service_request and agent.user_id != auth.user_id):
            raise NotFoundError("Agent not found or unauthorized")
        return agent

    async def _candles(self) -> dict[str, pd.DataFrame]:
        """5m candles per tracked coin. A failed coin yields an empty frame."""
        coins = list(self._hl.tracked_assets)
        results = await asyncio.gather(
            *(self._market.get_candles(c, self._hl.candle_interval_minutes, self._hl.candle_lookback_hours)
              for c in coins),
            return_exceptions=True,
        )
        candles = {}
        for coin, result in zip(coins, results):
            if isinstance(result, Exception):
                log.warning("assessment.candles_failed", coin=coin, error=str(result))
                result = pd.DataFrame(columns=CANDLE_COLUMNS)
            candles[coin] = result
        return candles

    async def run(self, agent_id: str, auth_header: str | None = None, *,
                  auth: AuthContext | None = None) -> dict:
        if auth is None:
            auth = await self._auth.authenticate(auth_header)

        with structlog.contextvars.bound_contextvars(agent_id=agent_id):
            start = time.monotonic()
            try:
                result = await self._run(agent_id, auth)
            except Exception:
                metrics.assessments_total.labels(outcome="error").inc()
                raise
            finally:
                metrics.assessment_seconds.observe(time.monotonic() - start)
            metrics.assessments_total.labels(outcome="skipped" if result.get("skipped") else "ok").inc()
            return result

    async def _run(self, agent_id: str, auth: AuthContext) -> dict:
        agent = await self.load_agent(agent_id, auth)
        if not agent.is_active:
            log.info("assessment.skipped_inactive", agent_name=agent.name)
            return {"success": True, "skipped": True, "message": "Agent inactive", "agent_name": agent.name}

        open_positions, closed_trades, market_data, candles = await asyncio.gather(
            self._ledger.open_positions(agent.id),
            self._ledger.closed_trades(agent.id),
            self._market.market_data(self._hl.tracked_assets),
            self._candles(),
        )
        pnl = calculate_pnl_metrics(agent.initial_capital, closed_trades, open_positions, market_data)

        prompt_type = determine_prompt_type(open_positions)
        template = await resolve_prompt_template(self._store, agent, prompt_type)
        prompt = build_prompt(
            template,
            prompt_type=prompt_type,
            market_data=market_data,
            open_positions=open_positions,
            metrics=pnl,
            candles=candles,
        )
        log.info("assessment.prompt_built", type=prompt_type.value, prompt_id=prompt.prompt_id,
                 open_positions=len(open_positions), provider=agent.llm_provider)

        response = await self._router.call(
            agent.llm_provider, prompt.system_instruction, prompt.user_query, agent.model_name,
        )
        parsed = parse_llm_text(response.text)
        metrics.parse_strategy_total.labels(strategy=parsed.strategy).inc()
        trade_actions = parsed.trade_actions

        assessment_id = await self._store.save_assessment(
            agent_id=agent.id,
            assessment_type=prompt_type,
            market_data_snapshot={
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "market_prices": [a.to_dict() for a in market_data],
                "open_positions": [p.to_dict() for p in open_positions],
            },
            prompt_used=f"{prompt.system_instruction}\n\n{prompt.user_query}",
            response_text=response.text,
            parsed_response=parsed.parsed.to_dict() if parsed.parsed else None,
            trade_action_taken=parsed.legacy_action,
        )

        try:
            await self._store.save_pnl_snapshot(agent.id, assessment_id, pnl, len(open_positions))
        except Exception as e:
            metrics.snapshot_failures_total.inc()
            log.warning("assessment.snapshot_failed", assessment_id=assessment_id, error=str(e))

        decisions = reconcile(trade_actions, open_positions)
        context = ExecutionContext(
            simulate=agent.simulate,
            remaining_cash=pnl.remaining_cash,
            prices=price_map(market_data),
        )
        trade_results = []
        for decision in decisions:
            try:
                result = await self._executor.execute(agent, decision, context)
                trade_results.append({"action": decision.action.to_dict(), "result": result})
            except Exception as e:
                log.error("assessment.trade_failed", asset=decision.asset,
                          action=decision.action.action.value, error=str(e))
                trade_results.append({"action": decision.action.to_dict(), "error": str(e)})

        log.info("assessment.complete", assessment_id=assessment_id, type=prompt_type.value,
                 actions=len(trade_actions), executed=len(decisions))
        return {
            "success": True,
            "assessment_id": assessment_id,
            "agent_name": agent.name,
            "simulate": agent.simulate,
            "type": prompt_type.value,
            "trade_actions": [a.to_dict() for a in trade_actions],
            "trade_results": trade_results,
        }

    async def execute_action(self, agent_id: str, action: LLMTradeAction, simulate: bool | None,
                             auth: AuthContext) -> dict:
        """Run one action outside an assessment (the trade endpoint)."""
        if self._trade_service is None:
            raise RuntimeError("In-process trade execution is not configured")
        agent = await self.load_agent(agent_id, auth)
        with structlog.contextvars.bound_contextvars(agent_id=agent_id):
            return await self._trade_service.execute_action(
                agent, action, agent.simulate if simulate is None else simulate,
            )
