"""Trade executors — turn reconciled decisions into fills.

InProcessTradeExecutor maps, submits (or paper-fills) and records to the
ledger directly. RemoteTradeExecutor hands the decision to the
/execute_hyperliquid_trade endpoint of another process.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

import httpx
import structlog

from agentloop.api import metrics
from agentloop.shell.config import HyperliquidConfig, TradingConfig
from agentloop.shell.contract import Agent, LLMTradeAction, OrderIntent, OrderKind, Trade, base_coin
from agentloop.shell.errors import ExchangeError, NotFoundError, ValidationError
from agentloop.shell.hyperliquid import AssetMetaCache, HyperliquidClient
from agentloop.shell.ledger import Ledger
from agentloop.shell.numeric import to_number
from agentloop.shell.pnl import calculate_pnl_metrics, price_map, trade_pnl
from agentloop.trading.mapping import OrderOptions, to_order
from agentloop.trading.reconciler import TradeDecision, reconcile

log = structlog.get_logger()


@dataclass(frozen=True)
class ExecutionContext:
    simulate: bool
    remaining_cash: float
    prices: dict[str, float] = field(default_factory=dict)


class TradeExecutor:
    """Base class for executors."""

    async def execute(self, agent: Agent, decision: TradeDecision, context: ExecutionContext) -> dict:
        raise NotImplementedError


def _fill_from_response(result: dict) -> tuple[float | None, float | None, int | None]:
    """(avg price, filled size, order id) from an exchange order response."""
    statuses = (result.get("response") or {}).get("data", {}).get("statuses", [])
    for status in statuses:
        if not isinstance(status, dict):
            continue
        if "filled" in status:
            filled = status["filled"]
            return to_number(filled.get("avgPx")) or None, to_number(filled.get("totalSz")) or None, filled.get("oid")
        if "resting" in status:
            return None, None, status["resting"].get("oid")
    return None, None, None


class InProcessTradeExecutor(TradeExecutor):
    def __init__(
        self,
        ledger: Ledger,
        client: HyperliquidClient,
        asset_cache: AssetMetaCache,
        hl_config: HyperliquidConfig,
        trading_config: TradingConfig,
    ) -> None:
        self._ledger = ledger
        self._client = client
        self._assets = asset_cache
        self._hl_config = hl_config
        self._trading = trading_config

    async def execute(self, agent: Agent, decision: TradeDecision, context: ExecutionContext) -> dict:
        mode = "paper" if context.simulate else "real"
        try:
            if decision.kind is OrderKind.OPEN:
                result = await self._open(agent, decision.action, context)
            elif decision.kind is OrderKind.CLOSE:
                result = await self._close(agent, decision, context)
            else:
                raise ValueError(f"Unsupported decision kind: {decision.kind!r}")
        except Exception:
            metrics.orders_total.labels(kind=decision.kind.value, mode=mode, outcome="error").inc()
            raise
        metrics.orders_total.labels(kind=decision.kind.value, mode=mode, outcome="ok").inc()
        return result

    def _private_key(self) -> str:
        if not self._hl_config.private_key:
            raise ExchangeError("HYPERLIQUID_PRIVATE_KEY is required for live trading")
        return self._hl_config.private_key

    async def _open(self, agent: Agent, action: LLMTradeAction, context: ExecutionContext) -> dict:
        coin = base_coin(action.asset)
        meta = await self._assets.get(coin, mid_px=context.prices.get(coin))

        leverage = action.leverage or self._trading.default_leverage
        leverage = max(1.0, min(float(leverage), float(meta.max_leverage)))
        collateral = action.size or context.remaining_cash * self._trading.default_collateral_pct
        collateral = max(float(collateral), self._trading.min_collateral_usd)

        side = action.action.side
        intent = OrderIntent(
            kind=OrderKind.OPEN,
            direction=side,
            trade_amount=collateral * leverage,
            limit_price=action.entry,
            leverage=leverage,
        )
        position_id = str(uuid.uuid4())
        cloid = "0x" + uuid.uuid4().hex
        order = to_order(meta, intent, None, OrderOptions(cloid=cloid, slippage=self._hl_config.slippage))
        wire = order["action"]["orders"][0]

        fill_price = action.entry or meta.mid_px
        quantity = float(wire["s"])
        exchange_response = None
        order_id = None
        if not context.simulate:
            exchange_response = await self._client.order(order, self._private_key())
            avg_px, filled_sz, order_id = _fill_from_response(exchange_response)
            if not filled_sz:
                log.info("executor.order_resting", agent_id=agent.id, asset=coin, side=side, oid=order_id)
                return {
                    "kind": "OPEN",
                    "status": "resting",
                    "asset": coin,
                    "side": side,
                    "oid": order_id,
                    "simulate": False,
                    "order": order,
                    "exchange_response": exchange_response,
                }
            fill_price = avg_px or fill_price
            quantity = filled_sz

        now = datetime.now(timezone.utc).isoformat()
        await self._ledger.record_execution(
            agent_id=agent.id,
            user_id=agent.user_id,
            symbol=coin,
            execution_side="BUY" if side == "LONG" else "SELL",
            quantity=quantity,
            price=fill_price,
            trade_type="paper" if context.simulate else "real",
            meta={
                "action": "OPEN",
                "action_type": action.action.value,
                "position_id": position_id,
                "position_side": side,
                "leverage": leverage,
                "collateral": collateral,
                "entry_price": fill_price,
                "entry_timestamp": now,
                "position_quantity": quantity,
                "stop_loss": action.stop_loss,
                "take_profit": action.take_profit,
                "confidence_score": action.confidence_score,
                "reasoning": action.reasoning,
                "cloid": cloid,
                "order_id": order_id,
            },
        )
        log.info("executor.opened", agent_id=agent.id, asset=coin, side=side, quantity=quantity,
                 price=fill_price, leverage=leverage, simulate=context.simulate)
        return {
            "kind": "OPEN",
            "asset": coin,
            "side": side,
            "position_id": position_id,
            "quantity": quantity,
            "price": fill_price,
            "collateral": collateral,
            "leverage": leverage,
            "simulate": context.simulate,
            "order": order,
            "exchange_response": exchange_response,
        }

    async def _close(self, agent: Agent, decision: TradeDecision, context: ExecutionContext) -> dict:
        position: Trade = decision.position
        action = decision.action
        coin = base_coin(position.asset)
        meta = await self._assets.get(coin, mid_px=context.prices.get(coin))

        ledger_szi = position.quantity if position.side == "LONG" else -position.quantity
        if context.simulate:
            szi = ledger_szi
        else:
            if not agent.hyperliquid_address:
                raise ExchangeError(f"Agent {agent.id} has no Hyperliquid address")
            exchange_position = await self._client.get_position(agent.hyperliquid_address, coin)
            if exchange_position is None or not exchange_position.size:
                raise ExchangeError(f"No open {coin} position on exchange")
            # Exchange nets per coin; never reduce more than this ledger position holds
            szi = exchange_position.size
            if position.quantity and position.quantity < abs(szi):
                szi = position.quantity if szi > 0 else -position.quantity

        intent = OrderIntent(kind=OrderKind.CLOSE, exit_limit_price=action.exit_price)
        order = to_order(meta, intent, {"szi": szi}, OrderOptions(slippage=self._hl_config.slippage))
        quantity = float(order["action"]["orders"][0]["s"])

        exit_price = action.exit_price or meta.mid_px
        exchange_response = None
        order_id = None
        if not context.simulate:
            exchange_response = await self._client.order(order, self._private_key())
            avg_px, filled_sz, order_id = _fill_from_response(exchange_response)
            exit_price = avg_px or exit_price
            quantity = filled_sz or quantity

        realized = trade_pnl(position.entry_price, exit_price, quantity, position.side)
        now = datetime.now(timezone.utc).isoformat()
        await self._ledger.record_execution(
            agent_id=agent.id,
            user_id=agent.user_id,
            symbol=coin,
            execution_side="SELL" if position.side == "LONG" else "BUY",
            quantity=quantity,
            price=exit_price,
            realized_pnl=realized,
            trade_type="paper" if context.simulate else "real",
            meta={
                "action": "CLOSE",
                "action_type": action.action.value,
                "position_id": position.id,
                "position_side": position.side,
                "exit_price": exit_price,
                "exit_timestamp": now,
                "realized_pnl": realized,
                "reasoning": action.reasoning,
                "order_id": order_id,
            },
        )
        log.info("executor.closed", agent_id=agent.id, asset=coin, position_id=position.id,
                 quantity=quantity, price=exit_price, realized_pnl=realized, simulate=context.simulate)
        return {
            "kind": "CLOSE",
            "asset": coin,
            "side": position.side,
            "position_id": position.id,
            "quantity": quantity,
            "price": exit_price,
            "realized_pnl": realized,
            "simulate": context.simulate,
            "order": order,
            "exchange_response": exchange_response,
        }

    async def execute_action(self, agent: Agent, action: LLMTradeAction, simulate: bool) -> dict:
        """Standalone execution of one action, outside an assessment run."""
        if not (action.action.is_open or action.action.is_close):
            raise ValidationError(f"Unknown action type: {action.action.value}")

        positions = await self._ledger.positions(agent.id)
        open_positions = [p for p in positions if p.is_open]
        closed_trades = [p for p in positions if not p.is_open]

        decisions = reconcile([action], open_positions)
        if not decisions:
            raise NotFoundError(f"No open {action.asset} position to close")

        market = await self._client.market_data(self._hl_config.tracked_assets)
        pnl = calculate_pnl_metrics(agent.initial_capital, closed_trades, open_positions, market)
        context = ExecutionContext(simulate=simulate, remaining_cash=pnl.remaining_cash,
                                   prices=price_map(market))
        return await self.execute(agent, decisions[0], context)


class RemoteTradeExecutor(TradeExecutor):
    """Posts decisions to a remote /execute_hyperliquid_trade endpoint."""

    def __init__(self, url: str, service_key: str, http: httpx.AsyncClient | None = None) -> None:
        self._url = url
        self._service_key = service_key
        self._http = http or httpx.AsyncClient(timeout=60.0)

    async def close(self) -> None:
        await self._http.aclose()

    async def execute(self, agent: Agent, decision: TradeDecision, context: ExecutionContext) -> dict:
        action = decision.action.to_dict()
        if decision.position is not None:
            action["position_id"] = decision.position.id
        resp = await self._http.post(
            self._url,
            json={"agent_id": agent.id, "action": action, "simulate": context.simulate},
            headers={"Authorization": f"Bearer {self._service_key}"},
        )
        body = resp.json() if resp.content else {}
        if resp.status_code >= 400 or not body.get("success"):
            raise ExchangeError(f"Remote execution failed ({resp.status_code}): {body.get('error', resp.text[:200])}")
        return body
