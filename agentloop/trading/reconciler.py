"""Trade action reconciler — normalized actions + open positions -> executable decisions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import structlog

from agentloop.shell.contract import LLMTradeAction, OrderKind, Trade, base_coin

log = structlog.get_logger()


@dataclass(frozen=True)
class TradeDecision:
    kind: OrderKind
    action: LLMTradeAction
    position: Optional[Trade] = None    # set for CLOSE

    @property
    def asset(self) -> str:
        return base_coin(self.action.asset or "")


def match_open_position(action: LLMTradeAction, open_positions: list[Trade]) -> Optional[Trade]:
    """Pick the position a CLOSE refers to.

    Explicit position_id wins, then the oldest position in the asset on the
    side the action names, then the oldest position in the asset on any side.
    """
    if action.position_id:
        for position in open_positions:
            if position.id == action.position_id:
                return position

    coin = base_coin(action.asset or "")
    in_asset = sorted(
        (p for p in open_positions if base_coin(p.asset) == coin),
        key=lambda p: p.entry_timestamp,
    )
    for position in in_asset:
        if position.side == action.action.side:
            return position
    return in_asset[0] if in_asset else None


def reconcile(trade_actions: list[LLMTradeAction], open_positions: list[Trade]) -> list[TradeDecision]:
    """Executable decisions in input order.

    OPENs are never blocked by existing exposure. A CLOSE without a matching
    open position is dropped. Each position is closed at most once per call.
    """
    available = [p for p in open_positions if p.is_open]
    decisions: list[TradeDecision] = []

    for action in trade_actions:
        if action.action.is_open and action.asset:
            decisions.append(TradeDecision(kind=OrderKind.OPEN, action=action))
        elif action.action.is_close:
            position = match_open_position(action, available)
            if position is None:
                log.info("reconciler.close_without_position", asset=action.asset,
                         action=action.action.value)
                continue
            available.remove(position)
            decisions.append(TradeDecision(kind=OrderKind.CLOSE, action=action, position=position))

    return decisions
