"""PnL engine — pure functions over ledger Trades and market prices.

Metrics are recomputed from scratch every run; nothing here is incremental.
Positions carry ``size`` as collateral and ``quantity`` as coin amount (see
``Trade``); quantity is derived when a row lacks it.
"""

from __future__ import annotations

from typing import Iterable

from agentloop.shell.contract import MarketAsset, PnLMetrics, Trade, base_coin
from agentloop.shell.numeric import to_number


def position_quantity(collateral: float, leverage: float, entry_price: float) -> float:
    """Underlying quantity for a collateral commitment. 0 if any input is zero."""
    if not collateral or not leverage or not entry_price:
        return 0.0
    return (collateral * leverage) / entry_price


def trade_pnl(entry_price: float, exit_price: float, quantity: float, side: str) -> float:
    if not entry_price or not exit_price or not quantity:
        return 0.0
    sign = -1.0 if side == "SHORT" else 1.0
    return sign * quantity * (exit_price - entry_price)


def _quantity(position: Trade) -> float:
    if position.quantity:
        return position.quantity
    return position_quantity(position.size, position.leverage or 1.0, position.entry_price)


def price_map(market_data: Iterable[MarketAsset]) -> dict[str, float]:
    """Keyed by base coin so 'BTC', 'btc' and 'BTC-PERP' positions all resolve."""
    return {base_coin(asset.symbol): asset.price for asset in market_data}


def unrealized_pnl(open_positions: Iterable[Trade], prices: dict[str, float]) -> float:
    total = 0.0
    for position in open_positions:
        current = prices.get(base_coin(position.asset))
        if not current:
            # Asset not tracked this run
            continue
        total += trade_pnl(position.entry_price, current, _quantity(position), position.side)
    return total


def realized_pnl(closed_trades: Iterable[Trade]) -> float:
    return sum(to_number(trade.realized_pnl) for trade in closed_trades)


def margin_used(open_positions: Iterable[Trade]) -> float:
    return sum(to_number(position.size) for position in open_positions)


def calculate_pnl_metrics(
    initial_capital: float,
    closed_trades: list[Trade],
    open_positions: list[Trade],
    market_data: list[MarketAsset],
) -> PnLMetrics:
    realized = realized_pnl(closed_trades)
    unrealized = unrealized_pnl(open_positions, price_map(market_data))
    margin = margin_used(open_positions)
    account_value = initial_capital + realized + unrealized
    return PnLMetrics(
        realized_pnl=realized,
        unrealized_pnl=unrealized,
        account_value=account_value,
        margin_used=margin,
        remaining_cash=account_value - margin,
    )
