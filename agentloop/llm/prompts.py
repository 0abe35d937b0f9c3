"""Prompt template resolution and placeholder substitution.

Resolution order: the agent's selected prompt for the run type, then the
best user/global default in the store, then the built-in templates below.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import pandas as pd
import structlog

from agentloop.shell.contract import Agent, MarketAsset, PnLMetrics, PromptRecord, PromptType, Trade
from agentloop.shell.store import Store

log = structlog.get_logger()

_ACTION_FORMAT = (
    "Respond with a single JSON object in a ```json fenced block with this shape:\n"
    '{"headline": {"short_summary": "...", "extended_summary": "...", "thesis": "...", '
    '"sentiment_word": "...", "sentiment_score": 0.0}, '
    '"overview": {"macro": "...", "market_structure": "...", "technical_analysis": "..."}, '
    '"tradeActions": [{"action": "OPEN_LONG|OPEN_SHORT|CLOSE_LONG|CLOSE_SHORT|NO_ACTION", '
    '"asset": "BTC", "leverage": 2, "size": 100, "entry": null, "stopLoss": null, '
    '"takeProfit": null, "confidenceScore": 0.7, "reasoning": "..."}]}\n\n'
    "If no trade is warranted, return tradeActions with a single NO_ACTION entry."
)

FALLBACK_PROMPTS: dict[PromptType, PromptRecord] = {
    PromptType.MARKET_SCAN: PromptRecord(
        prompt_type=PromptType.MARKET_SCAN,
        name="Built-in market scan",
        system_instruction=(
            "You are 'AlphaQuant', a highly risk-averse, world-class quantitative crypto analyst. "
            "Your goal is to identify high-probability trades with defined entry/exit points, leveraging "
            "real-time data and grounded web search analysis. You must always justify your trade using "
            "market structure, macroeconomic trends, or technical analysis.\n\n" + _ACTION_FORMAT
        ),
        user_template=(
            "Timestamp: {{TIMESTAMP}}\n"
            "Current Market State: {{MARKET_PRICES}}.\n\n"
            "Account value: {{ACCOUNT_VALUE}}. Available cash: {{REMAINING_CASH}}.\n\n"
            "Open Positions: {{OPEN_POSITIONS}}.\n\n"
            "Recent 5m candles: {{CANDLE_DATA_5M}}\n\n"
            "Based on this data and the most relevant news/macro trends from your web search, "
            "perform a comprehensive market assessment and decide whether a trade is warranted."
        ),
    ),
    PromptType.POSITION_REVIEW: PromptRecord(
        prompt_type=PromptType.POSITION_REVIEW,
        name="Built-in position review",
        system_instruction=(
            "You are 'AlphaQuant', a highly risk-averse, world-class quantitative crypto analyst. "
            "Your primary objective is position management. You must assess all current open trades "
            "against their original thesis, considering current price action and the latest market "
            "events obtained via web search.\n\n" + _ACTION_FORMAT
        ),
        user_template=(
            "Timestamp: {{TIMESTAMP}}\n"
            "Current Market State: {{MARKET_PRICES}}.\n\n"
            "Account value: {{ACCOUNT_VALUE}}. Available cash: {{REMAINING_CASH}}.\n\n"
            "Open Positions: {{OPEN_POSITIONS}}.\n\n"
            "Provide a position management assessment for each open trade. Close positions whose "
            "thesis no longer holds; return NO_ACTION when holding is preferred."
        ),
    ),
}

PLACEHOLDERS = {
    "MARKET_PRICES": "Comma separated list of tracked assets with price and 24h change",
    "MARKET_DATA_JSON": "JSON payload of the market data array",
    "OPEN_POSITIONS": 'Human-readable string of current open positions or "None"',
    "OPEN_POSITIONS_JSON": "JSON payload of current open positions",
    "PROMPT_TYPE": "The prompt type being executed (MARKET_SCAN or POSITION_REVIEW)",
    "TIMESTAMP": "ISO timestamp when the prompt was generated",
    "ACCOUNT_VALUE": "Initial capital plus realized and unrealized PnL",
    "REMAINING_CASH": "Account value minus margin committed to open positions",
    "AVAILABLE_USDT": "Same as REMAINING_CASH, as a bare number",
    "CANDLE_DATA_5M": "JSON map of coin to recent candles",
}


@dataclass(frozen=True)
class BuiltPrompt:
    system_instruction: str
    user_query: str
    prompt_id: str | None


def determine_prompt_type(open_positions: list[Trade]) -> PromptType:
    return PromptType.POSITION_REVIEW if open_positions else PromptType.MARKET_SCAN


async def resolve_prompt_template(store: Store, agent: Agent, prompt_type: PromptType) -> PromptRecord:
    selected = agent.market_prompt_id if prompt_type is PromptType.MARKET_SCAN else agent.position_prompt_id
    if selected:
        record = await store.get_active_prompt(selected)
        if record is not None:
            return record
        log.warning("prompts.selected_missing", agent_id=agent.id, prompt_id=selected)

    record = await store.find_default_prompt(agent.user_id, prompt_type)
    if record is not None:
        return record

    return FALLBACK_PROMPTS[prompt_type]


def _money(value: float | None) -> str:
    return f"${value:,.2f}" if value is not None else "N/A"


def format_market_prices(market_data: list[MarketAsset]) -> str:
    parts = []
    for asset in market_data:
        change = asset.change_24h if asset.change_24h is not None else 0.0
        parts.append(f"{asset.symbol}: ${asset.price:,.2f} ({change:+.2f}%)")
    return ", ".join(parts)


def _candles_json(candles: dict[str, pd.DataFrame] | None) -> str:
    if not candles:
        return "N/A"
    payload = {coin: df.to_dict(orient="records") for coin, df in candles.items()}
    return json.dumps(payload, indent=2)


def build_prompt(
    template: PromptRecord,
    *,
    prompt_type: PromptType,
    market_data: list[MarketAsset],
    open_positions: list[Trade],
    metrics: PnLMetrics | None = None,
    candles: dict[str, pd.DataFrame] | None = None,
    now: datetime | None = None,
) -> BuiltPrompt:
    market_prices = format_market_prices(market_data)
    positions_json = json.dumps([p.to_dict() for p in open_positions], indent=2)
    positions_text = positions_json if open_positions else "None"

    replacements: dict[str, Any] = {
        "MARKET_PRICES": market_prices,
        "MARKET_DATA_JSON": json.dumps([a.to_dict() for a in market_data], indent=2),
        "OPEN_POSITIONS": positions_text,
        "OPEN_POSITIONS_JSON": positions_json,
        "PROMPT_TYPE": prompt_type.value,
        "TIMESTAMP": (now or datetime.now(timezone.utc)).isoformat(),
        "ACCOUNT_VALUE": _money(metrics.account_value if metrics else None),
        "REMAINING_CASH": _money(metrics.remaining_cash if metrics else None),
        "AVAILABLE_USDT": f"{metrics.remaining_cash:.2f}" if metrics else "N/A",
        "CANDLE_DATA_5M": _candles_json(candles),
    }

    user_query = template.user_template or ""
    for token, value in replacements.items():
        user_query = user_query.replace(f"{{{{{token}}}}}", value)

    if not user_query.strip():
        user_query = (
            f"Current Market State: {market_prices}.\n\n"
            f"Open Positions: {positions_text}.\n\n"
            "Provide analysis and respond using ACTION_JSON."
        )

    return BuiltPrompt(
        system_instruction=template.system_instruction or "",
        user_query=user_query,
        prompt_id=template.id,
    )
