"""Prompt resolution and placeholder substitution tests."""

import os
import tempfile
from datetime import datetime, timezone

import pandas as pd
import pytest


def _market():
    from agentloop.shell.contract import MarketAsset
    return [
        MarketAsset(symbol="BTC-PERP", price=97000.0, change_24h=1.234),
        MarketAsset(symbol="ETH-PERP", price=3200.5, change_24h=-0.5),
    ]


def _position():
    from agentloop.shell.contract import Trade
    return Trade(id="p1", agent_id="a1", asset="BTC", side="LONG", size=500.0, quantity=0.01,
                 entry_price=96000.0, entry_timestamp="2025-01-01T00:00:00+00:00", leverage=2.0)


def test_determine_prompt_type():
    from agentloop.llm.prompts import determine_prompt_type
    from agentloop.shell.contract import PromptType
    assert determine_prompt_type([]) is PromptType.MARKET_SCAN
    assert determine_prompt_type([_position()]) is PromptType.POSITION_REVIEW


def test_format_market_prices():
    from agentloop.llm.prompts import format_market_prices
    assert format_market_prices(_market()) == "BTC-PERP: $97,000.00 (+1.23%), ETH-PERP: $3,200.50 (-0.50%)"


def test_build_prompt_replaces_every_placeholder():
    from agentloop.llm.prompts import PLACEHOLDERS, build_prompt
    from agentloop.shell.contract import PnLMetrics, PromptRecord, PromptType

    template = PromptRecord(
        prompt_type=PromptType.POSITION_REVIEW,
        system_instruction="You manage risk.",
        user_template=" | ".join(f"{{{{{name}}}}}" for name in PLACEHOLDERS),
        id="prompt-1",
    )
    metrics = PnLMetrics(realized_pnl=0.0, unrealized_pnl=10.0, account_value=10010.0,
                         margin_used=500.0, remaining_cash=9510.0)
    candles = {"BTC": pd.DataFrame([{"time": 1, "open": 1.0, "high": 2.0, "low": 0.5,
                                     "close": 1.5, "volume": 10.0}])}
    now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    built = build_prompt(template, prompt_type=PromptType.POSITION_REVIEW, market_data=_market(),
                         open_positions=[_position()], metrics=metrics, candles=candles, now=now)

    assert "{{" not in built.user_query
    assert built.system_instruction == "You manage risk."
    assert built.prompt_id == "prompt-1"
    assert "$10,010.00" in built.user_query
    assert "9510.00" in built.user_query
    assert "POSITION_REVIEW" in built.user_query
    assert "2025-01-01T00:00:00+00:00" in built.user_query
    assert '"entry_price": 96000.0' in built.user_query
    assert '"close": 1.5' in built.user_query


def test_build_prompt_without_positions_or_template():
    from agentloop.llm.prompts import build_prompt
    from agentloop.shell.contract import PromptRecord, PromptType

    built = build_prompt(
        PromptRecord(prompt_type=PromptType.MARKET_SCAN, system_instruction="s", user_template=""),
        prompt_type=PromptType.MARKET_SCAN, market_data=_market(), open_positions=[],
    )
    assert "Open Positions: None." in built.user_query
    assert "BTC-PERP: $97,000.00" in built.user_query
    assert built.prompt_id is None


@pytest.mark.asyncio
async def test_resolve_prompt_template_order():
    from agentloop.llm.prompts import FALLBACK_PROMPTS, resolve_prompt_template
    from agentloop.shell.contract import Agent, PromptType
    from agentloop.shell.database import Database
    from agentloop.shell.store import Store

    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name
    db = Database(db_path)
    await db.connect()
    try:
        store = Store(db)
        agent = Agent(id="a1", user_id="u1", name="A")

        # Nothing stored: built-in template
        record = await resolve_prompt_template(store, agent, PromptType.MARKET_SCAN)
        assert record is FALLBACK_PROMPTS[PromptType.MARKET_SCAN]

        default_id = await store.create_prompt(PromptType.MARKET_SCAN, "sys", "default", is_default=True)
        record = await resolve_prompt_template(store, agent, PromptType.MARKET_SCAN)
        assert record.id == default_id

        selected_id = await store.create_prompt(PromptType.MARKET_SCAN, "sys", "picked", user_id="u1")
        agent.market_prompt_id = selected_id
        record = await resolve_prompt_template(store, agent, PromptType.MARKET_SCAN)
        assert record.user_template == "picked"

        # Selected prompt missing and no stored default: built-in template
        agent.position_prompt_id = "deleted"
        record = await resolve_prompt_template(store, agent, PromptType.POSITION_REVIEW)
        assert record is FALLBACK_PROMPTS[PromptType.POSITION_REVIEW]
    finally:
        await db.close()
        os.unlink(db_path)
