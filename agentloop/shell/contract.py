"""Contract types shared by the pipeline stages.

Market snapshots and exchange positions flow in, LLMTradeActions come out of
the normalizer, OrderIntents go into the order mapper. Everything here is a
plain dataclass so stages can be tested without I/O.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from agentloop.shell.numeric import to_number


# --- Enums ---

class ActionType(Enum):
    OPEN_LONG = "OPEN_LONG"
    OPEN_SHORT = "OPEN_SHORT"
    CLOSE_LONG = "CLOSE_LONG"
    CLOSE_SHORT = "CLOSE_SHORT"
    NO_ACTION = "NO_ACTION"

    @property
    def is_open(self) -> bool:
        return self in (ActionType.OPEN_LONG, ActionType.OPEN_SHORT)

    @property
    def is_close(self) -> bool:
        return self in (ActionType.CLOSE_LONG, ActionType.CLOSE_SHORT)

    @property
    def side(self) -> str | None:
        if self in (ActionType.OPEN_LONG, ActionType.CLOSE_LONG):
            return "LONG"
        if self in (ActionType.OPEN_SHORT, ActionType.CLOSE_SHORT):
            return "SHORT"
        return None

    @classmethod
    def parse(cls, value: Any) -> "ActionType | None":
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


class PromptType(Enum):
    MARKET_SCAN = "MARKET_SCAN"
    POSITION_REVIEW = "POSITION_REVIEW"


class OrderKind(Enum):
    OPEN = "OPEN"
    CLOSE = "CLOSE"


def base_coin(symbol: str) -> str:
    """'btc-perp' -> 'BTC'. Market symbols carry a -PERP suffix, exchange coins don't."""
    coin = (symbol or "").strip().upper()
    if coin.endswith("-PERP"):
        coin = coin[: -len("-PERP")]
    return coin


# --- Market state (exchange -> pipeline) ---

@dataclass(frozen=True)
class MarketAsset:
    symbol: str                             # "BTC-PERP"
    price: float
    change_24h: Optional[float] = None      # percent
    funding_rate: Optional[float] = None
    volume_24h: Optional[float] = None
    open_interest: Optional[float] = None

    @property
    def coin(self) -> str:
        return base_coin(self.symbol)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Position:
    """Exchange-reported perp position. Sign of ``size`` encodes side."""
    coin: str
    size: float
    entry_price: float
    leverage: float
    liquidation_price: Optional[float]
    margin_used: float
    position_value: float
    unrealized_pnl: float
    roe: float

    @property
    def side(self) -> str:
        return "SHORT" if self.size < 0 else "LONG"

    @classmethod
    def from_exchange(cls, raw: Mapping[str, Any]) -> "Position":
        """Build from a clearinghouseState ``assetPositions[].position`` entry."""
        leverage = raw.get("leverage") or {}
        if isinstance(leverage, Mapping):
            leverage = leverage.get("value", 1)
        liq = raw.get("liquidationPx")
        return cls(
            coin=str(raw.get("coin", "")),
            size=to_number(raw.get("szi")),
            entry_price=to_number(raw.get("entryPx")),
            leverage=to_number(leverage, 1.0),
            liquidation_price=to_number(liq) if liq is not None else None,
            margin_used=to_number(raw.get("marginUsed")),
            position_value=to_number(raw.get("positionValue")),
            unrealized_pnl=to_number(raw.get("unrealizedPnl")),
            roe=to_number(raw.get("returnOnEquity")),
        )


@dataclass(frozen=True)
class AssetMeta:
    """Per-asset exchange metadata used to quantize order fields."""
    ticker: str
    sz_decimals: int
    max_leverage: int
    mid_px: float
    asset_id: int
    mark_px: Optional[float] = None
    prev_day_px: Optional[float] = None

    @classmethod
    def from_dashed(cls, raw: Mapping[str, Any]) -> "AssetMeta":
        """Accept the dashed-key shape: {"Ticker", "Sz-Decimals", "Asset-Id", ...}."""
        return cls(
            ticker=str(raw["Ticker"]),
            sz_decimals=int(raw["Sz-Decimals"]),
            max_leverage=int(raw.get("Max-Leverage", 1)),
            mid_px=to_number(raw.get("Mid-Px")),
            asset_id=int(raw["Asset-Id"]),
            mark_px=to_number(raw["Mark-Px"]) if raw.get("Mark-Px") is not None else None,
            prev_day_px=to_number(raw["Prev-Day-Px"]) if raw.get("Prev-Day-Px") is not None else None,
        )


# --- Ledger-derived positions ---

@dataclass
class Trade:
    """A position reconstructed from ledger rows sharing a position_id.

    ``size`` is the collateral (USD margin) committed; ``quantity`` is the
    underlying coin amount.
    """
    id: str
    agent_id: str
    asset: str
    side: str                   # "LONG" or "SHORT"
    size: float
    quantity: float
    entry_price: float
    entry_timestamp: str
    leverage: float = 1.0
    status: str = "OPEN"        # "OPEN" or "CLOSED"
    exit_price: Optional[float] = None
    exit_timestamp: Optional[str] = None
    realized_pnl: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self.status == "OPEN"

    def to_dict(self) -> dict:
        return asdict(self)


# --- LLM output ---

@dataclass(frozen=True)
class LLMTradeAction:
    action: ActionType
    asset: Optional[str] = None
    leverage: Optional[float] = None
    size: Optional[float] = None            # collateral in USD
    entry: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    confidence_score: Optional[float] = None
    reasoning: Optional[str] = None
    position_id: Optional[str] = None
    exit_price: Optional[float] = None

    def to_dict(self) -> dict:
        data = {
            "action": self.action.value,
            "asset": self.asset,
            "leverage": self.leverage,
            "size": self.size,
            "entry": self.entry,
            "stopLoss": self.stop_loss,
            "takeProfit": self.take_profit,
            "confidenceScore": self.confidence_score,
            "reasoning": self.reasoning,
            "position_id": self.position_id,
            "exit_price": self.exit_price,
        }
        return {k: v for k, v in data.items() if v is not None}


@dataclass(frozen=True)
class Headline:
    short_summary: Optional[str] = None
    extended_summary: Optional[str] = None
    thesis: Optional[str] = None
    sentiment_word: Optional[str] = None
    sentiment_score: Optional[float] = None

    def is_empty(self) -> bool:
        return all(v is None for v in asdict(self).values())


@dataclass(frozen=True)
class Overview:
    macro: Optional[str] = None
    market_structure: Optional[str] = None
    technical_analysis: Optional[str] = None

    def is_empty(self) -> bool:
        return all(v is None for v in asdict(self).values())


@dataclass(frozen=True)
class ParsedLLMResponse:
    headline: Headline = field(default_factory=Headline)
    overview: Overview = field(default_factory=Overview)
    trade_actions: list[LLMTradeAction] = field(default_factory=list)

    def is_empty(self) -> bool:
        return self.headline.is_empty() and self.overview.is_empty() and not self.trade_actions

    def to_dict(self) -> dict:
        return {
            "headline": {k: v for k, v in asdict(self.headline).items() if v is not None},
            "overview": {k: v for k, v in asdict(self.overview).items() if v is not None},
            "tradeActions": [a.to_dict() for a in self.trade_actions],
        }


# --- Account metrics ---

@dataclass(frozen=True)
class PnLMetrics:
    realized_pnl: float
    unrealized_pnl: float
    account_value: float
    margin_used: float
    remaining_cash: float

    def to_dict(self) -> dict:
        return asdict(self)


# --- Order mapper input ---

@dataclass(frozen=True)
class OrderIntent:
    kind: OrderKind
    direction: str = "LONG"                 # "LONG" or "SHORT"
    trade_amount: float = 0.0               # USD notional (collateral * leverage)
    limit_price: Optional[float] = None
    exit_limit_price: Optional[float] = None
    leverage: float = 1.0


# --- Store records ---

@dataclass
class Agent:
    id: str
    user_id: str
    name: str
    is_active: bool = True
    initial_capital: float = 10000.0
    llm_provider: str = "google"
    model_name: Optional[str] = None
    hyperliquid_address: Optional[str] = None
    market_prompt_id: Optional[str] = None
    position_prompt_id: Optional[str] = None
    simulate: bool = True

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Agent":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            name=row.get("name") or "",
            is_active=bool(row.get("is_active", 1)),
            initial_capital=to_number(row.get("initial_capital"), 10000.0),
            llm_provider=(row.get("llm_provider") or "google").lower(),
            model_name=row.get("model_name"),
            hyperliquid_address=row.get("hyperliquid_address"),
            market_prompt_id=row.get("market_prompt_id"),
            position_prompt_id=row.get("position_prompt_id"),
            simulate=bool(row.get("simulate", 1)),
        )


@dataclass(frozen=True)
class PromptRecord:
    prompt_type: PromptType
    system_instruction: str
    user_template: str
    id: Optional[str] = None
    user_id: Optional[str] = None
    name: Optional[str] = None
    is_default: bool = False

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "PromptRecord":
        return cls(
            prompt_type=PromptType(row["prompt_type"]),
            system_instruction=row.get("system_instruction") or "",
            user_template=row.get("user_template") or "",
            id=row.get("id"),
            user_id=row.get("user_id"),
            name=row.get("name"),
            is_default=bool(row.get("is_default", 0)),
        )


def dumps(value: Any) -> str:
    """JSON for TEXT columns. Dataclasses and Enums serialize via their dict/value."""
    def _default(obj: Any) -> Any:
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        if isinstance(obj, Enum):
            return obj.value
        return str(obj)

    return json.dumps(value, default=_default)
