"""LLM response normalizer.

Turns raw model text into a ParsedLLMResponse. Models return fenced JSON,
bare JSON, JSON buried in prose, snake_case or camelCase keys, trailing
commas, or only a legacy ``ACTION_JSON: {...}`` / ``OPEN_LONG_BTC`` marker.
Parsing is a chain of strategies; the first one that yields something
usable wins. Nothing in this module raises on bad input.
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional

import json5
import structlog

from agentloop.shell.contract import (
    ActionType,
    Headline,
    LLMTradeAction,
    Overview,
    ParsedLLMResponse,
)

log = structlog.get_logger()

FENCE_RE = re.compile(r"```(?:json|js)[ \t]*\r?\n?(.*?)```", re.DOTALL | re.IGNORECASE)
ACTION_JSON_RE = re.compile(r"ACTION_JSON:\s*(\{[^}]+\})", re.DOTALL)
LEGACY_PATTERNS = [
    re.compile(r"OPEN_LONG_([A-Z]+)(?:_(\d+)X)?"),
    re.compile(r"OPEN_SHORT_([A-Z]+)(?:_(\d+)X)?"),
    re.compile(r"CLOSE_(?:LONG|SHORT)_([A-Z]+)"),
    re.compile(r"CLOSE_([A-Z]+)"),
    re.compile(r"NO_ACTION"),
]


# --- Key alias tables ---
# Keys are compared after _canon(): lower-cased, underscores/dashes/spaces removed,
# so "short_summary", "shortSummary" and "Short-Summary" all hit "shortsummary".

HEADLINE_CONTAINER = ("headline",)
OVERVIEW_CONTAINER = ("overview", "marketoverview", "analysis")
ACTIONS_CONTAINER = ("tradeactions", "tradeaction", "actions", "trades")

HEADLINE_FIELDS = {
    "short_summary": ("shortsummary", "summary"),
    "extended_summary": ("extendedsummary", "longsummary"),
    "thesis": ("thesis",),
    "sentiment_word": ("sentimentword", "sentiment"),
    "sentiment_score": ("sentimentscore",),
}

OVERVIEW_FIELDS = {
    "macro": ("macro", "macroanalysis"),
    "market_structure": ("marketstructure",),
    "technical_analysis": ("technicalanalysis", "technicals"),
}

ACTION_FIELDS = {
    "action": ("action", "decision"),
    "asset": ("asset", "symbol", "coin", "ticker"),
    "leverage": ("leverage",),
    "size": ("size", "tradeamount", "collateral", "amount", "positionsize"),
    "entry": ("entry", "entryprice", "limitprice"),
    "stop_loss": ("stoploss", "sl"),
    "take_profit": ("takeprofit", "targetprice", "tp"),
    "confidence_score": ("confidencescore", "confidence"),
    "reasoning": ("reasoning", "reason", "rationale"),
    "position_id": ("positionid",),
    "exit_price": ("exitprice", "exitlimitprice"),
}

NUMERIC_SCORE_FIELDS = {"sentiment_score"}
NUMERIC_ACTION_FIELDS = {
    "leverage", "size", "entry", "stop_loss", "take_profit", "confidence_score", "exit_price",
}


def _canon(key: Any) -> str:
    return re.sub(r"[_\-\s]", "", str(key)).lower()


def _lookup(obj: dict, aliases: tuple[str, ...]) -> Any:
    canon = {_canon(k): v for k, v in obj.items()}
    for alias in aliases:
        value = canon.get(alias)
        if value is not None and value != "":
            return value
    return None


def _num(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    text = str(value).strip().replace(",", "").lstrip("$").rstrip("%xX").strip()
    try:
        parsed = float(text)
    except ValueError:
        return None
    return parsed if math.isfinite(parsed) else None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    text = str(value).strip()
    return text or None


# --- Structured normalization ---

def _normalize_headline(raw: Any) -> Headline:
    if isinstance(raw, str):
        return Headline(short_summary=_text(raw))
    if not isinstance(raw, dict):
        return Headline()
    values: dict[str, Any] = {}
    for field_name, aliases in HEADLINE_FIELDS.items():
        value = _lookup(raw, aliases)
        values[field_name] = _num(value) if field_name in NUMERIC_SCORE_FIELDS else _text(value)
    return Headline(**values)


def _normalize_overview(raw: Any) -> Overview:
    if not isinstance(raw, dict):
        return Overview()
    return Overview(**{name: _text(_lookup(raw, aliases)) for name, aliases in OVERVIEW_FIELDS.items()})


def _resolve_action_type(raw: dict) -> Optional[ActionType]:
    action = ActionType.parse(_lookup(raw, ACTION_FIELDS["action"]))
    if action is not None:
        return action

    # {"type": "OPEN", "direction": "LONG"} shape
    kind = str(raw.get("type") or "").strip().upper()
    direction = str(raw.get("direction") or raw.get("side") or "").strip().upper()
    if direction in ("BUY", "LONG"):
        direction = "LONG"
    elif direction in ("SELL", "SHORT"):
        direction = "SHORT"
    if kind in ("OPEN", "CLOSE"):
        if kind == "CLOSE" and not direction:
            return ActionType.CLOSE_LONG
        return ActionType.parse(f"{kind}_{direction}")
    if kind in ("NO_ACTION", "HOLD"):
        return ActionType.NO_ACTION
    return None


def normalize_trade_action(raw: Any) -> Optional[LLMTradeAction]:
    """Validate one trade action dict. Returns None when it must be dropped."""
    if not isinstance(raw, dict):
        return None
    action = _resolve_action_type(raw)
    if action is None:
        return None

    values: dict[str, Any] = {}
    for field_name, aliases in ACTION_FIELDS.items():
        if field_name == "action":
            continue
        value = _lookup(raw, aliases)
        values[field_name] = _num(value) if field_name in NUMERIC_ACTION_FIELDS else _text(value)

    if values["asset"]:
        values["asset"] = values["asset"].upper()
    if action is not ActionType.NO_ACTION and not values["asset"]:
        return None
    return LLMTradeAction(action=action, **values)


def _normalize_actions(raw: Any) -> list[LLMTradeAction]:
    if raw is None:
        return []
    items = raw if isinstance(raw, list) else [raw]
    actions = []
    for item in items:
        action = normalize_trade_action(item)
        if action is not None:
            actions.append(action)
    return actions


def normalize_payload(payload: Any) -> Optional[ParsedLLMResponse]:
    """Map a parsed JSON value onto ParsedLLMResponse. None if nothing usable."""
    if isinstance(payload, list):
        payload = {"tradeActions": payload}
    if not isinstance(payload, dict):
        return None

    # A bare top-level {"action": ...} is the legacy ACTION_JSON shape, not a response envelope
    parsed = ParsedLLMResponse(
        headline=_normalize_headline(_lookup(payload, HEADLINE_CONTAINER)),
        overview=_normalize_overview(_lookup(payload, OVERVIEW_CONTAINER)),
        trade_actions=_normalize_actions(_lookup(payload, ACTIONS_CONTAINER)),
    )
    if parsed.is_empty():
        return None
    return parsed


# --- Candidate extraction ---

def json_candidates(text: str) -> list[str]:
    """Ordered, de-duplicated substrings worth handing to the JSON parser."""
    trimmed = (text or "").strip()
    if not trimmed:
        return []

    found = [m.group(1).strip() for m in FENCE_RE.finditer(trimmed)]

    if trimmed.startswith("{") and trimmed.endswith("}"):
        found.append(trimmed)
    else:
        first, last = trimmed.find("{"), trimmed.rfind("}")
        if first != -1 and last > first:
            found.append(trimmed[first:last + 1])

    found.append(trimmed)

    seen: set[str] = set()
    unique = []
    for candidate in found:
        if candidate and candidate not in seen:
            seen.add(candidate)
            unique.append(candidate)
    return unique


def _relaxed_loads(candidate: str) -> Any:
    try:
        return json5.loads(candidate)
    except (ValueError, TypeError, RecursionError):
        return None


def parse_structured_response(text: str) -> Optional[ParsedLLMResponse]:
    for candidate in json_candidates(text):
        parsed = normalize_payload(_relaxed_loads(candidate))
        if parsed is not None:
            return parsed
    return None


# --- Legacy markers ---

def parse_legacy_action(text: str) -> str:
    """Extract a legacy action string. Defaults to NO_ACTION."""
    text = text or ""
    action = "NO_ACTION"

    match = ACTION_JSON_RE.search(text)
    if match:
        details = _relaxed_loads(match.group(1))
        if isinstance(details, dict) and details.get("action"):
            action = str(details["action"]).strip().upper()

    if action == "NO_ACTION":
        for pattern in LEGACY_PATTERNS:
            found = pattern.search(text)
            if found:
                action = found.group(0)
                break

    return action


def legacy_to_trade_action(action: str) -> LLMTradeAction:
    """Convert a legacy action string to a trade action.

    ``CLOSE_<ASSET>`` carries no side; it becomes CLOSE_LONG and the
    reconciler falls back to any open position in that asset.
    """
    action = (action or "").strip().upper()

    for kind, pattern in (
        (ActionType.OPEN_LONG, re.compile(r"^OPEN_LONG_([A-Z]+)(?:_(\d+)X)?$")),
        (ActionType.OPEN_SHORT, re.compile(r"^OPEN_SHORT_([A-Z]+)(?:_(\d+)X)?$")),
    ):
        match = pattern.match(action)
        if match:
            leverage = float(match.group(2)) if match.group(2) else 1.0
            return LLMTradeAction(action=kind, asset=match.group(1), leverage=leverage)

    match = re.match(r"^CLOSE_(LONG|SHORT)_([A-Z]+)$", action)
    if match:
        return LLMTradeAction(action=ActionType(f"CLOSE_{match.group(1)}"), asset=match.group(2))

    match = re.match(r"^CLOSE_([A-Z]+)$", action)
    if match and match.group(1) not in ("LONG", "SHORT"):
        return LLMTradeAction(action=ActionType.CLOSE_LONG, asset=match.group(1))

    return LLMTradeAction(action=ActionType.NO_ACTION)


# --- Strategy chain ---

@dataclass(frozen=True)
class LLMParseResult:
    parsed: Optional[ParsedLLMResponse]
    legacy_action: str
    strategy: str

    @property
    def trade_actions(self) -> list[LLMTradeAction]:
        if self.parsed is not None:
            return list(self.parsed.trade_actions)
        legacy = legacy_to_trade_action(self.legacy_action)
        return [] if legacy.action is ActionType.NO_ACTION else [legacy]


ParserStrategy = Callable[[str], Optional[LLMParseResult]]


def _structured_strategy(text: str) -> Optional[LLMParseResult]:
    parsed = parse_structured_response(text)
    if parsed is None:
        return None
    return LLMParseResult(parsed=parsed, legacy_action=summarize_actions(parsed.trade_actions),
                          strategy="structured")


def _legacy_strategy(text: str) -> Optional[LLMParseResult]:
    return LLMParseResult(parsed=None, legacy_action=parse_legacy_action(text), strategy="legacy")


STRATEGIES: list[ParserStrategy] = [_structured_strategy, _legacy_strategy]


def parse_llm_text(text: str, strategies: list[ParserStrategy] | None = None) -> LLMParseResult:
    for strategy in strategies or STRATEGIES:
        result = strategy(text)
        if result is not None:
            log.debug("normalizer.parsed", strategy=result.strategy,
                      actions=len(result.trade_actions))
            return result
    return LLMParseResult(parsed=None, legacy_action="NO_ACTION", strategy="none")


def summarize_actions(actions: list[LLMTradeAction]) -> str:
    """One-line summary stored as assessments.trade_action_taken."""
    parts = []
    for action in actions:
        if action.action is ActionType.NO_ACTION:
            continue
        part = f"{action.action.value} {action.asset}"
        if action.action.is_open and action.leverage:
            part += f" {action.leverage:g}X"
        parts.append(part)
    return ", ".join(parts) or "NO_ACTION"
