"""Hyperliquid order mapper.

Pure transform from (asset metadata, order intent, position snapshot) to the
``{"action": {"type": "order", ...}, "nonce": ...}`` body the exchange
signs and accepts. No network or account state is touched here.

Perp tick rules: prices carry at most 5 significant figures and at most
``6 - szDecimals`` decimals (integers are always valid); sizes carry at
most ``szDecimals`` decimals.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from agentloop.shell.contract import AssetMeta, OrderIntent, OrderKind, Position
from agentloop.shell.numeric import to_number

MAX_PERP_DECIMALS = 6
MAX_SIGNIFICANT_FIGURES = 5
DEFAULT_SLIPPAGE = 0.001


@dataclass(frozen=True)
class OrderOptions:
    nonce: Optional[int] = None
    cloid: Optional[str] = None
    vault_address: Optional[str] = None
    expires_after: Optional[int] = None
    slippage: float = DEFAULT_SLIPPAGE


def _decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal(0)


def _canonical(value: Decimal) -> str:
    if value.is_zero():
        return "0"
    return format(value.normalize(), "f")


def format_price(value: float, sz_decimals: int) -> str:
    price = _decimal(value)
    if price <= 0:
        return "0"
    if price == price.to_integral_value():
        return _canonical(price)
    max_decimals = max(MAX_PERP_DECIMALS - sz_decimals, 0)
    sig_decimals = MAX_SIGNIFICANT_FIGURES - 1 - price.adjusted()
    decimals = max(min(max_decimals, sig_decimals), 0)
    quantized = price.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_HALF_UP)
    return _canonical(quantized)


def format_size(value: float, sz_decimals: int) -> str:
    size = abs(_decimal(value))
    quantized = size.quantize(Decimal(1).scaleb(-max(sz_decimals, 0)), rounding=ROUND_HALF_UP)
    return _canonical(quantized)


def signed_position_size(position: Position | Mapping[str, Any] | float | None) -> float:
    if position is None:
        return 0.0
    if isinstance(position, Position):
        return position.size
    if isinstance(position, Mapping):
        return to_number(position.get("szi", position.get("size")))
    return to_number(position)


def _limit(tif: str) -> dict:
    return {"limit": {"tif": tif}}


def to_order(
    asset: AssetMeta,
    trade: OrderIntent,
    position: Position | Mapping[str, Any] | float | None = None,
    opts: OrderOptions | None = None,
) -> dict:
    """Map one order intent to a Hyperliquid order action body."""
    opts = opts or OrderOptions()

    if trade.kind is OrderKind.OPEN:
        is_buy = trade.direction == "LONG"
        if trade.limit_price:
            price = format_price(trade.limit_price, asset.sz_decimals)
            size = format_size(trade.trade_amount / trade.limit_price, asset.sz_decimals)
            tif = "Gtc"
        else:
            if not asset.mid_px:
                raise ValueError(f"No mid price for {asset.ticker}; cannot size a market open")
            # Buyers pay up, sellers give down so the IOC crosses the book
            offset = 1 + opts.slippage if is_buy else 1 - opts.slippage
            price = format_price(asset.mid_px * offset, asset.sz_decimals)
            size = format_size(trade.trade_amount / asset.mid_px, asset.sz_decimals)
            tif = "Ioc"
        order = {"a": asset.asset_id, "b": is_buy, "p": price, "s": size, "r": False, "t": _limit(tif)}

    elif trade.kind is OrderKind.CLOSE:
        szi = signed_position_size(position)
        price = format_price(trade.exit_limit_price, asset.sz_decimals) if trade.exit_limit_price else "0"
        order = {
            "a": asset.asset_id,
            "b": szi < 0,
            "p": price,
            "s": format_size(abs(szi), asset.sz_decimals),
            "r": True,
            "t": _limit("Ioc"),
        }

    else:
        raise ValueError(f"Unsupported order kind: {trade.kind!r}")

    if opts.cloid:
        order["c"] = opts.cloid

    body: dict[str, Any] = {
        "action": {"type": "order", "orders": [order], "grouping": "na"},
        "nonce": opts.nonce if opts.nonce is not None else int(time.time() * 1000),
    }
    if opts.vault_address:
        body["vaultAddress"] = opts.vault_address
    if opts.expires_after:
        body["expiresAfter"] = opts.expires_after
    return body
