"""Hyperliquid order mapper tests (fixed nonce, no network)."""

import pytest

FIXED_NONCE = 123456789


def _asset(**overrides):
    from agentloop.shell.contract import AssetMeta
    raw = {
        "Ticker": "FARTCOIN", "Sz-Decimals": 1, "Max-Leverage": 3,
        "Mid-Px": "0.3736", "Asset-Id": 141,
    }
    raw.update(overrides)
    return AssetMeta.from_dashed(raw)


def _opts(**kw):
    from agentloop.trading.mapping import OrderOptions
    return OrderOptions(nonce=FIXED_NONCE, **kw)


# --- OPEN ---

def test_open_long_limit():
    from agentloop.shell.contract import OrderIntent, OrderKind
    from agentloop.trading.mapping import to_order

    body = to_order(_asset(), OrderIntent(kind=OrderKind.OPEN, direction="LONG",
                                          trade_amount=100, limit_price=0.5), None, _opts())
    assert body["nonce"] == FIXED_NONCE
    assert body["action"]["type"] == "order"
    assert body["action"]["grouping"] == "na"
    [order] = body["action"]["orders"]
    assert order == {"a": 141, "b": True, "p": "0.5", "s": "200", "r": False,
                     "t": {"limit": {"tif": "Gtc"}}}
    assert "vaultAddress" not in body


def test_open_short_market_uses_slippage():
    from agentloop.shell.contract import OrderIntent, OrderKind
    from agentloop.trading.mapping import to_order

    body = to_order(_asset(), OrderIntent(kind=OrderKind.OPEN, direction="SHORT",
                                          trade_amount=100), None, _opts())
    [order] = body["action"]["orders"]
    assert order["b"] is False
    assert order["t"] == {"limit": {"tif": "Ioc"}}
    assert order["p"] == "0.37323"   # 0.3736 * 0.999
    assert order["s"] == "267.7"


def test_open_long_market_price_above_mid():
    from agentloop.shell.contract import OrderIntent, OrderKind
    from agentloop.trading.mapping import to_order

    body = to_order(_asset(), OrderIntent(kind=OrderKind.OPEN, trade_amount=100), None, _opts())
    assert body["action"]["orders"][0]["p"] == "0.37397"


def test_open_market_without_mid_raises():
    from agentloop.shell.contract import OrderIntent, OrderKind
    from agentloop.trading.mapping import to_order
    with pytest.raises(ValueError):
        to_order(_asset(**{"Mid-Px": None}), OrderIntent(kind=OrderKind.OPEN, trade_amount=100))


# --- CLOSE ---

def test_close_long_position():
    from agentloop.shell.contract import OrderIntent, OrderKind
    from agentloop.trading.mapping import to_order

    body = to_order(_asset(), OrderIntent(kind=OrderKind.CLOSE), {"szi": "1.0"}, _opts())
    [order] = body["action"]["orders"]
    assert order["b"] is False
    assert order["r"] is True
    assert order["t"] == {"limit": {"tif": "Ioc"}}
    assert order["p"] == "0"
    assert order["s"] == "1"


def test_close_short_position_buys_back():
    from agentloop.shell.contract import OrderIntent, OrderKind
    from agentloop.trading.mapping import to_order

    body = to_order(_asset(), OrderIntent(kind=OrderKind.CLOSE), {"szi": "-2.5"}, _opts())
    [order] = body["action"]["orders"]
    assert order["b"] is True
    assert order["s"] == "2.5"


def test_close_with_exit_limit_and_options():
    from agentloop.shell.contract import OrderIntent, OrderKind, Position
    from agentloop.trading.mapping import to_order

    position = Position.from_exchange({"coin": "FARTCOIN", "szi": "10", "entryPx": "0.3",
                                       "leverage": {"type": "cross", "value": 3}})
    body = to_order(
        _asset(), OrderIntent(kind=OrderKind.CLOSE, exit_limit_price=0.41234567), position,
        _opts(cloid="0x" + "ab" * 16, vault_address="0x" + "11" * 20, expires_after=1700000000000),
    )
    [order] = body["action"]["orders"]
    assert order["p"] == "0.41235"
    assert order["c"] == "0x" + "ab" * 16
    assert body["vaultAddress"] == "0x" + "11" * 20
    assert body["expiresAfter"] == 1700000000000


# --- Formatting ---

@pytest.mark.parametrize("value,sz_decimals,expected", [
    (97123.456, 5, "97123"),
    (97000, 5, "97000"),
    (1.234567, 0, "1.2346"),
    (0.000123456, 0, "0.000123"),
    (3456.789, 2, "3456.8"),
    (0, 2, "0"),
])
def test_format_price(value, sz_decimals, expected):
    from agentloop.trading.mapping import format_price
    assert format_price(value, sz_decimals) == expected


def test_format_size():
    from agentloop.trading.mapping import format_size
    assert format_size(0.0123456, 5) == "0.01235"
    assert format_size(-2.5, 1) == "2.5"
    assert format_size(200.0, 0) == "200"
