"""Hyperliquid client and asset cache tests over httpx.MockTransport."""

import json

import httpx
import pytest

PRIVATE_KEY = "0x0123456789012345678901234567890123456789012345678901234567890123"

META = {"universe": [
    {"name": "BTC", "szDecimals": 5, "maxLeverage": 40},
    {"name": "ETH", "szDecimals": 4, "maxLeverage": 25},
]}
CTXS = [
    {"funding": "0.0000125", "prevDayPx": "95000.0", "dayNtlVlm": "1000000", "openInterest": "500", "markPx": "97010"},
    {"funding": "0.00002", "prevDayPx": "0", "dayNtlVlm": "5000", "openInterest": "20", "markPx": "3201"},
]


def _info_handler(requests):
    def handler(request):
        body = json.loads(request.content)
        requests.append((request.url.path, body))
        kind = body.get("type")
        if kind == "allMids":
            return httpx.Response(200, json={"BTC": "97000.0", "ETH": "3200.0"})
        if kind == "metaAndAssetCtxs":
            return httpx.Response(200, json=[META, CTXS])
        if kind == "clearinghouseState":
            return httpx.Response(200, json={"assetPositions": [
                {"position": {"coin": "ETH", "szi": "-1.5", "entryPx": "3300", "leverage": {"value": 5},
                              "liquidationPx": None, "marginUsed": "990", "positionValue": "4800",
                              "unrealizedPnl": "150", "returnOnEquity": "0.15"}},
            ]})
        if kind == "candleSnapshot":
            return httpx.Response(200, json=[
                {"t": 1700000000000, "o": "1", "h": "2", "l": "0.5", "c": "1.5", "v": "10"},
                {"t": 1700000300000, "o": "1.5", "h": "2.5", "l": "1", "c": "2", "v": "12"},
            ])
        return httpx.Response(400, json={"error": "unknown"})
    return handler


def _client(handler):
    from agentloop.shell.config import HyperliquidConfig
    from agentloop.shell.hyperliquid import HyperliquidClient
    return HyperliquidClient(HyperliquidConfig(network="testnet"),
                             httpx.AsyncClient(transport=httpx.MockTransport(handler)))


@pytest.mark.asyncio
async def test_market_data_snapshot():
    client = _client(_info_handler([]))
    try:
        data = await client.market_data(["BTC", "ETH", "NOPE"])
    finally:
        await client.close()

    assert [a.symbol for a in data] == ["BTC-PERP", "ETH-PERP"]
    btc, eth = data
    assert btc.price == 97000.0
    assert btc.change_24h == pytest.approx((97000 - 95000) / 95000 * 100)
    assert btc.funding_rate == pytest.approx(0.0000125)
    assert btc.volume_24h == 1000000.0
    # No previous day price: funding-derived change
    assert eth.change_24h == pytest.approx(0.002)


@pytest.mark.asyncio
async def test_get_position_and_candles():
    requests = []
    client = _client(_info_handler(requests))
    try:
        position = await client.get_position("0xabc", "ETH-PERP")
        assert await client.get_position("0xabc", "BTC") is None
        candles = await client.get_candles("BTC", 5, 3)
    finally:
        await client.close()

    assert position.size == -1.5
    assert position.side == "SHORT"
    assert position.leverage == 5.0
    assert position.liquidation_price is None

    assert list(candles.columns) == ["time", "open", "high", "low", "close", "volume"]
    assert candles["close"].tolist() == [1.5, 2.0]
    candle_req = [body for path, body in requests if body["type"] == "candleSnapshot"][0]
    assert candle_req["req"]["interval"] == "5m"
    assert candle_req["req"]["endTime"] - candle_req["req"]["startTime"] == 3 * 3600 * 1000


@pytest.mark.asyncio
async def test_order_signs_and_posts():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"status": "ok", "response": {"type": "order", "data": {
            "statuses": [{"filled": {"totalSz": "0.001", "avgPx": "97001", "oid": 7}}]}}})

    client = _client(handler)
    payload = {"action": {"type": "order", "orders": [], "grouping": "na"}, "nonce": 42}
    try:
        result = await client.order(payload, PRIVATE_KEY)
    finally:
        await client.close()

    assert result["status"] == "ok"
    assert seen["url"] == "https://api.hyperliquid-testnet.xyz/exchange"
    assert seen["body"]["nonce"] == 42
    assert set(seen["body"]["signature"]) == {"r", "s", "v"}


@pytest.mark.asyncio
async def test_order_rejections_raise():
    from agentloop.shell.errors import ExchangeError
    replies = [
        {"status": "err", "response": "Insufficient margin"},
        {"status": "ok", "response": {"data": {"statuses": [{"error": "Order too small"}]}}},
    ]
    client = _client(lambda r: httpx.Response(200, json=replies.pop(0)))
    payload = {"action": {"type": "order", "orders": [], "grouping": "na"}, "nonce": 1}
    try:
        with pytest.raises(ExchangeError, match="rejected"):
            await client.order(payload, PRIVATE_KEY)
        with pytest.raises(ExchangeError, match="Order too small"):
            await client.order(payload, PRIVATE_KEY)
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_asset_meta_cache():
    from agentloop.shell.hyperliquid import AssetMetaCache
    requests = []
    client = _client(_info_handler(requests))
    cache = AssetMetaCache(client)
    try:
        eth = await cache.get("eth-perp")
        btc = await cache.get("BTC", mid_px=99000.0)
        with pytest.raises(ValueError, match="Unknown Hyperliquid asset"):
            await cache.get("NOPE")
    finally:
        await client.close()

    assert eth.asset_id == 1
    assert eth.sz_decimals == 4
    assert eth.max_leverage == 25
    assert eth.mid_px == 3200.0
    assert btc.asset_id == 0
    assert btc.mid_px == 99000.0
    meta_calls = [b for _, b in requests if b["type"] == "metaAndAssetCtxs"]
    # One load, one refresh forced by the unknown coin
    assert len(meta_calls) == 2
