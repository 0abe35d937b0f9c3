"""Hyperliquid REST client (info + exchange endpoints) and asset metadata cache.

Handles all exchange communication.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import httpx
import pandas as pd
import structlog

from agentloop.shell.config import HyperliquidConfig
from agentloop.shell.contract import AssetMeta, MarketAsset, Position, base_coin
from agentloop.shell.errors import ExchangeError
from agentloop.shell.numeric import to_number
from agentloop.shell.signing import sign_l1_action

log = structlog.get_logger()

CANDLE_COLUMNS = ["time", "open", "high", "low", "close", "volume"]
INTERVALS = {1: "1m", 3: "3m", 5: "5m", 15: "15m", 30: "30m", 60: "1h", 240: "4h", 1440: "1d"}


class HyperliquidClient:
    """Hyperliquid REST API client."""

    def __init__(self, config: HyperliquidConfig, client: httpx.AsyncClient | None = None) -> None:
        self._base_url = config.base_url
        self._is_mainnet = not config.is_testnet
        self._client = client or httpx.AsyncClient(timeout=config.timeout_seconds)

    async def close(self) -> None:
        await self._client.aclose()

    async def info(self, payload: dict) -> Any:
        resp = await self._client.post(f"{self._base_url}/info", json=payload)
        resp.raise_for_status()
        return resp.json()

    async def all_mids(self) -> dict[str, str]:
        return await self.info({"type": "allMids"})

    async def meta_and_asset_ctxs(self) -> tuple[dict, list[dict]]:
        meta, ctxs = await self.info({"type": "metaAndAssetCtxs"})
        return meta, ctxs

    async def clearinghouse_state(self, address: str) -> dict:
        return await self.info({"type": "clearinghouseState", "user": address})

    async def get_position(self, address: str, asset: str) -> Position | None:
        state = await self.clearinghouse_state(address)
        coin = base_coin(asset)
        for entry in state.get("assetPositions") or []:
            position = entry.get("position") or {}
            if position.get("coin") == coin:
                return Position.from_exchange(position)
        return None

    async def candle_snapshot(self, coin: str, interval: str, start_ms: int, end_ms: int) -> list[dict]:
        return await self.info({
            "type": "candleSnapshot",
            "req": {"coin": coin, "interval": interval, "startTime": start_ms, "endTime": end_ms},
        })

    async def get_candles(self, coin: str, interval_minutes: int = 5, lookback_hours: int = 3) -> pd.DataFrame:
        """Fetch OHLCV candles for a coin as a DataFrame."""
        interval = INTERVALS.get(interval_minutes)
        if interval is None:
            log.warning("hyperliquid.unsupported_interval", requested=interval_minutes, fallback="5m")
            interval = "5m"

        end_ms = int(time.time() * 1000)
        start_ms = end_ms - lookback_hours * 3600 * 1000
        rows = await self.candle_snapshot(coin, interval, start_ms, end_ms)
        if not rows:
            return pd.DataFrame(columns=CANDLE_COLUMNS)

        df = pd.DataFrame(rows)
        df = df.rename(columns={"t": "time", "o": "open", "h": "high", "l": "low", "c": "close", "v": "volume"})
        df = df[CANDLE_COLUMNS]
        for col in ("open", "high", "low", "close", "volume"):
            df[col] = df[col].astype(float)
        df["time"] = df["time"].astype("int64")
        return df

    async def market_data(self, tracked_assets: list[str]) -> list[MarketAsset]:
        """Snapshot of tracked perps: mid price, 24h change, funding, volume, OI."""
        mids, (meta, ctxs) = await asyncio.gather(self.all_mids(), self.meta_and_asset_ctxs())
        ctx_by_coin = {
            asset.get("name"): ctx for asset, ctx in zip(meta.get("universe", []), ctxs)
        }

        results = []
        for coin in tracked_assets:
            mid = mids.get(coin)
            if not mid:
                log.info("hyperliquid.no_price", coin=coin)
                continue
            price = to_number(mid)
            ctx = ctx_by_coin.get(coin) or {}
            funding = to_number(ctx.get("funding")) if ctx.get("funding") is not None else None
            prev_day = to_number(ctx.get("prevDayPx"))
            if prev_day:
                change = (price - prev_day) / prev_day * 100
            else:
                change = funding * 100 if funding is not None else 0.0
            results.append(MarketAsset(
                symbol=f"{coin}-PERP",
                price=price,
                change_24h=change,
                funding_rate=funding,
                volume_24h=to_number(ctx.get("dayNtlVlm")) if ctx.get("dayNtlVlm") is not None else None,
                open_interest=to_number(ctx.get("openInterest")) if ctx.get("openInterest") is not None else None,
            ))
        return results

    async def order(self, payload: dict, private_key: str) -> dict:
        """Sign and submit an order body from the order mapper. Returns {status, response}."""
        action = payload["action"]
        nonce = payload["nonce"]
        vault_address = payload.get("vaultAddress")
        expires_after = payload.get("expiresAfter")
        signature = sign_l1_action(
            private_key, action, nonce,
            is_mainnet=self._is_mainnet,
            vault_address=vault_address,
            expires_after=expires_after,
        )
        body = {"action": action, "nonce": nonce, "signature": signature, "vaultAddress": vault_address}
        if expires_after is not None:
            body["expiresAfter"] = expires_after

        resp = await self._client.post(f"{self._base_url}/exchange", json=body)
        resp.raise_for_status()
        result = resp.json()
        if result.get("status") != "ok":
            raise ExchangeError(f"Hyperliquid order rejected: {result.get('response')}")
        statuses = (result.get("response") or {}).get("data", {}).get("statuses", [])
        for status in statuses:
            if isinstance(status, dict) and status.get("error"):
                raise ExchangeError(f"Hyperliquid order error: {status['error']}")
        return result


class AssetMetaCache:
    """Static per-asset metadata (index, szDecimals, max leverage).

    Fetched once and reused; an unknown coin forces one refresh before
    failing, which picks up newly listed assets.
    """

    def __init__(self, client: HyperliquidClient) -> None:
        self._client = client
        self._assets: dict[str, dict] = {}
        self._lock = asyncio.Lock()

    async def refresh(self) -> None:
        async with self._lock:
            meta, ctxs = await self._client.meta_and_asset_ctxs()
            assets = {}
            for index, (asset, ctx) in enumerate(zip(meta.get("universe", []), ctxs)):
                assets[asset["name"]] = {
                    "asset_id": index,
                    "sz_decimals": int(asset.get("szDecimals", 3)),
                    "max_leverage": int(asset.get("maxLeverage", 1)),
                    "mark_px": to_number(ctx.get("markPx")) or None,
                    "prev_day_px": to_number(ctx.get("prevDayPx")) or None,
                }
            self._assets = assets
            log.info("hyperliquid.meta_refreshed", assets=len(assets))

    async def get(self, asset: str, mid_px: float | None = None) -> AssetMeta:
        coin = base_coin(asset)
        if coin not in self._assets:
            await self.refresh()
        info = self._assets.get(coin)
        if info is None:
            raise ValueError(f"Unknown Hyperliquid asset: {coin}")

        if mid_px is None:
            mids = await self._client.all_mids()
            mid_px = to_number(mids.get(coin))
        return AssetMeta(ticker=coin, mid_px=mid_px, **info)
