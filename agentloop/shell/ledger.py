"""Trade ledger — records fills and rebuilds positions from them.

Every fill is one ``trading_trades`` row. An OPEN row and its CLOSE row share
``meta.position_id``; a position is OPEN until its CLOSE row appears.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable

import structlog

from agentloop.shell.contract import Trade, dumps
from agentloop.shell.database import Database
from agentloop.shell.numeric import sanitize_numeric, to_number
from agentloop.shell.pnl import position_quantity

log = structlog.get_logger()


def _parse_meta(meta: Any) -> dict:
    if not meta:
        return {}
    if isinstance(meta, str):
        try:
            parsed = json.loads(meta)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return dict(meta)


def build_positions_from_ledger(rows: Iterable[dict]) -> list[Trade]:
    """Pair OPEN/CLOSE ledger rows into Trades, newest entry first.

    Rows without a position_id are ignored. A CLOSE without its OPEN is
    dropped. A repeated OPEN for the same position keeps the latest row.
    """
    grouped: dict[tuple[str, str], dict[str, dict]] = {}

    for row in rows:
        meta = _parse_meta(row.get("meta"))
        position_id = str(meta.get("position_id") or "")
        if not position_id:
            continue
        action = str(meta.get("action") or "").upper()
        entry = grouped.setdefault((row.get("agent_id", ""), position_id), {})
        if action == "OPEN":
            entry["open"] = {**row, "meta": meta}
        elif action == "CLOSE":
            entry["close"] = {**row, "meta": meta}

    positions: list[Trade] = []
    for (agent_id, position_id), pair in grouped.items():
        opened = pair.get("open")
        if not opened:
            continue
        meta = opened["meta"]
        side = meta.get("position_side") or ("SHORT" if "SHORT" in str(meta.get("action_type", "")) else "LONG")
        leverage = to_number(meta.get("leverage"), 1.0) or 1.0
        collateral = to_number(meta.get("collateral", meta.get("size")))
        entry_price = to_number(meta.get("entry_price", opened.get("price")))
        quantity = (
            to_number(meta.get("position_quantity", opened.get("quantity")))
            or position_quantity(collateral, leverage, entry_price)
        )

        trade = Trade(
            id=position_id,
            agent_id=agent_id,
            asset=opened["symbol"],
            side=str(side).upper(),
            size=collateral,
            quantity=quantity,
            entry_price=entry_price,
            entry_timestamp=str(meta.get("entry_timestamp") or opened.get("executed_at") or ""),
            leverage=leverage,
        )

        closed = pair.get("close")
        if closed:
            close_meta = closed["meta"]
            trade.status = "CLOSED"
            trade.exit_price = to_number(close_meta.get("exit_price", closed.get("price")))
            trade.exit_timestamp = str(close_meta.get("exit_timestamp") or closed.get("executed_at") or "")
            pnl = closed.get("realized_pnl")
            trade.realized_pnl = to_number(pnl if pnl is not None else close_meta.get("realized_pnl"))

        positions.append(trade)

    positions.sort(key=lambda t: t.entry_timestamp, reverse=True)
    return positions


class Ledger:
    """Reads and writes the trading_trades table for one database."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def positions(self, agent_id: str) -> list[Trade]:
        rows = await self._db.fetchall(
            "SELECT * FROM trading_trades WHERE agent_id = ? ORDER BY executed_at",
            (agent_id,),
        )
        return build_positions_from_ledger(rows)

    async def open_positions(self, agent_id: str) -> list[Trade]:
        return [t for t in await self.positions(agent_id) if t.is_open]

    async def closed_trades(self, agent_id: str) -> list[Trade]:
        return [t for t in await self.positions(agent_id) if not t.is_open]

    async def record_execution(
        self,
        *,
        agent_id: str,
        user_id: str | None,
        symbol: str,
        execution_side: str,
        quantity: float,
        price: float,
        meta: dict,
        fee: float = 0.0,
        realized_pnl: float = 0.0,
        trade_type: str = "paper",
    ) -> dict:
        """Insert one fill. Numerics are sanitized to the NUMERIC(18, 8) domain."""
        row = {
            "id": str(uuid.uuid4()),
            "agent_id": agent_id,
            "user_id": user_id,
            "type": trade_type,
            "symbol": symbol,
            "side": execution_side,
            "quantity": sanitize_numeric(quantity, allow_negative=False, label="ledger_quantity"),
            "price": sanitize_numeric(price, allow_negative=False, label="ledger_price"),
            "fee": sanitize_numeric(fee, allow_negative=False, label="ledger_fee"),
            "realized_pnl": sanitize_numeric(realized_pnl, label="ledger_realized_pnl"),
            "meta": {**meta, "execution_side": execution_side},
            "executed_at": datetime.now(timezone.utc).isoformat(),
        }
        await self._db.execute(
            """INSERT INTO trading_trades
               (id, agent_id, user_id, type, symbol, side, quantity, price, fee, realized_pnl, meta, executed_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (row["id"], agent_id, user_id, trade_type, symbol, execution_side, row["quantity"],
             row["price"], row["fee"], row["realized_pnl"], dumps(row["meta"]), row["executed_at"]),
        )
        await self._db.commit()
        log.info("ledger.recorded", agent_id=agent_id, symbol=symbol, side=execution_side,
                 quantity=row["quantity"], price=row["price"], action=meta.get("action"))
        return row
