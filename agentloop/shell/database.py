"""SQLite database — durable store for agents, prompts, the trade ledger and assessments."""

from __future__ import annotations

from pathlib import Path

import aiosqlite
import structlog

log = structlog.get_logger()

SCHEMA = """
-- Trading agents
CREATE TABLE IF NOT EXISTS agents (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    initial_capital REAL NOT NULL DEFAULT 10000,
    llm_provider TEXT NOT NULL DEFAULT 'google',
    model_name TEXT,
    hyperliquid_address TEXT,
    market_prompt_id TEXT,
    position_prompt_id TEXT,
    simulate INTEGER NOT NULL DEFAULT 1,
    created_at TEXT DEFAULT (datetime('now')),
    updated_at TEXT DEFAULT (datetime('now'))
);

-- Prompt templates (user_id NULL = global)
CREATE TABLE IF NOT EXISTS prompts (
    id TEXT PRIMARY KEY,
    user_id TEXT,
    name TEXT NOT NULL,
    description TEXT,
    prompt_type TEXT NOT NULL,          -- 'MARKET_SCAN', 'POSITION_REVIEW'
    system_instruction TEXT NOT NULL,
    user_template TEXT NOT NULL,
    is_default INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    updated_at TEXT DEFAULT (datetime('now'))
);

-- Trade ledger: one row per fill, OPEN/CLOSE pairs share meta.position_id
CREATE TABLE IF NOT EXISTS trading_trades (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL,
    user_id TEXT,
    type TEXT NOT NULL DEFAULT 'paper', -- 'paper', 'real'
    symbol TEXT NOT NULL,
    side TEXT NOT NULL,                 -- 'BUY', 'SELL'
    quantity REAL NOT NULL,
    price REAL NOT NULL,
    fee REAL DEFAULT 0,
    realized_pnl REAL DEFAULT 0,
    meta TEXT,                          -- JSON
    executed_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

-- One row per assessment run, immutable after insert
CREATE TABLE IF NOT EXISTS assessments (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    type TEXT NOT NULL,                 -- 'MARKET_SCAN', 'POSITION_REVIEW'
    market_data_snapshot TEXT,          -- JSON
    llm_prompt_used TEXT,
    llm_response_text TEXT,
    parsed_llm_response TEXT,           -- JSON or NULL
    trade_action_taken TEXT
);

-- Account metrics captured after each assessment
CREATE TABLE IF NOT EXISTS agent_pnl_snapshots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    agent_id TEXT NOT NULL,
    assessment_id TEXT,
    realized_pnl REAL NOT NULL,
    unrealized_pnl REAL NOT NULL,
    account_value REAL NOT NULL,
    margin_used REAL NOT NULL,
    remaining_cash REAL NOT NULL,
    open_positions INTEGER DEFAULT 0,
    created_at TEXT DEFAULT (datetime('now'))
);

-- Per-user API tokens (sha256 of the bearer token)
CREATE TABLE IF NOT EXISTS api_tokens (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    token_hash TEXT NOT NULL UNIQUE,
    label TEXT,
    revoked INTEGER NOT NULL DEFAULT 0,
    created_at TEXT DEFAULT (datetime('now')),
    last_used_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_agents_active ON agents(is_active);
CREATE INDEX IF NOT EXISTS idx_prompts_type ON prompts(prompt_type, is_active);
CREATE INDEX IF NOT EXISTS idx_trading_trades_agent ON trading_trades(agent_id, executed_at);
CREATE INDEX IF NOT EXISTS idx_assessments_agent ON assessments(agent_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_snapshots_agent ON agent_pnl_snapshots(agent_id, created_at);
"""

# Migrations for existing databases (columns added after initial schema)
MIGRATIONS = [
    # Explore listing timestamp for published agents
    ("agents", "published_at", "ALTER TABLE agents ADD COLUMN published_at TEXT"),
]


class Database:
    def __init__(self, db_path: str):
        self._path = db_path
        self._conn: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA foreign_keys=ON")
        await self._conn.executescript(SCHEMA)
        await self._run_migrations()
        await self._conn.commit()
        log.info("database.connected", path=self._path)

    async def _run_migrations(self) -> None:
        """Apply column additions to existing databases."""
        for table, column, sql in MIGRATIONS:
            cursor = await self._conn.execute(f"PRAGMA table_info({table})")
            columns = [row[1] for row in await cursor.fetchall()]
            if column not in columns:
                await self._conn.execute(sql)
                log.info("database.migration", table=table, column=column)

    async def close(self) -> None:
        if self._conn:
            await self._conn.commit()
            await self._conn.close()
            self._conn = None
            log.info("database.closed")

    @property
    def conn(self) -> aiosqlite.Connection:
        if not self._conn:
            raise RuntimeError("Database not connected")
        return self._conn

    async def execute(self, sql: str, params: tuple = ()) -> aiosqlite.Cursor:
        return await self.conn.execute(sql, params)

    async def fetchone(self, sql: str, params: tuple = ()) -> dict | None:
        cursor = await self.conn.execute(sql, params)
        row = await cursor.fetchone()
        return dict(row) if row else None

    async def fetchall(self, sql: str, params: tuple = ()) -> list[dict]:
        cursor = await self.conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]

    async def commit(self) -> None:
        await self.conn.commit()
