"""Row-level access to agents, prompts, assessments and PnL snapshots."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import structlog

from agentloop.shell.contract import Agent, PnLMetrics, PromptRecord, PromptType, dumps
from agentloop.shell.database import Database
from agentloop.shell.numeric import sanitize_numeric

log = structlog.get_logger()


class Store:
    def __init__(self, db: Database) -> None:
        self._db = db

    # --- Agents ---

    async def get_agent(self, agent_id: str) -> Agent | None:
        row = await self._db.fetchone("SELECT * FROM agents WHERE id = ?", (agent_id,))
        return Agent.from_row(row) if row else None

    async def list_active_agents(self) -> list[Agent]:
        rows = await self._db.fetchall(
            "SELECT * FROM agents WHERE is_active = 1 ORDER BY created_at"
        )
        return [Agent.from_row(r) for r in rows]

    async def create_agent(self, agent: Agent) -> Agent:
        await self._db.execute(
            """INSERT INTO agents
               (id, user_id, name, is_active, initial_capital, llm_provider, model_name,
                hyperliquid_address, market_prompt_id, position_prompt_id, simulate)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (agent.id, agent.user_id, agent.name, int(agent.is_active), agent.initial_capital,
             agent.llm_provider, agent.model_name, agent.hyperliquid_address,
             agent.market_prompt_id, agent.position_prompt_id, int(agent.simulate)),
        )
        await self._db.commit()
        return agent

    # --- Prompts ---

    async def get_active_prompt(self, prompt_id: str) -> PromptRecord | None:
        row = await self._db.fetchone(
            "SELECT * FROM prompts WHERE id = ? AND is_active = 1", (prompt_id,)
        )
        return PromptRecord.from_row(row) if row else None

    async def find_default_prompt(self, user_id: str, prompt_type: PromptType) -> PromptRecord | None:
        """User prompts first, then defaults, then most recently updated."""
        row = await self._db.fetchone(
            """SELECT * FROM prompts
               WHERE prompt_type = ? AND is_active = 1 AND (user_id = ? OR user_id IS NULL)
               ORDER BY (user_id IS NOT NULL) DESC, is_default DESC, updated_at DESC
               LIMIT 1""",
            (prompt_type.value, user_id),
        )
        return PromptRecord.from_row(row) if row else None

    async def create_prompt(
        self,
        prompt_type: PromptType,
        system_instruction: str,
        user_template: str,
        *,
        name: str = "",
        user_id: str | None = None,
        is_default: bool = False,
        is_active: bool = True,
        updated_at: str | None = None,
    ) -> str:
        prompt_id = str(uuid.uuid4())
        await self._db.execute(
            """INSERT INTO prompts
               (id, user_id, name, prompt_type, system_instruction, user_template,
                is_default, is_active, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, COALESCE(?, datetime('now')))""",
            (prompt_id, user_id, name or prompt_type.value, prompt_type.value,
             system_instruction, user_template, int(is_default), int(is_active), updated_at),
        )
        await self._db.commit()
        return prompt_id

    # --- Assessments ---

    async def save_assessment(
        self,
        *,
        agent_id: str,
        assessment_type: PromptType,
        market_data_snapshot: dict,
        prompt_used: str,
        response_text: str,
        parsed_response: dict | None,
        trade_action_taken: str,
    ) -> str:
        assessment_id = str(uuid.uuid4())
        await self._db.execute(
            """INSERT INTO assessments
               (id, agent_id, timestamp, type, market_data_snapshot, llm_prompt_used,
                llm_response_text, parsed_llm_response, trade_action_taken)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (assessment_id, agent_id, datetime.now(timezone.utc).isoformat(),
             assessment_type.value, dumps(market_data_snapshot), prompt_used, response_text,
             dumps(parsed_response) if parsed_response is not None else None,
             trade_action_taken),
        )
        await self._db.commit()
        log.info("assessment.saved", assessment_id=assessment_id, agent_id=agent_id,
                 type=assessment_type.value, action=trade_action_taken)
        return assessment_id

    # --- PnL snapshots ---

    async def save_pnl_snapshot(
        self, agent_id: str, assessment_id: str | None, metrics: PnLMetrics, open_positions: int,
    ) -> None:
        values = {
            key: sanitize_numeric(value, label=f"snapshot_{key}")
            for key, value in metrics.to_dict().items()
        }
        await self._db.execute(
            """INSERT INTO agent_pnl_snapshots
               (agent_id, assessment_id, realized_pnl, unrealized_pnl, account_value,
                margin_used, remaining_cash, open_positions)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (agent_id, assessment_id, values["realized_pnl"], values["unrealized_pnl"],
             values["account_value"], values["margin_used"], values["remaining_cash"],
             open_positions),
        )
        await self._db.commit()

    # --- API tokens ---

    async def find_token_owner(self, token_hash: str) -> str | None:
        row = await self._db.fetchone(
            "SELECT user_id FROM api_tokens WHERE token_hash = ? AND revoked = 0", (token_hash,)
        )
        if not row:
            return None
        await self._db.execute(
            "UPDATE api_tokens SET last_used_at = datetime('now') WHERE token_hash = ?", (token_hash,)
        )
        await self._db.commit()
        return row["user_id"]

    async def add_token(self, user_id: str, token_hash: str, label: str = "") -> None:
        await self._db.execute(
            "INSERT INTO api_tokens (user_id, token_hash, label) VALUES (?, ?, ?)",
            (user_id, token_hash, label),
        )
        await self._db.commit()
