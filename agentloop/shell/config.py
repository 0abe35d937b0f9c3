"""Configuration loading — merges settings.toml and .env."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv


PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"

LLM_PROVIDERS = ("google", "openai", "anthropic", "deepseek", "openrouter")


@dataclass
class ApiConfig:
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8080
    service_key: str = ""
    # "local" runs orders in-process, "remote" posts to execute_url
    executor: str = "local"
    execute_url: str = "http://127.0.0.1:8080/execute_hyperliquid_trade"


@dataclass
class LLMConfig:
    default_provider: str = "google"
    google_model: str = "gemini-2.0-flash-exp"
    openai_model: str = "gpt-4o-mini"
    anthropic_model: str = "claude-3-5-haiku-20241022"
    deepseek_model: str = "deepseek-chat"
    openrouter_model: str = "google/gemini-2.0-flash-exp:free"
    temperature: float = 0.7
    top_p: float = 0.95
    max_tokens: int = 4096
    timeout_seconds: float = 120.0
    max_retries: int = 3
    google_api_key: str = ""
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    deepseek_api_key: str = ""
    openrouter_api_key: str = ""
    app_url: str = "https://localhost"

    def model_for(self, provider: str) -> str:
        return getattr(self, f"{provider}_model", self.google_model)


@dataclass
class HyperliquidConfig:
    network: str = "mainnet"
    api_url: str = ""
    private_key: str = ""
    tracked_assets: list[str] = field(default_factory=lambda: [
        "BTC", "ETH", "SOL", "ARB", "OP", "AVAX", "MATIC", "DOGE", "SUI",
    ])
    slippage: float = 0.001
    candle_interval_minutes: int = 5
    candle_lookback_hours: int = 3
    timeout_seconds: float = 30.0

    @property
    def is_testnet(self) -> bool:
        return self.network == "testnet"

    @property
    def base_url(self) -> str:
        if self.api_url:
            return self.api_url.rstrip("/")
        if self.is_testnet:
            return "https://api.hyperliquid-testnet.xyz"
        return "https://api.hyperliquid.xyz"


@dataclass
class TradingConfig:
    default_collateral_pct: float = 0.10
    min_collateral_usd: float = 10.0
    default_leverage: int = 1


@dataclass
class SchedulerConfig:
    enabled: bool = True
    interval_minutes: int = 15
    concurrency: int = 50


@dataclass
class Config:
    log_level: str = "INFO"
    db_path: str = ""
    api: ApiConfig = field(default_factory=ApiConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    hyperliquid: HyperliquidConfig = field(default_factory=HyperliquidConfig)
    trading: TradingConfig = field(default_factory=TradingConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)


def _apply(section: object, values: dict) -> None:
    """Copy known keys from a TOML table onto a dataclass section."""
    for key, value in values.items():
        if hasattr(section, key):
            setattr(section, key, value)


def load_config(settings_path: Path | None = None) -> Config:
    """Load configuration from settings.toml and environment variables."""
    load_dotenv(PROJECT_ROOT / ".env")

    config = Config()
    config.db_path = str(PROJECT_ROOT / "data" / "agentloop.db")

    settings_path = settings_path or CONFIG_DIR / "settings.toml"
    if settings_path.exists():
        with open(settings_path, "rb") as f:
            settings = tomllib.load(f)

        general = settings.get("general", {})
        config.log_level = general.get("log_level", config.log_level)
        if general.get("db_path"):
            config.db_path = str(PROJECT_ROOT / general["db_path"])

        _apply(config.api, settings.get("api", {}))
        _apply(config.llm, settings.get("llm", {}))
        _apply(config.hyperliquid, settings.get("hyperliquid", {}))
        _apply(config.trading, settings.get("trading", {}))
        _apply(config.scheduler, settings.get("scheduler", {}))

    # Environment variables (secrets)
    config.api.service_key = os.getenv("SERVICE_ROLE_KEY", config.api.service_key)
    config.llm.google_api_key = os.getenv("GOOGLE_GEMINI_API_KEY", "")
    config.llm.openai_api_key = os.getenv("OPENAI_API_KEY", "")
    config.llm.anthropic_api_key = os.getenv("ANTHROPIC_API_KEY", "")
    config.llm.deepseek_api_key = os.getenv("DEEPSEEK_API_KEY", "")
    config.llm.openrouter_api_key = os.getenv("OPENROUTER_API_KEY", "")
    config.llm.app_url = os.getenv("APP_URL", config.llm.app_url)
    config.hyperliquid.private_key = os.getenv("HYPERLIQUID_PRIVATE_KEY", "")
    config.hyperliquid.network = os.getenv("HYPERLIQUID_NETWORK", config.hyperliquid.network).lower()
    config.hyperliquid.api_url = os.getenv("HYPERLIQUID_API_URL", config.hyperliquid.api_url)
    config.db_path = os.getenv("AGENTLOOP_DB_PATH", config.db_path)

    _validate_config(config)

    return config


def _validate_config(config: Config) -> None:
    """Validate config values are within sane ranges."""
    errors = []

    if config.llm.default_provider not in LLM_PROVIDERS:
        errors.append(f"llm.default_provider must be one of {LLM_PROVIDERS}, got '{config.llm.default_provider}'")
    if config.llm.max_retries < 1:
        errors.append(f"llm.max_retries must be >= 1, got {config.llm.max_retries}")
    if config.hyperliquid.network not in ("mainnet", "testnet"):
        errors.append(f"hyperliquid.network must be 'mainnet' or 'testnet', got '{config.hyperliquid.network}'")
    if not config.hyperliquid.tracked_assets:
        errors.append("At least one tracked asset must be configured")
    for asset in config.hyperliquid.tracked_assets:
        if asset != asset.upper() or asset.endswith("-PERP"):
            errors.append(f"Tracked asset must be a bare upper-case coin: '{asset}'")
    if not (0 <= config.hyperliquid.slippage <= 0.05):
        errors.append(f"hyperliquid.slippage must be 0-0.05, got {config.hyperliquid.slippage}")
    if not (0 < config.trading.default_collateral_pct <= 1):
        errors.append(f"trading.default_collateral_pct must be 0-1, got {config.trading.default_collateral_pct}")
    if config.trading.min_collateral_usd < 0:
        errors.append(f"trading.min_collateral_usd must be >= 0, got {config.trading.min_collateral_usd}")
    if config.scheduler.concurrency < 1:
        errors.append(f"scheduler.concurrency must be >= 1, got {config.scheduler.concurrency}")
    if config.scheduler.interval_minutes < 1:
        errors.append(f"scheduler.interval_minutes must be >= 1, got {config.scheduler.interval_minutes}")
    if config.api.executor not in ("local", "remote"):
        errors.append(f"api.executor must be 'local' or 'remote', got '{config.api.executor}'")
    if config.api.executor == "remote" and not config.api.service_key:
        errors.append("api.executor = 'remote' requires SERVICE_ROLE_KEY")
    if config.api.enabled and not (1 <= config.api.port <= 65535):
        errors.append(f"api.port must be 1-65535, got {config.api.port}")

    if errors:
        raise ValueError("Config validation failed:\n  " + "\n  ".join(errors))
