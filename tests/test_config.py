"""Configuration loading tests."""

import pytest


def test_config_loading(monkeypatch):
    from agentloop.shell.config import load_config
    monkeypatch.delenv("HYPERLIQUID_NETWORK", raising=False)
    monkeypatch.delenv("HYPERLIQUID_API_URL", raising=False)
    config = load_config()
    assert config.llm.default_provider == "google"
    assert config.hyperliquid.network == "mainnet"
    assert config.hyperliquid.base_url == "https://api.hyperliquid.xyz"
    assert "BTC" in config.hyperliquid.tracked_assets
    assert len(config.hyperliquid.tracked_assets) == 9
    assert config.hyperliquid.slippage == 0.001
    assert config.scheduler.concurrency == 50
    assert config.trading.default_collateral_pct == 0.10
    assert config.api.executor == "local"


def test_env_overrides(monkeypatch, tmp_path):
    from agentloop.shell.config import load_config
    monkeypatch.setenv("SERVICE_ROLE_KEY", "svc")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("HYPERLIQUID_NETWORK", "TESTNET")
    monkeypatch.setenv("AGENTLOOP_DB_PATH", str(tmp_path / "x.db"))
    config = load_config()
    assert config.api.service_key == "svc"
    assert config.llm.openai_api_key == "sk-test"
    assert config.hyperliquid.is_testnet
    assert config.hyperliquid.base_url == "https://api.hyperliquid-testnet.xyz"
    assert config.db_path == str(tmp_path / "x.db")


def test_settings_file_sections(monkeypatch, tmp_path):
    from agentloop.shell.config import load_config
    monkeypatch.delenv("HYPERLIQUID_NETWORK", raising=False)
    settings = tmp_path / "settings.toml"
    settings.write_text(
        '[llm]\ndefault_provider = "anthropic"\nanthropic_model = "claude-test"\n'
        '[hyperliquid]\ntracked_assets = ["BTC"]\n'
        '[scheduler]\nconcurrency = 5\nunknown_key = 1\n'
    )
    config = load_config(settings)
    assert config.llm.default_provider == "anthropic"
    assert config.llm.model_for("anthropic") == "claude-test"
    assert config.hyperliquid.tracked_assets == ["BTC"]
    assert config.scheduler.concurrency == 5


def test_validation_lists_all_problems(monkeypatch, tmp_path):
    from agentloop.shell.config import load_config
    monkeypatch.delenv("HYPERLIQUID_NETWORK", raising=False)
    settings = tmp_path / "settings.toml"
    settings.write_text(
        '[llm]\ndefault_provider = "nobody"\n'
        '[hyperliquid]\ntracked_assets = ["btc-perp"]\nslippage = 0.5\n'
    )
    with pytest.raises(ValueError) as exc:
        load_config(settings)
    message = str(exc.value)
    assert "default_provider" in message
    assert "btc-perp" in message
    assert "slippage" in message


def test_remote_executor_requires_service_key(monkeypatch, tmp_path):
    from agentloop.shell.config import load_config
    monkeypatch.delenv("HYPERLIQUID_NETWORK", raising=False)
    monkeypatch.delenv("SERVICE_ROLE_KEY", raising=False)
    settings = tmp_path / "settings.toml"
    settings.write_text('[api]\nexecutor = "remote"\n')
    with pytest.raises(ValueError, match="SERVICE_ROLE_KEY"):
        load_config(settings)

    monkeypatch.setenv("SERVICE_ROLE_KEY", "svc")
    assert load_config(settings).api.executor == "remote"

# --- Logging ---

def test_redact_secrets():
    from agentloop.utils.logging import redact_secrets
    event = {"event": "llm.call", "openai_api_key": "sk-1", "private_key": "0xabc",
             "Authorization": "Bearer x", "input_tokens": 12}
    redacted = redact_secrets(None, "info", event)
    assert redacted["openai_api_key"] == "***"
    assert redacted["private_key"] == "***"
    assert redacted["Authorization"] == "***"
    assert redacted["input_tokens"] == 12
    assert redacted["event"] == "llm.call"


def test_setup_logging_accepts_unknown_level():
    from agentloop.utils.logging import setup_logging
    setup_logging("chatty")
    setup_logging("DEBUG")
