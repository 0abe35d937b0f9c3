"""agentloop — LLM-driven perpetuals trading agents."""

__version__ = "1.0.0"
