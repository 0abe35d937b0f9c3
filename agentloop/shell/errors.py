"""Error taxonomy. Each error carries the HTTP status the API layer maps it to."""

from __future__ import annotations


class AgentLoopError(Exception):
    status = 500


class ValidationError(AgentLoopError):
    """Missing or malformed request input. Never retried."""
    status = 400


class UnauthorizedError(AgentLoopError):
    status = 401


class NotFoundError(AgentLoopError):
    status = 404


class ProviderError(AgentLoopError):
    """LLM provider rejected or failed the request."""
    status = 502

    def __init__(self, provider: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{provider} API error: {message}")
        self.provider = provider
        self.status_code = status_code


class ExchangeError(AgentLoopError):
    """Hyperliquid returned a non-ok status for an order or info request."""
    status = 502


def status_for(error: BaseException) -> int:
    if isinstance(error, AgentLoopError):
        return error.status
    return 500
