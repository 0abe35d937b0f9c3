"""LLM providers — one ``call(system_instruction, user_query, model)`` per vendor.

Google (Gemini), OpenAI, DeepSeek and OpenRouter go over httpx; Anthropic
goes through its SDK. Transient failures are retried with exponential
backoff; anything else surfaces as ProviderError with the vendor's status
text.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from agentloop.api import metrics
from agentloop.shell.config import LLMConfig
from agentloop.shell.errors import ProviderError

log = structlog.get_logger()

TRANSIENT_MARKERS = ("timeout", "rate", "429", "500", "502", "503", "529", "overloaded", "connection")


def _is_transient(error: Exception) -> bool:
    if isinstance(error, ProviderError) and error.status_code is not None:
        return error.status_code == 429 or error.status_code >= 500
    if isinstance(error, httpx.TransportError):
        return True
    error_str = str(error).lower()
    return any(k in error_str for k in TRANSIENT_MARKERS)


@dataclass(frozen=True)
class LLMResponse:
    text: str
    raw_response: Any
    provider: str
    model: str


class LLMProvider:
    """Base class. Subclasses implement _request()."""

    name = ""
    api_key_env = ""

    def __init__(self, config: LLMConfig, http: httpx.AsyncClient) -> None:
        self._config = config
        self._http = http

    @property
    def api_key(self) -> str:
        return getattr(self._config, f"{self.name}_api_key", "")

    @property
    def default_model(self) -> str:
        return self._config.model_for(self.name)

    async def _request(self, system_instruction: str, user_query: str, model: str) -> LLMResponse:
        raise NotImplementedError

    async def call(self, system_instruction: str, user_query: str, model: str | None = None) -> LLMResponse:
        if not self.api_key:
            raise ProviderError(self.name, f"{self.api_key_env} environment variable not set")
        model = model or self.default_model

        # Retry with exponential backoff for transient errors
        max_retries = self._config.max_retries
        for attempt in range(max_retries):
            try:
                response = await self._request(system_instruction, user_query, model)
                break
            except Exception as e:
                if not _is_transient(e) or attempt == max_retries - 1:
                    metrics.llm_calls_total.labels(provider=self.name, outcome="error").inc()
                    if isinstance(e, ProviderError):
                        raise
                    raise ProviderError(self.name, str(e) or type(e).__name__) from e
                wait = 2 ** attempt  # 1s, 2s, 4s
                metrics.llm_retries_total.labels(provider=self.name).inc()
                log.warning("llm.retry", provider=self.name, attempt=attempt + 1, error=str(e), wait=wait)
                await asyncio.sleep(wait)

        metrics.llm_calls_total.labels(provider=self.name, outcome="ok").inc()
        log.info("llm.response", provider=self.name, model=model, chars=len(response.text))
        return response

    def _check(self, resp: httpx.Response) -> dict:
        if resp.status_code >= 400:
            raise ProviderError(
                self.name, f"{resp.status_code} {resp.reason_phrase} - {resp.text[:500]}", resp.status_code,
            )
        return resp.json()


class GeminiProvider(LLMProvider):
    name = "google"
    api_key_env = "GOOGLE_GEMINI_API_KEY"
    base_url = "https://generativelanguage.googleapis.com/v1beta/models"

    async def _request(self, system_instruction: str, user_query: str, model: str) -> LLMResponse:
        resp = await self._http.post(
            f"{self.base_url}/{model}:generateContent",
            params={"key": self.api_key},
            json={
                "contents": [{"role": "user", "parts": [{"text": user_query}]}],
                "systemInstruction": {"parts": [{"text": system_instruction}]},
                "tools": [{"googleSearch": {}}],
                "generationConfig": {
                    "temperature": self._config.temperature,
                    "topK": 40,
                    "topP": self._config.top_p,
                    "maxOutputTokens": 9000,
                },
            },
        )
        data = self._check(resp)
        candidates = data.get("candidates") or []
        if not candidates:
            raise ProviderError(self.name, "No response from Gemini API")
        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(p.get("text", "") for p in parts).strip()
        if not text:
            raise ProviderError(self.name, "Empty response from Gemini API")
        return LLMResponse(text=text, raw_response=data, provider=self.name, model=model)


class ChatCompletionsProvider(LLMProvider):
    """OpenAI-style /chat/completions endpoint."""

    url = ""

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _body(self, system_instruction: str, user_query: str, model: str) -> dict:
        return {
            "model": model,
            "messages": [
                {"role": "system", "content": system_instruction},
                {"role": "user", "content": user_query},
            ],
            "temperature": self._config.temperature,
            "top_p": self._config.top_p,
            "max_tokens": self._config.max_tokens,
        }

    async def _request(self, system_instruction: str, user_query: str, model: str) -> LLMResponse:
        resp = await self._http.post(
            self.url, headers=self._headers(), json=self._body(system_instruction, user_query, model),
        )
        data = self._check(resp)
        choices = data.get("choices") or []
        text = ((choices[0].get("message") or {}).get("content") or "").strip() if choices else ""
        if not text:
            raise ProviderError(self.name, "No response content")
        return LLMResponse(text=text, raw_response=data, provider=self.name, model=model)


class OpenAIProvider(ChatCompletionsProvider):
    name = "openai"
    api_key_env = "OPENAI_API_KEY"
    url = "https://api.openai.com/v1/chat/completions"


class DeepSeekProvider(ChatCompletionsProvider):
    name = "deepseek"
    api_key_env = "DEEPSEEK_API_KEY"
    url = "https://api.deepseek.com/chat/completions"


class OpenRouterProvider(ChatCompletionsProvider):
    name = "openrouter"
    api_key_env = "OPENROUTER_API_KEY"
    url = "https://openrouter.ai/api/v1/chat/completions"

    def _headers(self) -> dict[str, str]:
        return {
            **super()._headers(),
            "HTTP-Referer": self._config.app_url,
            "X-Title": "agentloop",
        }


class AnthropicProvider(LLMProvider):
    name = "anthropic"
    api_key_env = "ANTHROPIC_API_KEY"

    def __init__(self, config: LLMConfig, http: httpx.AsyncClient) -> None:
        super().__init__(config, http)
        self._client = None

    async def _request(self, system_instruction: str, user_query: str, model: str) -> LLMResponse:
        if self._client is None:
            from anthropic import AsyncAnthropic
            self._client = AsyncAnthropic(api_key=self.api_key, timeout=self._config.timeout_seconds)

        response = await self._client.messages.create(
            model=model,
            max_tokens=self._config.max_tokens,
            temperature=self._config.temperature,
            system=system_instruction,
            messages=[{"role": "user", "content": user_query}],
        )
        text = ""
        for block in response.content:
            if hasattr(block, "text"):
                text += block.text
        text = text.strip()
        if not text:
            raise ProviderError(self.name, "No response content")
        log.debug("llm.tokens", provider=self.name, input_tokens=response.usage.input_tokens,
                  output_tokens=response.usage.output_tokens)
        return LLMResponse(text=text, raw_response=response.model_dump(), provider=self.name, model=model)


PROVIDER_CLASSES: dict[str, type[LLMProvider]] = {
    "google": GeminiProvider,
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "deepseek": DeepSeekProvider,
    "openrouter": OpenRouterProvider,
}


class LLMRouter:
    """Routes calls to the provider named on the agent. Unknown names fall back to the default."""

    def __init__(self, config: LLMConfig, http: httpx.AsyncClient | None = None,
                 providers: dict[str, LLMProvider] | None = None) -> None:
        self._config = config
        self._http = http or httpx.AsyncClient(timeout=config.timeout_seconds)
        self._providers = providers or {
            name: cls(config, self._http) for name, cls in PROVIDER_CLASSES.items()
        }

    def get(self, provider: str | None) -> LLMProvider:
        name = (provider or self._config.default_provider).lower()
        if name not in self._providers:
            log.warning("llm.unknown_provider", provider=name, fallback=self._config.default_provider)
            name = self._config.default_provider
        return self._providers[name]

    async def call(self, provider: str | None, system_instruction: str, user_query: str,
                   model: str | None = None) -> LLMResponse:
        return await self.get(provider).call(system_instruction, user_query, model)

    async def close(self) -> None:
        await self._http.aclose()
