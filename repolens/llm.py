"""Multi-provider completion client supporting Ollama, Groq, OpenAI, Anthropic, Gemini and OpenRouter."""

from __future__ import annotations

import logging
import random
import re
import time
from typing import Any, Callable, Dict, Optional, Tuple

import requests

from . import config_manager
from .errors import CompletionError

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 5
BASE_BACKOFF_SECONDS = 0.2
MAX_JITTER_SECONDS = 0.3

_TRY_AGAIN = re.compile(r"try again in\s+(?:(\d+)m)?\s*([\d.]+)\s*(ms|s)\b", re.IGNORECASE)

Request = Tuple[str, Dict[str, str], Dict[str, Any]]


class LLMProvider:
    """Base class for LLM providers: shapes the HTTP request and reads the reply."""

    needs_api_key = True

    def __init__(self, model: str, api_key: str = "", endpoint: str = ""):
        self.model = model
        self.api_key = api_key
        self.endpoint = endpoint

    def build_request(self, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float) -> Request:
        raise NotImplementedError

    def extract_text(self, body: Dict[str, Any]) -> Optional[str]:
        raise NotImplementedError


class OllamaProvider(LLMProvider):
    """Ollama local LLM provider."""

    needs_api_key = False

    def build_request(self, system_prompt, user_prompt, max_tokens, temperature):
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "stream": False,
            "options": {"temperature": temperature, "num_predict": max_tokens},
        }
        return self.endpoint, {"Content-Type": "application/json"}, payload

    def extract_text(self, body):
        return (body.get("message") or {}).get("content") or body.get("response")


class OpenAIProvider(LLMProvider):
    """OpenAI chat-completions API (Groq and OpenRouter speak the same dialect)."""

    def build_request(self, system_prompt, user_prompt, max_tokens, temperature):
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        return self.endpoint, headers, payload

    def extract_text(self, body):
        return body["choices"][0]["message"]["content"]


class GroqProvider(OpenAIProvider):
    """Groq cloud API provider."""


class OpenRouterProvider(OpenAIProvider):
    """OpenRouter API provider (OpenAI-compatible, multi-model gateway)."""

    def extract_text(self, body):
        """Extract response text, handling reasoning models that return empty content."""
        msg = body["choices"][0]["message"]
        content = msg.get("content") or ""
        if content.strip():
            return content
        reasoning = msg.get("reasoning") or ""
        if reasoning.strip():
            return reasoning
        return content or None


class AnthropicProvider(LLMProvider):
    """Anthropic Claude API provider."""

    def build_request(self, system_prompt, user_prompt, max_tokens, temperature):
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": "2023-06-01",
        }
        payload = {
            "model": self.model,
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_prompt}],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        return self.endpoint, headers, payload

    def extract_text(self, body):
        return "".join(block.get("text", "") for block in body["content"])


class GeminiProvider(LLMProvider):
    """Google Gemini API provider."""

    def build_request(self, system_prompt, user_prompt, max_tokens, temperature):
        url = self.endpoint or f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent"
        payload = {
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "contents": [{"role": "user", "parts": [{"text": user_prompt}]}],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_tokens,
            },
        }
        headers = {"Content-Type": "application/json", "x-goog-api-key": self.api_key}
        return url, headers, payload

    def extract_text(self, body):
        return body["candidates"][0]["content"]["parts"][0]["text"]


PROVIDERS = {
    "ollama": OllamaProvider,
    "groq": GroqProvider,
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "gemini": GeminiProvider,
    "openrouter": OpenRouterProvider,
}


def retry_delay_from(response: requests.Response) -> Optional[float]:
    """Seconds the server asked us to wait, from ``Retry-After`` or a "try again in Xs" message."""
    header = response.headers.get("retry-after")
    if header:
        try:
            return float(header)
        except ValueError:
            pass
    match = _TRY_AGAIN.search(response.text or "")
    if not match:
        return None
    minutes, amount, unit = match.groups()
    seconds = float(amount) / 1000.0 if unit.lower() == "ms" else float(amount)
    return seconds + (int(minutes) * 60 if minutes else 0)


class LLMClient:
    """Completion client with retry and backoff.

    Exposes ``complete(system_prompt, user_prompt, max_tokens, temperature)``
    and raises :class:`CompletionError` once retries are exhausted.
    """

    def __init__(
        self,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        endpoint: Optional[str] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        timeout: float = 60.0,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the client from arguments, falling back to ``config.toml``.

        Args:
            provider: "ollama", "groq", "openai", "anthropic", "gemini" or "openrouter"
            model: Model name (defaults to config, then the provider default)
            api_key: API key for cloud providers (defaults to config / environment)
            endpoint: Custom endpoint URL
        """
        stored = config_manager.load_config()
        self.provider_name = (provider or stored.get("provider") or "ollama").lower()
        if self.provider_name not in PROVIDERS:
            raise ValueError(f"Unknown provider '{self.provider_name}'. Choose from: {', '.join(PROVIDERS)}")

        defaults = config_manager.get_provider_config(self.provider_name)
        # Stored values only apply to the provider they were saved for.
        same_provider = stored.get("provider", "ollama") == self.provider_name
        inherited = stored if same_provider else {}
        self.model = model or inherited.get("model") or defaults.get("model", "")
        self.api_key = (
            api_key or inherited.get("api_key") or config_manager.env_api_key(self.provider_name)
        )
        self.endpoint = endpoint or inherited.get("endpoint") or defaults.get("endpoint", "")

        self.max_retries = max(1, max_retries)
        self.timeout = timeout
        self.session = session or requests.Session()
        self._sleep = sleep
        self.provider = PROVIDERS[self.provider_name](self.model, self.api_key, self.endpoint)

    def _backoff(self, attempt: int) -> float:
        return BASE_BACKOFF_SECONDS * (2 ** (attempt - 1)) + random.uniform(0, MAX_JITTER_SECONDS)

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 1024,
        temperature: float = 0.2,
    ) -> str:
        if self.provider.needs_api_key and not self.api_key:
            raise CompletionError(f"No API key configured for provider '{self.provider_name}'")

        url, headers, payload = self.provider.build_request(system_prompt, user_prompt, max_tokens, temperature)
        last_error = "no attempt made"

        for attempt in range(1, self.max_retries + 1):
            try:
                response = self.session.post(url, headers=headers, json=payload, timeout=self.timeout)
            except requests.RequestException as exc:
                last_error = str(exc)
                delay = self._backoff(attempt)
            else:
                status = response.status_code
                if status == 429:
                    last_error = "rate limited (HTTP 429)"
                    requested = retry_delay_from(response)
                    if requested is None:
                        delay = self._backoff(attempt)
                    else:
                        delay = requested + random.uniform(0, MAX_JITTER_SECONDS)
                elif status >= 500:
                    last_error = f"HTTP {status}"
                    delay = self._backoff(attempt)
                elif status >= 400:
                    raise CompletionError(
                        f"{self.provider_name} returned HTTP {status}: {response.text[:200]}"
                    )
                else:
                    return self._read_text(response)

            if attempt < self.max_retries:
                logger.warning(
                    "%s request failed (%s), retry %d/%d in %.2fs",
                    self.provider_name, last_error, attempt, self.max_retries - 1, delay,
                )
                self._sleep(delay)

        raise CompletionError(
            f"{self.provider_name} request failed after {self.max_retries} attempts: {last_error}"
        )

    def _read_text(self, response: requests.Response) -> str:
        try:
            text = self.provider.extract_text(response.json())
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise CompletionError(f"Unexpected {self.provider_name} response shape: {exc}") from exc
        if not text or not text.strip():
            raise CompletionError(f"{self.provider_name} returned an empty completion")
        return text
