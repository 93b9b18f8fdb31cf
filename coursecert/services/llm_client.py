"""
LLMClient - Unified LLM provider management
Shared transport for question generation and transcript scoring: OpenAI first,
Gemini second, per-provider circuit breakers and exponential backoff.
There is no canned fallback content; when every provider fails the caller gets
an UpstreamFailureError and nothing downstream is written.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx
from anyio import to_thread
from google import genai

from coursecert.core.config import Settings, get_settings
from coursecert.core.error_handling import UpstreamFailureError

logger = logging.getLogger(__name__)

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"

_CODE_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


class LLMProvider(str, Enum):
    OPENAI = "openai"
    GEMINI = "gemini"


class ProviderNotConfigured(Exception):
    """Provider has no API key; skipped without touching its breaker."""


@dataclass
class LLMRequest:
    """Standardized LLM request format"""
    prompt: str
    model: Optional[str] = None
    temperature: float = 0.3
    max_tokens: Optional[int] = None
    response_format: Optional[Dict[str, str]] = None
    system_message: Optional[str] = None
    messages: Optional[List[Dict[str, str]]] = None


@dataclass
class LLMResponse:
    """Standardized LLM response format"""
    content: str
    provider: LLMProvider
    model: str
    tokens_used: Optional[int] = None
    response_time_ms: int = 0


@dataclass
class CircuitBreakerState:
    """Circuit breaker state for each provider"""
    failure_count: int = 0
    last_failure_time: float = 0
    is_open: bool = False
    next_attempt_time: float = 0


class LLMClient:
    """
    Unified LLM client with circuit breaker and retry logic
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        base_backoff: float = 2.0,
        max_backoff: float = 60.0,
    ):
        self.settings = settings or get_settings()
        self.circuit_breakers: Dict[LLMProvider, CircuitBreakerState] = {
            provider: CircuitBreakerState()
            for provider in LLMProvider
        }

        # Circuit breaker config
        self.max_failures = 5
        self.circuit_timeout = 300  # 5 minutes
        self.base_backoff = base_backoff
        self.max_backoff = max_backoff

    def _is_circuit_open(self, provider: LLMProvider) -> bool:
        breaker = self.circuit_breakers[provider]

        if not breaker.is_open:
            return False

        # Half-open once the timeout has passed
        if time.time() > breaker.next_attempt_time:
            breaker.is_open = False
            breaker.failure_count = 0
            return False

        return True

    def _record_success(self, provider: LLMProvider) -> None:
        breaker = self.circuit_breakers[provider]
        breaker.failure_count = 0
        breaker.is_open = False

    def _record_failure(self, provider: LLMProvider) -> None:
        breaker = self.circuit_breakers[provider]
        breaker.failure_count += 1
        breaker.last_failure_time = time.time()

        if breaker.failure_count >= self.max_failures:
            breaker.is_open = True
            breaker.next_attempt_time = time.time() + self.circuit_timeout
            logger.warning(
                "Circuit opened for LLM provider",
                extra={"provider": provider.value, "operation": "llm_generate"},
            )

    async def _call_openai(self, request: LLMRequest) -> LLMResponse:
        if not self.settings.openai_api_key:
            raise ProviderNotConfigured("OpenAI API key not configured")

        headers = {"Authorization": f"Bearer {self.settings.openai_api_key}"}
        model = request.model or self.settings.openai_model

        messages = []
        if request.system_message:
            messages.append({"role": "system", "content": request.system_message})

        if request.messages:
            messages.extend(request.messages)
        else:
            messages.append({"role": "user", "content": request.prompt})

        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": request.temperature,
        }

        if request.max_tokens:
            payload["max_tokens"] = request.max_tokens

        if request.response_format:
            payload["response_format"] = request.response_format

        start_time = time.time()

        async with httpx.AsyncClient(timeout=self.settings.llm_timeout_seconds) as client:
            response = await client.post(OPENAI_CHAT_URL, json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise UpstreamFailureError("openai", "OpenAI response missing message content") from exc

        return LLMResponse(
            content=content or "",
            provider=LLMProvider.OPENAI,
            model=model,
            tokens_used=(data.get("usage") or {}).get("total_tokens"),
            response_time_ms=int((time.time() - start_time) * 1000),
        )

    async def _call_gemini(self, request: LLMRequest) -> LLMResponse:
        if not self.settings.gemini_api_key:
            raise ProviderNotConfigured("Gemini API key not configured")

        model = self.settings.gemini_model
        api_key = self.settings.gemini_api_key

        def _sync_call() -> str:
            client = genai.Client(api_key=api_key)

            content = ""
            if request.system_message:
                content += f"System: {request.system_message}\n\n"
            content += f"User: {request.prompt}"

            response = client.models.generate_content(model=model, contents=content)
            return response.text or ""

        start_time = time.time()
        content = await to_thread.run_sync(_sync_call)

        return LLMResponse(
            content=content,
            provider=LLMProvider.GEMINI,
            model=model,
            response_time_ms=int((time.time() - start_time) * 1000),
        )

    def _is_retryable(self, exc: Exception) -> bool:
        if isinstance(exc, httpx.HTTPStatusError):
            status = exc.response.status_code
            return status == 429 or status >= 500
        return isinstance(exc, (httpx.TransportError, asyncio.TimeoutError))

    async def _call_with_retry(self, provider: LLMProvider, request: LLMRequest) -> LLMResponse:
        """Call provider with exponential backoff retry"""
        max_retries = self.settings.llm_max_retries

        for attempt in range(max_retries):
            try:
                if provider == LLMProvider.OPENAI:
                    return await self._call_openai(request)
                return await self._call_gemini(request)

            except ProviderNotConfigured:
                raise

            except Exception as e:
                if attempt < max_retries - 1 and self._is_retryable(e):
                    backoff = min(self.base_backoff * (2 ** attempt), self.max_backoff)
                    logger.info(
                        f"Retrying {provider.value} after {type(e).__name__}",
                        extra={"provider": provider.value, "operation": "llm_generate"},
                    )
                    await asyncio.sleep(backoff)
                    continue
                raise

        raise UpstreamFailureError(provider.value, f"Max retries ({max_retries}) exceeded")

    def _provider_order(self) -> List[LLMProvider]:
        try:
            preferred = LLMProvider(self.settings.primary_llm_provider)
        except ValueError:
            preferred = LLMProvider.OPENAI
        return [preferred] + [p for p in LLMProvider if p != preferred]

    async def generate(self, request: LLMRequest) -> LLMResponse:
        """
        Generate a response from the first healthy configured provider.
        Raises UpstreamFailureError when no provider produced a response.
        """
        last_error: Optional[Exception] = None
        attempted = False

        for provider in self._provider_order():
            if self._is_circuit_open(provider):
                continue

            try:
                response = await self._call_with_retry(provider, request)
            except ProviderNotConfigured:
                continue
            except Exception as e:
                attempted = True
                last_error = e
                self._record_failure(provider)
                logger.warning(
                    f"LLM provider failed: {e}",
                    extra={"provider": provider.value, "operation": "llm_generate"},
                )
                continue

            self._record_success(provider)
            return response

        if not attempted:
            raise UpstreamFailureError("llm", "No LLM provider is configured or available")

        status_code = None
        if isinstance(last_error, httpx.HTTPStatusError):
            status_code = last_error.response.status_code
        raise UpstreamFailureError("llm", f"All LLM providers failed: {last_error}", status_code) from last_error

    async def generate_json(self, request: LLMRequest) -> Dict[str, Any]:
        """
        Generate a JSON object. Only a surrounding Markdown code fence is
        stripped; anything that is not a single JSON object is rejected.
        """
        if request.response_format is None:
            request.response_format = {"type": "json_object"}
        response = await self.generate(request)
        return parse_json_object(response.content, response.provider.value)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "circuit_breakers": {
                provider.value: {
                    "failure_count": breaker.failure_count,
                    "is_open": breaker.is_open,
                    "next_attempt_time": breaker.next_attempt_time,
                }
                for provider, breaker in self.circuit_breakers.items()
            }
        }


def parse_json_object(raw: str, service: str = "llm") -> Dict[str, Any]:
    text = (raw or "").strip()
    fenced = _CODE_FENCE.match(text)
    if fenced:
        text = fenced.group(1)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise UpstreamFailureError(service, f"Model returned invalid JSON: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise UpstreamFailureError(service, "Model returned JSON that is not an object")
    return data


# Global client instance
_llm_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Get or create global LLM client instance"""
    global _llm_client
    if _llm_client is None:
        _llm_client = LLMClient()
    return _llm_client
