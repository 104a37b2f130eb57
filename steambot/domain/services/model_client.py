"""
Model Client - Anthropic Messages API behind a fallback-only wrapper

``AnthropicModelProvider`` performs one request and translates SDK errors
into a classified ``ModelProviderError``. ``ModelInvoker`` owns the retry
schedule, the timeout and the circuit breaker, and never raises: every
failure ends in the fixed fallback reply.
"""
import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

import anthropic

from steambot.core.circuit_breaker import CircuitBreaker, get_model_circuit_breaker
from steambot.core.config import settings
from steambot.core.exceptions import ModelProviderError
from steambot.core.logging import get_logger

logger = get_logger(__name__)

OVERLOADED_STATUS_CODES = frozenset({503, 529})
# a provider retry-after above this is not waited out within one chat turn
MAX_RETRY_AFTER_SECONDS = 10.0


@dataclass
class Completion:
    text: str
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class ModelReply:
    text: str
    input_tokens: int = 0
    output_tokens: int = 0
    fallback: bool = False
    error_kind: str | None = None
    attempts: int = 0
    duration_ms: int = 0

    def to_metadata(self) -> dict:
        data = {
            "model": settings.MODEL_NAME,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "processing_time_ms": self.duration_ms,
            "attempts": self.attempts,
        }
        if self.fallback:
            data["fallback"] = True
            data["error"] = self.error_kind
        return data


class ModelProvider(ABC):
    """One request to a language model"""

    @abstractmethod
    async def complete(self, system_prompt: str, messages: list[dict]) -> Completion:
        """
        Raises:
            ModelProviderError: classified provider failure
        """


def _retry_after(error: anthropic.APIStatusError) -> float | None:
    value = error.response.headers.get("retry-after") if error.response is not None else None
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def classify_error(error: Exception) -> ModelProviderError:
    """Map an SDK exception onto rate_limited / overloaded / other"""
    if isinstance(error, anthropic.RateLimitError):
        return ModelProviderError(
            ModelProviderError.RATE_LIMITED, "rate limited",
            status_code=error.status_code, retry_after=_retry_after(error),
        )
    if isinstance(error, anthropic.APITimeoutError):
        return ModelProviderError(ModelProviderError.OVERLOADED, "request timed out")
    if isinstance(error, anthropic.APIStatusError):
        kind = (
            ModelProviderError.OVERLOADED
            if error.status_code in OVERLOADED_STATUS_CODES
            else ModelProviderError.OTHER
        )
        return ModelProviderError(kind, type(error).__name__, status_code=error.status_code)
    return ModelProviderError(ModelProviderError.OTHER, type(error).__name__)


class AnthropicModelProvider(ModelProvider):
    """Anthropic Claude via ``AsyncAnthropic``; SDK retries are disabled"""

    def __init__(self, client: anthropic.AsyncAnthropic | None = None):
        self._client = client

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(
                api_key=settings.ANTHROPIC_API_KEY,
                max_retries=0,
                timeout=settings.MODEL_TIMEOUT_SECONDS,
            )
        return self._client

    async def complete(self, system_prompt: str, messages: list[dict]) -> Completion:
        client = self._get_client()
        try:
            response = await client.messages.create(
                model=settings.MODEL_NAME,
                max_tokens=settings.MODEL_MAX_TOKENS,
                temperature=settings.MODEL_TEMPERATURE,
                system=system_prompt,
                messages=messages,
            )
        except anthropic.APIError as e:
            raise classify_error(e) from e

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        ).strip()
        if not text:
            raise ModelProviderError(ModelProviderError.OTHER, "empty completion")

        usage = getattr(response, "usage", None)
        return Completion(
            text=text,
            input_tokens=getattr(usage, "input_tokens", 0) or 0,
            output_tokens=getattr(usage, "output_tokens", 0) or 0,
        )


def build_messages(history: Sequence[dict], user_text: str) -> list[dict]:
    """History plus the current user turn, merged if history ends on a user turn"""
    messages = [dict(turn) for turn in history]
    if messages and messages[-1]["role"] == "user":
        messages[-1]["content"] += "\n\n" + user_text
    else:
        messages.append({"role": "user", "content": user_text})
    return messages


class ModelInvoker:
    """
    Bounded retry over a delay schedule, timeout and circuit breaker.

    ``rate_limited`` is retried once per entry of ``retry_delays`` and then
    falls back; ``overloaded`` and ``other`` fall back immediately. A
    provider retry-after longer than the scheduled delay is honoured, up to
    ``MAX_RETRY_AFTER_SECONDS``.
    """

    def __init__(
        self,
        provider: ModelProvider | None = None,
        *,
        retry_delays: Sequence[float] | None = None,
        timeout_seconds: float | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.provider = provider or AnthropicModelProvider()
        self.retry_delays = tuple(settings.model_retry_delays if retry_delays is None else retry_delays)
        self.timeout_seconds = timeout_seconds or settings.MODEL_TIMEOUT_SECONDS
        self.circuit_breaker = circuit_breaker or get_model_circuit_breaker()
        self._sleep = sleep

    def _retry_delay(self, retry_index: int, error: ModelProviderError) -> float:
        """Scheduled delay, raised to the provider's retry-after when that is longer"""
        delay = self.retry_delays[retry_index]
        if error.retry_after:
            delay = max(delay, min(error.retry_after, MAX_RETRY_AFTER_SECONDS))
        return delay

    async def _attempt(self, system_prompt: str, messages: list[dict]) -> Completion:
        try:
            return await asyncio.wait_for(
                self.provider.complete(system_prompt, messages),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise ModelProviderError(ModelProviderError.OVERLOADED, "request timed out") from e
        except ModelProviderError:
            raise
        except Exception as e:
            logger.error(
                "Unexpected model provider failure",
                extra_data={"error": type(e).__name__},
                exc_info=True
            )
            raise ModelProviderError(ModelProviderError.OTHER, type(e).__name__) from e

    async def invoke(self, system_prompt: str, history: Sequence[dict], user_text: str) -> ModelReply:
        """Call the model; always returns a reply, falling back on any failure"""
        messages = build_messages(history, user_text)
        started = time.monotonic()
        attempts = 0
        error: ModelProviderError | None = None

        for retry_index in range(len(self.retry_delays) + 1):
            if not self.circuit_breaker.can_execute():
                error = ModelProviderError(ModelProviderError.OVERLOADED, "circuit open")
                break

            attempts += 1
            try:
                completion = await self._attempt(system_prompt, messages)
            except ModelProviderError as e:
                error = e
            else:
                self.circuit_breaker.record_success()
                return ModelReply(
                    text=completion.text,
                    input_tokens=completion.input_tokens,
                    output_tokens=completion.output_tokens,
                    attempts=attempts,
                    duration_ms=int((time.monotonic() - started) * 1000),
                )

            logger.warning(
                "Model call failed",
                extra_data={
                    "kind": error.kind,
                    "provider_status": error.provider_status,
                    "attempt": attempts,
                }
            )
            if error.kind != ModelProviderError.RATE_LIMITED:
                self.circuit_breaker.record_failure(error)
                break
            if retry_index < len(self.retry_delays):
                await self._sleep(self._retry_delay(retry_index, error))

        kind = error.kind if error else ModelProviderError.OTHER
        logger.error(
            "Model unavailable, using fallback reply",
            extra_data={"kind": kind, "attempts": attempts}
        )
        return ModelReply(
            text=settings.fallback_message,
            fallback=True,
            error_kind=kind,
            attempts=attempts,
            duration_ms=int((time.monotonic() - started) * 1000),
        )


_invoker: ModelInvoker | None = None


def get_model_invoker() -> ModelInvoker:
    """Process-wide invoker built on first use"""
    global _invoker
    if _invoker is None:
        _invoker = ModelInvoker()
    return _invoker
